from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FlagTargeting(BaseModel):
    """
    The targeting section of a flag payload. Any other keys in the payload
    belong to the caller and are ignored here.
    """

    model_config = ConfigDict(extra="ignore")

    target_users: List[str] = Field(default_factory=list)
    rollout_percentage: Optional[int] = Field(None, ge=0, le=100)

    @classmethod
    def from_payload(cls, payload: Any) -> "FlagTargeting":
        """Raises pydantic.ValidationError when the payload is malformed."""
        if payload is None:
            return cls()
        return cls.model_validate(payload)


class FeatureFlagCreateModel(BaseModel):
    key: str = Field(..., min_length=1)
    description: Optional[str] = None
    enabled: bool = False
    payload: Optional[Dict[str, Any]] = None


class FeatureFlagUpdateModel(BaseModel):
    """Partial update; fields left unset keep their stored value."""

    description: Optional[str] = None
    enabled: Optional[bool] = None
    payload: Optional[Dict[str, Any]] = None


class FeatureFlagModel(BaseModel):
    """Immutable snapshot of a flag definition, safe to cache."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    key: str
    description: Optional[str] = None
    enabled: bool
    # Loosely typed on read so that a corrupted row still loads and fails closed
    payload: Optional[Any] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- Evaluation ---


class FlagEvaluationModel(BaseModel):
    flag_key: str
    user_id: str
    enabled: bool


class FlagBatchEvaluationRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    flag_keys: List[str]
    context: Dict[str, Any] = Field(default_factory=dict)
