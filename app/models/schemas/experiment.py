from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.orm.experiment import ExperimentStatus


class VariantConfig(BaseModel):
    """Configuration for a single variant in an experiment."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    name: str = Field(..., min_length=1, description="Unique within the experiment.")
    weight_pct: int = Field(
        ...,
        ge=0,
        le=100,
        description="Percentage of sampled users allocated to this variant.",
    )
    payload: Optional[Dict[str, Any]] = Field(
        None, description="Opaque data returned to callers assigned to this variant."
    )


class ExperimentCreateModel(BaseModel):
    key: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: ExperimentStatus = ExperimentStatus.DRAFT
    traffic_pct: int = Field(
        100,
        ge=0,
        le=100,
        description="Percentage of eligible users sampled into the experiment at all.",
    )
    # Order matters: bucketing walks the variants in this order
    variants: List[VariantConfig]


class ExperimentUpdateModel(BaseModel):
    """Partial update; fields left unset keep their stored value."""

    description: Optional[str] = None
    status: Optional[ExperimentStatus] = None
    traffic_pct: Optional[int] = Field(None, ge=0, le=100)
    variants: Optional[List[VariantConfig]] = None


class ExperimentModel(BaseModel):
    """
    Immutable snapshot of an experiment definition. This is what gets cached
    and what the assignment engine reads; it carries no ORM state.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    key: str
    description: Optional[str] = None
    status: ExperimentStatus
    traffic_pct: int
    variants: List[VariantConfig]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.status == ExperimentStatus.RUNNING

    def find_variant(self, name: str) -> Optional[VariantConfig]:
        for variant in self.variants:
            if variant.name == name:
                return variant
        return None
