from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AssignmentModel(BaseModel):
    """A user's persistent variant assignment for one experiment."""

    model_config = ConfigDict(from_attributes=True)

    experiment_key: str
    user_id: str
    variant_name: str = Field(..., description="The variant the user was assigned.")
    assigned_at: datetime

    # Resolved from the current definition at read time, not stored with the assignment
    variant_payload: Optional[Dict[str, Any]] = None
