import logging
from typing import Optional

from pydantic import ValidationError

from app.models.schemas.feature_flag import FeatureFlagModel, FlagTargeting
from .hashing import bucket, flag_hash_input

logger = logging.getLogger(__name__)


def is_flag_enabled(flag: Optional[FeatureFlagModel], user_id: str) -> bool:
    """
    Evaluates a flag for one user from its current definition. Nothing is
    persisted, so toggles and rollout changes apply to everyone on the next call.

    Fails closed: a missing flag or an unreadable payload is "off".
    """
    if flag is None:
        return False

    if not flag.enabled:
        return False

    try:
        targeting = FlagTargeting.from_payload(flag.payload)
    except ValidationError as e:
        logger.warning(f"Malformed payload on flag {flag.key}, evaluating to off: {e}")
        return False

    # Allow-list beats the rollout percentage
    if user_id in targeting.target_users:
        return True

    rollout_percentage = targeting.rollout_percentage
    if rollout_percentage is None or rollout_percentage >= 100:
        return True
    if rollout_percentage <= 0:
        return False

    return bucket(flag_hash_input(user_id, flag.key)) < rollout_percentage
