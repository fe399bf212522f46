import logging
from typing import Sequence

from app.models.schemas.experiment import VariantConfig
from .hashing import bucket, traffic_hash_input, variant_hash_input

logger = logging.getLogger(__name__)


def is_included(user_id: str, experiment_key: str, traffic_pct: int) -> bool:
    """
    Decides whether a user participates in an experiment at all.

    0 and 100 short-circuit without hashing so that 100% really means every user.
    """
    if traffic_pct >= 100:
        return True
    if traffic_pct <= 0:
        return False

    return bucket(traffic_hash_input(user_id, experiment_key)) < traffic_pct


def select_variant(
    user_id: str, experiment_key: str, variants: Sequence[VariantConfig]
) -> VariantConfig:
    """
    Picks one variant by walking the list in order and accumulating weights;
    the first variant whose cumulative weight exceeds the user's bucket wins.

    The walk is order-sensitive: reordering the variants of a running experiment
    changes the outcome for users who have not been assigned yet.
    """
    if not variants:
        raise ValueError(f"Experiment {experiment_key} has no variants")

    user_bucket = bucket(variant_hash_input(user_id, experiment_key))

    cumulative_weight = 0
    for variant in variants:
        cumulative_weight += variant.weight_pct
        if user_bucket < cumulative_weight:
            return variant

    # Only reachable when weights sum to less than 100
    logger.warning(
        f"Bucket {user_bucket} not covered by variant weights of experiment "
        f"{experiment_key} (total {cumulative_weight}); falling back to first variant"
    )
    return variants[0]
