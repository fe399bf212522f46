# services/feature_flag_service.py
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.cache import FLAG_CACHE_PREFIX, DecisionCache
from app.core.errors import FeatureFlagNotFoundError, InvalidFlagPayloadError
from app.core.settings import config_settings
from app.models.schemas.feature_flag import (
    FeatureFlagCreateModel,
    FeatureFlagModel,
    FeatureFlagUpdateModel,
    FlagTargeting,
)
from app.repositories.feature_flag_repo import FeatureFlagRepository
from .flag_evaluation import is_flag_enabled

logger = logging.getLogger(__name__)


def flag_cache_key(flag_key: str) -> str:
    return f"{FLAG_CACHE_PREFIX}key:{flag_key}"


def validate_flag_payload(payload: Optional[Dict[str, Any]]) -> None:
    try:
        FlagTargeting.from_payload(payload)
    except ValidationError as e:
        raise InvalidFlagPayloadError(f"Invalid feature flag targeting payload: {e}") from e


class FeatureFlagService:
    def __init__(
        self,
        db: Session,
        cache: DecisionCache,
        cache_ttl: Optional[float] = None,
    ):
        self.flag_repo = FeatureFlagRepository(db)
        self.cache = cache
        self.cache_ttl = (
            config_settings.DEFINITION_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl
        )

    # --- Definitions ---

    def get_flag(self, flag_key: str) -> Optional[FeatureFlagModel]:
        cache_key = flag_cache_key(flag_key)

        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        flag_orm = self.flag_repo.get_by_key(flag_key)
        if flag_orm is None:
            return None

        flag = FeatureFlagModel.model_validate(flag_orm)
        self.cache.put(cache_key, flag, self.cache_ttl)
        return flag

    def get_flags(self, flag_keys: List[str]) -> Dict[str, FeatureFlagModel]:
        """Resolves several flags, loading every cache miss in a single query."""
        flags: Dict[str, FeatureFlagModel] = {}
        missing = []

        for flag_key in dict.fromkeys(flag_keys):
            cached = self.cache.get(flag_cache_key(flag_key))
            if cached is not None:
                flags[flag_key] = cached
            else:
                missing.append(flag_key)

        if missing:
            for flag_orm in self.flag_repo.get_by_keys(missing):
                flag = FeatureFlagModel.model_validate(flag_orm)
                self.cache.put(flag_cache_key(flag.key), flag, self.cache_ttl)
                flags[flag.key] = flag

        return flags

    def list_flags(self, enabled_only: bool = False) -> List[FeatureFlagModel]:
        return [
            FeatureFlagModel.model_validate(flag_orm)
            for flag_orm in self.flag_repo.list_flags(enabled_only=enabled_only)
        ]

    def create_flag(self, flag_data: FeatureFlagCreateModel) -> FeatureFlagModel:
        logger.info(f"Creating feature flag: {flag_data.key}")
        validate_flag_payload(flag_data.payload)

        flag_orm = self.flag_repo.create_flag(flag_data)
        self.cache.evict_all(FLAG_CACHE_PREFIX)

        return FeatureFlagModel.model_validate(flag_orm)

    def update_flag(self, flag_key: str, flag_data: FeatureFlagUpdateModel) -> FeatureFlagModel:
        logger.info(f"Updating feature flag: {flag_key}")

        flag_orm = self.flag_repo.get_by_key(flag_key)
        if flag_orm is None:
            raise FeatureFlagNotFoundError(flag_key)

        if "payload" in flag_data.model_fields_set:
            validate_flag_payload(flag_data.payload)

        flag_orm = self.flag_repo.update_flag(flag_orm, flag_data)
        self.cache.evict_all(FLAG_CACHE_PREFIX)

        return FeatureFlagModel.model_validate(flag_orm)

    def toggle_flag(self, flag_key: str) -> FeatureFlagModel:
        flag_orm = self.flag_repo.get_by_key(flag_key)
        if flag_orm is None:
            raise FeatureFlagNotFoundError(flag_key)

        flag_orm = self.flag_repo.set_enabled(flag_orm, not flag_orm.enabled)
        self.cache.evict_all(FLAG_CACHE_PREFIX)

        logger.info(f"Toggled feature flag {flag_key} to enabled={flag_orm.enabled}")
        return FeatureFlagModel.model_validate(flag_orm)

    def delete_flag(self, flag_key: str) -> None:
        logger.info(f"Deleting feature flag: {flag_key}")

        flag_orm = self.flag_repo.get_by_key(flag_key)
        if flag_orm is None:
            raise FeatureFlagNotFoundError(flag_key)

        self.flag_repo.delete_flag(flag_orm)
        self.cache.evict_all(FLAG_CACHE_PREFIX)

    # --- Evaluation ---

    def evaluate_flag(
        self, flag_key: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Whether the flag is on for this user. Unknown flags are off.

        ``context`` is accepted for callers that already send request attributes;
        targeting currently depends on the user id alone.
        """
        enabled = is_flag_enabled(self.get_flag(flag_key), user_id)
        logger.debug(f"Flag {flag_key} evaluated to {enabled} for user {user_id}")
        return enabled

    def evaluate_flags(
        self,
        user_id: str,
        flag_keys: List[str],
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, bool]:
        flags = self.get_flags(flag_keys)
        return {flag_key: is_flag_enabled(flags.get(flag_key), user_id) for flag_key in flag_keys}
