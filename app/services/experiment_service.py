# services/experiment_service.py
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.cache import EXPERIMENT_CACHE_PREFIX, DecisionCache
from app.core.errors import (
    AssignmentConflictError,
    ExperimentNotFoundError,
    ExperimentNotRunningError,
)
from app.core.settings import config_settings
from app.models.orm.assignment import AssignmentORM
from app.models.orm.experiment import ExperimentStatus
from app.models.schemas.assignment import AssignmentModel
from app.models.schemas.experiment import (
    ExperimentCreateModel,
    ExperimentModel,
    ExperimentUpdateModel,
)
from app.repositories.assignment_repo import AssignmentRepository
from app.repositories.experiment_repo import ExperimentRepository
from .allocation import is_included, select_variant

logger = logging.getLogger(__name__)

ACTIVE_EXPERIMENTS_CACHE_KEY = f"{EXPERIMENT_CACHE_PREFIX}list:active"


def experiment_cache_key(experiment_key: str) -> str:
    return f"{EXPERIMENT_CACHE_PREFIX}key:{experiment_key}"


class ExperimentService:
    def __init__(
        self,
        db: Session,
        cache: DecisionCache,
        cache_ttl: Optional[float] = None,
    ):
        self.experiment_repo = ExperimentRepository(db)
        self.assignment_repo = AssignmentRepository(db)
        self.cache = cache
        self.cache_ttl = (
            config_settings.DEFINITION_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl
        )

    # --- Definitions ---

    def get_experiment(self, experiment_key: str) -> Optional[ExperimentModel]:
        """Read-through lookup of an experiment definition. Misses are not cached."""
        cache_key = experiment_cache_key(experiment_key)

        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        logger.debug(f"Fetching experiment by key: {experiment_key}")
        experiment_orm = self.experiment_repo.get_by_key(experiment_key)
        if experiment_orm is None:
            return None

        experiment = ExperimentModel.model_validate(experiment_orm)
        self.cache.put(cache_key, experiment, self.cache_ttl)
        return experiment

    def list_active_experiments(self) -> List[ExperimentModel]:
        cached = self.cache.get(ACTIVE_EXPERIMENTS_CACHE_KEY)
        if cached is not None:
            return cached

        logger.debug("Fetching active experiments")
        experiments = [
            ExperimentModel.model_validate(experiment_orm)
            for experiment_orm in self.experiment_repo.list_experiments(ExperimentStatus.RUNNING)
        ]
        self.cache.put(ACTIVE_EXPERIMENTS_CACHE_KEY, experiments, self.cache_ttl)
        return experiments

    def create_experiment(self, experiment_data: ExperimentCreateModel) -> ExperimentModel:
        logger.info(f"Creating experiment: {experiment_data.key}")

        experiment_orm = self.experiment_repo.create_experiment(experiment_data)
        self.cache.evict_all(EXPERIMENT_CACHE_PREFIX)

        logger.info(f"Created experiment: {experiment_orm.key} with ID: {experiment_orm.id}")
        return ExperimentModel.model_validate(experiment_orm)

    def update_experiment(
        self, experiment_key: str, experiment_data: ExperimentUpdateModel
    ) -> ExperimentModel:
        logger.info(f"Updating experiment: {experiment_key}")

        experiment_orm = self.experiment_repo.get_by_key(experiment_key)
        if experiment_orm is None:
            raise ExperimentNotFoundError(experiment_key)

        experiment_orm = self.experiment_repo.update_experiment(experiment_orm, experiment_data)
        self.cache.evict_all(EXPERIMENT_CACHE_PREFIX)

        return ExperimentModel.model_validate(experiment_orm)

    def delete_experiment(self, experiment_key: str) -> None:
        """Deletes the definition. Assignments already handed out are kept."""
        logger.info(f"Deleting experiment: {experiment_key}")

        experiment_orm = self.experiment_repo.get_by_key(experiment_key)
        if experiment_orm is None:
            raise ExperimentNotFoundError(experiment_key)

        self.experiment_repo.delete_experiment(experiment_orm)
        self.cache.evict_all(EXPERIMENT_CACHE_PREFIX)

    # --- Assignment ---

    def assign_user_to_experiment(
        self, experiment_key: str, user_id: str
    ) -> Optional[AssignmentModel]:
        """
        Returns the user's variant assignment for an experiment, creating it on
        first access.

        1. An existing assignment is returned unchanged, whatever the current
           state of the experiment (idempotent read-first).
        2. The experiment must exist and be RUNNING.
        3. Users outside the traffic percentage get None. Exclusion is not
           persisted, so raising traffic_pct later can still pick them up.
        4. Otherwise a variant is selected and persisted. When a concurrent
           request persisted one first, its row wins and is returned instead.

        Raises:
            ExperimentNotFoundError: no experiment with this key.
            ExperimentNotRunningError: the experiment exists but is not RUNNING.
        """
        logger.debug(f"Assigning user {user_id} to experiment: {experiment_key}")

        existing_assignment = self.assignment_repo.get_assignment(experiment_key, user_id)
        if existing_assignment is not None:
            logger.debug(
                f"User {user_id} already assigned to variant "
                f"{existing_assignment.variant_name} in experiment {experiment_key}"
            )
            return self._to_assignment_model(existing_assignment)

        experiment = self.get_experiment(experiment_key)
        if experiment is None:
            raise ExperimentNotFoundError(experiment_key)

        if not experiment.is_running:
            raise ExperimentNotRunningError(experiment_key, experiment.status.value)

        if not is_included(user_id, experiment_key, experiment.traffic_pct):
            logger.debug(
                f"User {user_id} excluded from experiment {experiment_key} "
                f"due to traffic percentage {experiment.traffic_pct}"
            )
            return None

        selected_variant = select_variant(user_id, experiment_key, experiment.variants)

        try:
            new_assignment = self.assignment_repo.create_assignment(
                experiment_key=experiment_key,
                user_id=user_id,
                variant_name=selected_variant.name,
            )
        except AssignmentConflictError:
            winner = self.assignment_repo.get_assignment(experiment_key, user_id)
            if winner is None:
                raise

            logger.warning(
                f"Concurrent assignment for user {user_id} in experiment {experiment_key}; "
                f"keeping persisted variant {winner.variant_name}"
            )
            return self._to_assignment_model(winner, experiment)

        logger.info(
            f"Assigned user {user_id} to variant {selected_variant.name} "
            f"in experiment {experiment_key}"
        )
        return self._to_assignment_model(new_assignment, experiment)

    def get_user_assignments(self, user_id: str) -> List[AssignmentModel]:
        logger.debug(f"Fetching assignments for user: {user_id}")
        return [
            self._to_assignment_model(assignment)
            for assignment in self.assignment_repo.get_assignments_for_user(user_id)
        ]

    def _to_assignment_model(
        self,
        assignment: AssignmentORM,
        experiment: Optional[ExperimentModel] = None,
    ) -> AssignmentModel:
        """Attaches the assigned variant's payload from the current definition."""
        if experiment is None:
            experiment = self.get_experiment(assignment.experiment_key)

        variant = experiment.find_variant(assignment.variant_name) if experiment else None

        return AssignmentModel(
            experiment_key=assignment.experiment_key,
            user_id=assignment.user_id,
            variant_name=assignment.variant_name,
            assigned_at=assignment.assigned_at,
            variant_payload=variant.payload if variant else None,
        )
