import logging
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import DuplicateKeyError, InvalidVariantsError
from app.models.orm.experiment import ExperimentORM, ExperimentStatus, VariantORM
from app.models.schemas.experiment import (
    ExperimentCreateModel,
    ExperimentUpdateModel,
    VariantConfig,
)

logger = logging.getLogger(__name__)


def validate_variants(variants: Sequence[VariantConfig]) -> None:
    """
    An experiment needs at least one variant, unique variant names and
    weights summing to exactly 100.
    """
    if not variants:
        raise InvalidVariantsError("At least one variant is required")

    names = [v.name for v in variants]
    if len(set(names)) != len(names):
        raise InvalidVariantsError(f"Variant names must be unique, got: {names}")

    total_weight = sum(v.weight_pct for v in variants)
    if total_weight != 100:
        raise InvalidVariantsError(f"Variant weights must sum to 100, got: {total_weight}")


def _bucketing_layout(variants) -> List[tuple]:
    return [(v.name, v.weight_pct) for v in variants]


class ExperimentRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def get_by_key(self, key: str) -> Optional[ExperimentORM]:
        """Fetches an experiment by key, with its variants in their defined order."""
        stmt = select(ExperimentORM).where(ExperimentORM.key == key)
        return self.db.scalars(stmt).one_or_none()

    def exists(self, key: str) -> bool:
        stmt = select(ExperimentORM.id).where(ExperimentORM.key == key)
        return self.db.scalars(stmt).first() is not None

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[ExperimentORM]:
        stmt = select(ExperimentORM).order_by(ExperimentORM.key)
        if status is not None:
            stmt = stmt.where(ExperimentORM.status == status)
        return list(self.db.scalars(stmt).all())

    @staticmethod
    def _build_variants(variants: Sequence[VariantConfig]) -> List[VariantORM]:
        return [
            VariantORM(
                name=variant.name,
                weight_pct=variant.weight_pct,
                position=position,
                payload=variant.payload,
            )
            for position, variant in enumerate(variants)
        ]

    def create_experiment(self, experiment_data: ExperimentCreateModel) -> ExperimentORM:
        """
        Creates an experiment together with its variants in one transaction.

        Raises:
            InvalidVariantsError: variant list is empty, has duplicate names or
                weights that do not sum to 100.
            DuplicateKeyError: an experiment with the same key exists.
        """
        validate_variants(experiment_data.variants)

        if self.exists(experiment_data.key):
            raise DuplicateKeyError("Experiment", experiment_data.key)

        db_experiment = ExperimentORM(
            key=experiment_data.key,
            description=experiment_data.description,
            status=experiment_data.status,
            traffic_pct=experiment_data.traffic_pct,
            variants=self._build_variants(experiment_data.variants),
        )

        try:
            self.db.add(db_experiment)
            self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent create with the same key
            self.db.rollback()
            raise DuplicateKeyError("Experiment", experiment_data.key)
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(db_experiment)
        return db_experiment

    def update_experiment(
        self, db_experiment: ExperimentORM, experiment_data: ExperimentUpdateModel
    ) -> ExperimentORM:
        """
        Applies a partial update. Replacing the variant list of a RUNNING
        experiment is rejected unless only the variant payloads change, since
        bucketing depends on variant order and weights.
        """
        updates = experiment_data.model_dump(exclude_unset=True)

        new_variants = experiment_data.variants if updates.get("variants") is not None else None
        if new_variants is not None:
            validate_variants(new_variants)

            if db_experiment.status == ExperimentStatus.RUNNING and _bucketing_layout(
                new_variants
            ) != _bucketing_layout(db_experiment.variants):
                raise InvalidVariantsError(
                    f"Variants of running experiment {db_experiment.key} cannot be "
                    f"renamed, reweighted or reordered"
                )

        try:
            if "description" in updates:
                db_experiment.description = experiment_data.description
            if experiment_data.status is not None:
                db_experiment.status = experiment_data.status
            if experiment_data.traffic_pct is not None:
                db_experiment.traffic_pct = experiment_data.traffic_pct

            if new_variants is not None:
                logger.debug(f"Replacing variants of experiment {db_experiment.key}")
                # Drop the old rows first; the new list may reuse the same names
                db_experiment.variants.clear()
                self.db.flush()
                db_experiment.variants = self._build_variants(new_variants)

            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(db_experiment)
        return db_experiment

    def delete_experiment(self, db_experiment: ExperimentORM) -> None:
        try:
            self.db.delete(db_experiment)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
