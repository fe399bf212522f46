import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import AssignmentConflictError
from app.models.orm.assignment import AssignmentORM
from app.models.orm.base import utcnow

logger = logging.getLogger(__name__)


class AssignmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_assignment(self, experiment_key: str, user_id: str) -> Optional[AssignmentORM]:
        """Retrieves a persistent assignment for a user in a specific experiment."""
        stmt = select(AssignmentORM).where(
            AssignmentORM.experiment_key == experiment_key,
            AssignmentORM.user_id == user_id,
        )
        return self.db.scalars(stmt).one_or_none()

    def get_assignments_for_user(self, user_id: str) -> List[AssignmentORM]:
        """Retrieves every assignment a user holds, oldest first."""
        stmt = (
            select(AssignmentORM)
            .where(AssignmentORM.user_id == user_id)
            .order_by(AssignmentORM.assigned_at, AssignmentORM.id)
        )
        return list(self.db.scalars(stmt).all())

    def create_assignment(
        self, experiment_key: str, user_id: str, variant_name: str
    ) -> AssignmentORM:
        """
        Inserts a new assignment row.

        Raises:
            AssignmentConflictError: a row for (experiment_key, user_id) already
                exists, typically written by a concurrent request.
        """
        db_assignment = AssignmentORM(
            experiment_key=experiment_key,
            user_id=user_id,
            variant_name=variant_name,
            assigned_at=utcnow(),
        )

        try:
            self.db.add(db_assignment)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise AssignmentConflictError(experiment_key, user_id)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                f"Database error creating assignment for user {user_id} in {experiment_key}"
            )
            raise

        self.db.refresh(db_assignment)
        return db_assignment
