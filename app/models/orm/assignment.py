from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from .base import Base, utcnow


class AssignmentORM(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Experiments are referenced by key only: deleting a definition must not
    # delete the decisions already handed out.
    experiment_key = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    variant_name = Column(String, nullable=False)

    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # At most one assignment per (experiment, user), ever. Concurrent first-time
    # assignments are arbitrated by this constraint, not by application locks.
    __table_args__ = (
        UniqueConstraint("experiment_key", "user_id", name="uq_assignment_experiment_user"),
    )
