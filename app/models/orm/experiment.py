import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import JSON_TYPE, Base, utcnow


class ExperimentStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


# --- Experiment Model ---
class ExperimentORM(Base):
    __tablename__ = "experiments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text)

    status = Column(
        Enum(ExperimentStatus, name="experiment_status"),
        default=ExperimentStatus.DRAFT,
        nullable=False,
    )

    # Share of eligible users sampled into the experiment at all (0-100)
    traffic_pct = Column(Integer, default=100, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # One Experiment has Many Variants, kept in their defined order.
    # Variants never point back; the assignment engine only walks this list.
    variants = relationship(
        "VariantORM",
        order_by="VariantORM.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


# --- Variant Model ---
class VariantORM(Base):
    __tablename__ = "experiment_variants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    experiment_id = Column(
        Integer,
        ForeignKey("experiments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(String, nullable=False)
    weight_pct = Column(Integer, nullable=False)

    # Position in the experiment's variant list; bucketing is order-sensitive
    position = Column(Integer, nullable=False)

    # Opaque data handed back to the caller, never interpreted here
    payload = Column(JSON_TYPE, nullable=True)

    __table_args__ = (
        UniqueConstraint("experiment_id", "name", name="uq_variant_experiment_name"),
    )
