from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from .base import JSON_TYPE, Base, utcnow


class FeatureFlagORM(Base):
    __tablename__ = "feature_flags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text)

    enabled = Column(Boolean, default=False, nullable=False)

    # Targeting lives here: {"target_users": [...], "rollout_percentage": 30, ...}
    payload = Column(JSON_TYPE, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
