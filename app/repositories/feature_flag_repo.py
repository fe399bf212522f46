from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import DuplicateKeyError
from app.models.orm.feature_flag import FeatureFlagORM
from app.models.schemas.feature_flag import FeatureFlagCreateModel, FeatureFlagUpdateModel


class FeatureFlagRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_key(self, key: str) -> Optional[FeatureFlagORM]:
        stmt = select(FeatureFlagORM).where(FeatureFlagORM.key == key)
        return self.db.scalars(stmt).one_or_none()

    def get_by_keys(self, keys: Iterable[str]) -> List[FeatureFlagORM]:
        stmt = select(FeatureFlagORM).where(FeatureFlagORM.key.in_(list(keys)))
        return list(self.db.scalars(stmt).all())

    def list_flags(self, enabled_only: bool = False) -> List[FeatureFlagORM]:
        stmt = select(FeatureFlagORM).order_by(FeatureFlagORM.key)
        if enabled_only:
            stmt = stmt.where(FeatureFlagORM.enabled.is_(True))
        return list(self.db.scalars(stmt).all())

    def create_flag(self, flag_data: FeatureFlagCreateModel) -> FeatureFlagORM:
        if self.get_by_key(flag_data.key) is not None:
            raise DuplicateKeyError("Feature flag", flag_data.key)

        db_flag = FeatureFlagORM(**flag_data.model_dump())

        try:
            self.db.add(db_flag)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateKeyError("Feature flag", flag_data.key)
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(db_flag)
        return db_flag

    def update_flag(
        self, db_flag: FeatureFlagORM, flag_data: FeatureFlagUpdateModel
    ) -> FeatureFlagORM:
        updates = flag_data.model_dump(exclude_unset=True)

        try:
            if "description" in updates:
                db_flag.description = flag_data.description
            if flag_data.enabled is not None:
                db_flag.enabled = flag_data.enabled
            if "payload" in updates:
                db_flag.payload = flag_data.payload
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(db_flag)
        return db_flag

    def set_enabled(self, db_flag: FeatureFlagORM, enabled: bool) -> FeatureFlagORM:
        try:
            db_flag.enabled = enabled
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(db_flag)
        return db_flag

    def delete_flag(self, db_flag: FeatureFlagORM) -> None:
        try:
            self.db.delete(db_flag)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
