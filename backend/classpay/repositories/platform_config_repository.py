"""Repository for the JSON settings documents in ``platform_config``."""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.platform_config import PlatformConfig


class PlatformConfigRepository:
    """Settings rows are addressed by key rather than ULID, so this skips BaseRepository."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_by_key(self, key: str) -> Optional[PlatformConfig]:
        try:
            result = self.db.query(PlatformConfig).filter(PlatformConfig.key == key).first()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to read settings '{key}': {str(e)}")
        return cast(Optional[PlatformConfig], result)

    def get_value(self, key: str) -> Optional[Dict[str, Any]]:
        record = self.get_by_key(key)
        if record is None or not isinstance(record.value_json, dict):
            return None
        return dict(record.value_json)

    def upsert(self, *, key: str, value: Mapping[str, Any], updated_at: datetime) -> PlatformConfig:
        record = self.get_by_key(key)
        if record is None:
            record = PlatformConfig(key=key, value_json=dict(value), updated_at=updated_at)
            self.db.add(record)
        else:
            # Reassign so the JSON column registers as dirty
            record.value_json = dict(value)
            record.updated_at = updated_at
        self.db.flush()
        return record


__all__ = ["PlatformConfigRepository"]
