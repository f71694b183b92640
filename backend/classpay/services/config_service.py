"""Service helpers for the admin-editable payment settings."""

from __future__ import annotations

from typing import Any, Dict, Mapping

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..constants.payment_defaults import PAYMENT_SETTINGS_DEFAULTS, PAYMENT_SETTINGS_KEY
from ..core.exceptions import ValidationException
from ..core.timezone_utils import utc_now
from ..repositories.factory import RepositoryFactory
from ..schemas.payment_settings import PaymentSettings
from .base import BaseService

DEFAULT_PAYMENT_SETTINGS = PaymentSettings(**PAYMENT_SETTINGS_DEFAULTS)


class ConfigService(BaseService):
    """Reads and writes the ``payments`` settings document."""

    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repo = RepositoryFactory.create_platform_config_repository(db)

    def get_payment_settings(self) -> PaymentSettings:
        """
        Return the current settings as an immutable snapshot.

        Keys missing from the stored document fall back to the defaults, so a
        document saved before a setting existed still validates. A stored
        document that no longer validates is ignored in favour of the defaults.
        """
        stored = self.repo.get_value(PAYMENT_SETTINGS_KEY)
        if not stored:
            return DEFAULT_PAYMENT_SETTINGS
        try:
            return PaymentSettings(**{**PAYMENT_SETTINGS_DEFAULTS, **stored})
        except ValidationError as exc:
            self.logger.error(f"Stored payment settings are invalid, using defaults: {exc}")
            return DEFAULT_PAYMENT_SETTINGS

    @BaseService.measure_operation("set_payment_settings")
    def set_payment_settings(self, payload: Mapping[str, Any]) -> PaymentSettings:
        """
        Validate and persist new payment settings.

        ``payload`` may be partial; omitted keys keep their current value.
        Entities created earlier keep the values they captured.
        """
        current = self.get_payment_settings().model_dump(mode="json")
        try:
            validated = PaymentSettings(**{**current, **dict(payload)})
        except ValidationError as exc:
            raise ValidationException(
                "Invalid payment settings",
                code="INVALID_SETTINGS",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc

        value: Dict[str, Any] = validated.model_dump(mode="json")
        with self.transaction():
            self.repo.upsert(key=PAYMENT_SETTINGS_KEY, value=value, updated_at=utc_now())
        self.log_operation("set_payment_settings", settings=value)
        return validated
