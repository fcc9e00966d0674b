"""
Runtime application settings stored in the app_settings table.

Only the deposit threshold lives here today. When no row exists the
environment default (DEPOSIT_THRESHOLD_PERCENT) applies.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import commit_or_raise, persistence_errors
from app.core.exceptions import ValidationError
from app.core.permissions import Actor, Operation, PermissionChecker
from app.models.setting import AppSetting
from app.services.audit_service import AuditService


logger = logging.getLogger(__name__)

DEPOSIT_THRESHOLD_KEY = "depositThresholdPct"


class SettingsService:
    """Service for reading and updating runtime settings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_value(self, key: str) -> Optional[str]:
        row = await self.db.get(AppSetting, key)
        return row.value if row else None

    async def get_deposit_threshold_pct(self) -> Decimal:
        """Deposit share (percent of grand total) required before ACCEPT. 0 means any deposit."""
        raw = await self.get_value(DEPOSIT_THRESHOLD_KEY)
        if raw is None:
            return Decimal(str(settings.DEPOSIT_THRESHOLD_PERCENT))
        try:
            return Decimal(raw)
        except InvalidOperation:
            logger.warning(f"Ignoring malformed {DEPOSIT_THRESHOLD_KEY} setting: {raw!r}")
            return Decimal(str(settings.DEPOSIT_THRESHOLD_PERCENT))

    @persistence_errors("update settings")
    async def set_deposit_threshold_pct(self, value: Decimal, actor: Actor) -> Decimal:
        PermissionChecker(actor).require(Operation.UPDATE_SETTINGS)

        value = Decimal(str(value))
        if value < 0 or value > 100:
            raise ValidationError(
                "Deposit threshold must be between 0 and 100",
                {"value": str(value)},
            )

        row = await self.db.get(AppSetting, DEPOSIT_THRESHOLD_KEY)
        old_value = row.value if row else None
        if row is None:
            row = AppSetting(key=DEPOSIT_THRESHOLD_KEY, value=str(value), updated_by=actor.actor_id)
            self.db.add(row)
        else:
            row.value = str(value)
            row.updated_by = actor.actor_id
        await commit_or_raise(self.db)

        logger.info(f"{DEPOSIT_THRESHOLD_KEY} changed from {old_value} to {value} by {actor.actor_id}")
        await AuditService(self.db).log_setting_changed(DEPOSIT_THRESHOLD_KEY, old_value, str(value), actor)
        return value
