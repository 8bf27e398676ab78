from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.db import repo
from qbo_sync.db.models import LockedPeriodViolations


TxnDate = Union[date, datetime, str, None]

logger = logging.getLogger("qbo_sync.services.locked_period")


@dataclass(frozen=True)
class PeriodCheck:
    allowed: bool
    message: Optional[str] = None


def to_calendar_date(value: TxnDate) -> Optional[date]:
    """Reduce a datetime, date or ISO string to its calendar date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


class LockedPeriodGuard:
    """Blocks QuickBooks mutations for transactions dated on or before the tenant cutoff.

    The guard never raises. A failure to read the setting allows the sync, and a
    failure to record a violation keeps the deny.
    """

    def __init__(self, session: AsyncSession, tenant_id: uuid.UUID):
        self.session = session
        self.tenant_id = tenant_id

    async def check_allowed(
        self,
        txn_date: TxnDate,
        *,
        entity_type: str,
        entity_id: uuid.UUID | str,
        user_id: Optional[str],
        action: str,
    ) -> PeriodCheck:
        try:
            async with self.session.begin_nested():
                setting = await repo.get_locked_period_setting(self.session, tenant_id=self.tenant_id)
        except Exception:
            logger.warning(
                "locked_period_settings_unavailable",
                exc_info=True,
                extra={"tenant_id": str(self.tenant_id), "entity_type": entity_type},
            )
            return PeriodCheck(allowed=True)

        if setting is None or not setting.enabled or setting.cutoff_date is None:
            return PeriodCheck(allowed=True)

        try:
            attempted = to_calendar_date(txn_date)
        except ValueError:
            logger.warning(
                "locked_period_unparseable_date",
                extra={"entity_type": entity_type, "txn_date": str(txn_date)},
            )
            attempted = None
        if attempted is None:
            return PeriodCheck(allowed=True)

        cutoff = to_calendar_date(setting.cutoff_date)
        if attempted > cutoff:
            return PeriodCheck(allowed=True)

        message = (
            f"Cannot sync {entity_type.replace('_', ' ')} dated {attempted.isoformat()}: "
            f"the accounting period is locked through {cutoff.isoformat()}"
        )
        await self._record_violation(
            entity_type=entity_type,
            entity_id=str(entity_id),
            user_id=user_id,
            action=action,
            attempted=attempted,
            cutoff=cutoff,
        )
        logger.info(
            "locked_period_blocked",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "attempted_date": attempted.isoformat(),
                "cutoff_date": cutoff.isoformat(),
            },
        )
        return PeriodCheck(allowed=False, message=message)

    async def _record_violation(
        self,
        *,
        entity_type: str,
        entity_id: str,
        user_id: Optional[str],
        action: str,
        attempted: date,
        cutoff: date,
    ) -> None:
        violation = LockedPeriodViolations(
            tenant_id=self.tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            action=action,
            attempted_date=attempted,
            cutoff_date=cutoff,
            blocked=True,
        )
        try:
            async with self.session.begin_nested():
                await repo.add_locked_period_violation(self.session, violation)
        except SQLAlchemyError:
            logger.error(
                "locked_period_violation_write_failed",
                exc_info=True,
                extra={"entity_type": entity_type, "entity_id": entity_id},
            )
