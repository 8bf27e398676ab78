from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError

from qbo_sync.db import repo
from qbo_sync.db.models import LockedPeriodSettings, LockedPeriodViolations, Tenants
from qbo_sync.services.locked_period import LockedPeriodGuard, to_calendar_date


CUTOFF = date(2026, 3, 31)


@pytest.fixture
async def locked(seed, tenant):
    await seed(LockedPeriodSettings(tenant_id=tenant.id, enabled=True, cutoff_date=CUTOFF))


async def _check(session, tenant, txn_date, action="create"):
    guard = LockedPeriodGuard(session, tenant.id)
    return await guard.check_allowed(
        txn_date,
        entity_type="vendor_bill",
        entity_id=uuid.uuid4(),
        user_id="user-1",
        action=action,
    )


@pytest.mark.parametrize(
    ("txn_date", "allowed"),
    [
        (date(2026, 3, 30), False),
        (date(2026, 3, 31), False),
        (date(2026, 4, 1), True),
        ("2026-03-31T23:59:59Z", False),
        (datetime(2026, 4, 1, 0, 0, tzinfo=timezone.utc), True),
    ],
)
async def test_cutoff_day_itself_is_locked(locked, session, tenant, txn_date, allowed):
    result = await _check(session, tenant, txn_date)

    assert result.allowed is allowed
    if not allowed:
        assert "2026-03-31" in result.message


async def test_blocked_attempt_is_recorded(locked, session, tenant):
    await _check(session, tenant, date(2026, 1, 15), action="update")
    await session.commit()

    rows = (await session.execute(select(LockedPeriodViolations))).scalars().all()
    assert len(rows) == 1
    violation = rows[0]
    assert violation.tenant_id == tenant.id
    assert violation.action == "update"
    assert violation.user_id == "user-1"
    assert violation.attempted_date == date(2026, 1, 15)
    assert violation.cutoff_date == CUTOFF
    assert violation.blocked is True


async def test_allowed_attempt_records_nothing(locked, session, tenant):
    await _check(session, tenant, date(2026, 6, 1))

    rows = (await session.execute(select(LockedPeriodViolations))).scalars().all()
    assert rows == []


async def test_disabled_setting_allows(seed, session, tenant):
    await seed(LockedPeriodSettings(tenant_id=tenant.id, enabled=False, cutoff_date=CUTOFF))

    result = await _check(session, tenant, date(2025, 1, 1))

    assert result.allowed


async def test_no_setting_allows(session, tenant):
    assert (await _check(session, tenant, date(2020, 1, 1))).allowed


@pytest.mark.parametrize("txn_date", [None, "", "not-a-date"])
async def test_missing_or_unparseable_date_allows(locked, session, tenant, txn_date):
    assert (await _check(session, tenant, txn_date)).allowed


async def test_settings_read_failure_allows(locked, session, tenant, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("settings table unavailable")

    monkeypatch.setattr(repo, "get_locked_period_setting", broken)

    result = await _check(session, tenant, date(2020, 1, 1))

    assert result.allowed


def test_calendar_date_ignores_time_of_day():
    assert to_calendar_date("2026-03-31T08:15:00+02:00") == date(2026, 3, 31)
    assert to_calendar_date(datetime(2026, 3, 31, 23, 59)) == date(2026, 3, 31)
    assert to_calendar_date(None) is None


async def test_settings_read_error_keeps_session_usable(locked, session, tenant, monkeypatch):
    nested: list[bool] = []

    async def failing_query(db_session, *, tenant_id):
        nested.append(db_session.in_nested_transaction())
        await db_session.execute(text("SELECT cutoff_date FROM missing_locked_periods"))

    monkeypatch.setattr(repo, "get_locked_period_setting", failing_query)

    result = await _check(session, tenant, date(2020, 1, 1))

    assert result.allowed
    assert nested == [True]
    assert (await session.execute(select(Tenants.name))).scalar_one() == "Northwind Builders"


async def test_violation_write_failure_still_denies(locked, session, tenant, monkeypatch):
    async def failing_insert(*args, **kwargs):
        raise SQLAlchemyError("violations table unavailable")

    monkeypatch.setattr(repo, "add_locked_period_violation", failing_insert)

    result = await _check(session, tenant, date(2026, 2, 1))

    assert result.allowed is False
    assert "2026-03-31" in result.message
    rows = (await session.execute(select(LockedPeriodViolations))).scalars().all()
    assert rows == []
