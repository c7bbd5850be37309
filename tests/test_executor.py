"""Tests for sync plan execution."""

from datetime import datetime, timedelta

import pytest

from calsync.errors import ApiErrorKind, ErrorKind, ReauthRequiredError
from calsync.models import EventPayload
from calsync.sync.executor import execute_plan
from calsync.sync.fingerprint import make_key
from calsync.sync.gatekeeper import AuthGatekeeper
from calsync.sync.reconciler import SyncPlan, read_destination
from calsync.sync.timezones import UTC

from conftest import api_error, fail_when


async def _no_sleep(_seconds: float) -> None:
    return None


def _payloads(count: int) -> list[EventPayload]:
    payloads = []
    for day in range(1, count + 1):
        start = datetime(2024, 3, day, 9, 0, tzinfo=UTC)
        payloads.append(EventPayload(
            key=make_key(f"uid-{day}", start),
            uid=f"uid-{day}",
            start=start,
            end=start + timedelta(hours=1),
            time_zone="UTC",
            summary=f"Event {day}",
            description="",
        ))
    return payloads


@pytest.mark.asyncio
async def test_creates_updates_and_deletes_are_counted(fake_client, march_window):
    existing = _payloads(3)
    for payload in existing:
        fake_client.create_event("cal", payload)
    records = fake_client.records()
    snapshot = read_destination(records, march_window)

    plan = SyncPlan(
        creates=_payloads(5)[3:],
        updates=[(existing[0], snapshot.by_key[existing[0].key])],
        deletes=[(existing[1].key, snapshot.by_key[existing[1].key])],
        skipped=1,
    )

    result = await execute_plan(fake_client, "cal", plan, AuthGatekeeper(sleep=_no_sleep))

    assert (result.created, result.updated, result.deleted, result.skipped) == (2, 1, 1, 1)
    assert result.success
    assert len(fake_client.events) == 4


@pytest.mark.asyncio
async def test_server_error_is_recorded_and_run_continues(fake_client):
    payloads = _payloads(4)
    failing = payloads[1].key
    fake_client.failures["create"] = fail_when(
        lambda key: key == failing, api_error(ApiErrorKind.OTHER, 500, "backendError")
    )

    result = await execute_plan(
        fake_client, "cal", SyncPlan(creates=payloads), AuthGatekeeper(sleep=_no_sleep)
    )

    assert result.created == 3
    assert len(result.errors) == 1
    assert result.errors[0].kind == ErrorKind.EVENT_WRITE_FAILED
    assert result.errors[0].key == failing
    assert result.errors[0].operation == "create"
    assert not result.success


@pytest.mark.asyncio
async def test_invalid_token_halts_remaining_writes(fake_client):
    payloads = _payloads(5)
    fake_client.failures["create"] = fail_when(
        lambda key: True, api_error(ApiErrorKind.AUTH, 401, "invalid_token")
    )

    with pytest.raises(ReauthRequiredError) as exc:
        await execute_plan(
            fake_client,
            "cal",
            SyncPlan(creates=payloads),
            AuthGatekeeper(sleep=_no_sleep),
            max_concurrency=1,
        )

    assert fake_client.count("create") == 1
    assert exc.value.result is not None
    assert exc.value.result.created == 0
    assert exc.value.kind == ErrorKind.REAUTH_REQUIRED


@pytest.mark.asyncio
async def test_duplicates_are_deleted_and_counted(fake_client, march_window):
    payload = _payloads(1)[0]
    fake_client.create_event("cal", payload)
    fake_client.create_event("cal", payload)
    snapshot = read_destination(fake_client.records(), march_window)

    result = await execute_plan(
        fake_client, "cal", SyncPlan(duplicates=snapshot.duplicates), AuthGatekeeper(sleep=_no_sleep)
    )

    assert result.duplicates_removed == 1
    assert result.deleted == 0
    assert len(fake_client.events) == 1
