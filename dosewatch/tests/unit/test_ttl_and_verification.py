from datetime import timedelta

import pytest

from conftest import NOW_LOCAL, FakeNotifier, FixedClock, make_cfg
from dosewatch.core.ttl_store import InMemoryTTLStore
from dosewatch.core.verification import InvalidPhoneNumber, VerificationCodeService


def test_ttl_store_expires_entries():
    clock = FixedClock(NOW_LOCAL)
    store = InMemoryTTLStore(clock)
    store.put("a", "1", timedelta(minutes=10))
    store.put("b", "2", timedelta(minutes=1))
    assert store.get("a") == "1" and "b" in store

    clock.advance(minutes=2)
    assert store.get("b") is None
    assert store.get("a") == "1"

    clock.advance(minutes=10)
    store.put("c", "3", timedelta(minutes=5))
    assert store.sweep_expired() == 1  # only "a" left to sweep
    assert len(store) == 1


def test_ttl_store_delete():
    store = InMemoryTTLStore(FixedClock(NOW_LOCAL))
    store.put("k", "v", timedelta(minutes=1))
    assert store.delete("k") is True
    assert store.delete("k") is False


def _service(notifier=None, clock=None):
    clock = clock or FixedClock(NOW_LOCAL)
    return VerificationCodeService(make_cfg(), InMemoryTTLStore(clock), notifier or FakeNotifier()), clock


@pytest.mark.asyncio
async def test_issue_and_verify_code_once():
    notifier = FakeNotifier()
    svc, _ = _service(notifier)
    assert await svc.issue("52 536 742") is True

    (_, phone, text), = notifier.smses
    assert phone == "+21652536742"
    code = text.split("est ")[1][:6]
    assert code.isdigit()

    assert svc.verify("052536742", "000000" if code != "000000" else "111111") is False
    assert svc.verify("+216 52 536 742", code) is True
    assert svc.verify("52536742", code) is False  # consumed


@pytest.mark.asyncio
async def test_code_expires_after_ttl():
    notifier = FakeNotifier()
    svc, clock = _service(notifier)
    await svc.issue("52536742")
    code = notifier.smses[0][2].split("est ")[1][:6]
    clock.advance(minutes=11)
    assert svc.sweep() == 1
    assert svc.verify("52536742", code) is False


@pytest.mark.asyncio
async def test_issue_reports_sms_failure():
    svc, _ = _service(FakeNotifier(sms_ok=False))
    assert await svc.issue("52536742") is False


def test_invalid_phone_is_rejected():
    svc, _ = _service()
    with pytest.raises(InvalidPhoneNumber):
        svc.verify("12", "123456")
