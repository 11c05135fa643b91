import pytest

from sceneswap.app.ledger.ledger import QuotaLedger
from sceneswap.app.utils.hashing import identity_digest, quota_key
from sceneswap.tests.fixtures.stores import (
    ExpireFailingQuotaStore,
    HangingQuotaStore,
    InMemoryQuotaStore,
    UnreachableQuotaStore,
)

pytestmark = pytest.mark.anyio

EMAIL = "alice@example.com"


# ----------------------------------------------------------------------
# Keys
# ----------------------------------------------------------------------

def test_quota_key_is_a_digest_not_the_identity():
    key = quota_key(EMAIL)

    assert key.startswith("free_count:")
    assert EMAIL not in key
    assert key == "free_count:" + identity_digest(EMAIL)
    assert len(identity_digest(EMAIL)) == 64


def test_identity_digest_rejects_empty_and_non_string():
    with pytest.raises(ValueError):
        identity_digest("")
    with pytest.raises(TypeError):
        identity_digest(None)  # type: ignore[arg-type]


# ----------------------------------------------------------------------
# peek
# ----------------------------------------------------------------------

async def test_peek_reports_usage_without_mutating():
    store = InMemoryQuotaStore()
    ledger = QuotaLedger(store, allowance=10)
    key = ledger.key_for(EMAIL)
    store.values[key] = "3"

    status = await ledger.peek(key)
    again = await ledger.peek(key)

    assert status.used == 3
    assert status.remaining == 7
    assert not status.unlimited
    assert not status.exhausted
    assert again == status
    assert store.calls == ["get", "get"]


async def test_peek_unknown_key_counts_as_zero():
    ledger = QuotaLedger(InMemoryQuotaStore(), allowance=10)

    status = await ledger.peek(ledger.key_for(EMAIL))

    assert status.used == 0
    assert status.remaining == 10


async def test_peek_reports_exhaustion_at_the_ceiling():
    store = InMemoryQuotaStore()
    ledger = QuotaLedger(store, allowance=2)
    key = ledger.key_for(EMAIL)
    store.values[key] = "5"

    status = await ledger.peek(key)

    assert status.used == 5
    assert status.remaining == 0
    assert status.exhausted
    assert "incr" not in store.calls


async def test_peek_treats_malformed_record_as_zero():
    store = InMemoryQuotaStore()
    ledger = QuotaLedger(store, allowance=10)
    key = ledger.key_for(EMAIL)
    store.values[key] = "not-a-number"

    status = await ledger.peek(key)

    assert status.used == 0
    assert status.remaining == 10


async def test_peek_without_store_is_unlimited():
    ledger = QuotaLedger(None, allowance=10)

    status = await ledger.peek(ledger.key_for(EMAIL))

    assert status.unlimited
    assert not status.exhausted
    assert not ledger.configured


async def test_peek_with_unreachable_store_is_unlimited():
    ledger = QuotaLedger(UnreachableQuotaStore(), allowance=10)

    status = await ledger.peek(ledger.key_for(EMAIL))

    assert status.unlimited
    assert status.remaining == 10


async def test_peek_with_hanging_store_times_out_to_unlimited():
    ledger = QuotaLedger(
        HangingQuotaStore(delay=2.0),
        allowance=10,
        timeout_seconds=0.05,
    )

    status = await ledger.peek(ledger.key_for(EMAIL))

    assert status.unlimited


# ----------------------------------------------------------------------
# consume
# ----------------------------------------------------------------------

async def test_consume_increments_once_and_refreshes_ttl():
    store = InMemoryQuotaStore()
    ledger = QuotaLedger(store, allowance=10, ttl_seconds=600)
    key = ledger.key_for(EMAIL)

    await ledger.consume(key)

    assert store.count(key) == 1
    assert store.ttls[key] == 600
    assert store.calls == ["incr", "expire"]


async def test_consume_with_unreachable_store_is_silent():
    store = UnreachableQuotaStore()
    ledger = QuotaLedger(store, allowance=10)

    await ledger.consume(ledger.key_for(EMAIL))

    assert store.calls == ["incr"]


async def test_consume_without_store_is_a_no_op():
    ledger = QuotaLedger(None)

    await ledger.consume(ledger.key_for(EMAIL))


async def test_consume_with_hanging_store_is_silent():
    ledger = QuotaLedger(HangingQuotaStore(delay=2.0), timeout_seconds=0.05)

    await ledger.consume(ledger.key_for(EMAIL))


def test_allowance_must_be_positive():
    with pytest.raises(ValueError):
        QuotaLedger(None, allowance=0)


# ----------------------------------------------------------------------
# Expiry
# ----------------------------------------------------------------------

async def test_lost_expire_still_commits_the_count():
    store = ExpireFailingQuotaStore()
    ledger = QuotaLedger(store, allowance=10)
    key = ledger.key_for(EMAIL)

    await ledger.consume(key)

    assert store.count(key) == 1
    assert store.calls == ["incr", "expire"]
    assert key not in store.ttls


async def test_next_consume_re_arms_a_lost_expiry():
    store = InMemoryQuotaStore()
    ledger = QuotaLedger(store, allowance=10, ttl_seconds=900)
    key = ledger.key_for(EMAIL)
    store.values[key] = "4"

    await ledger.consume(key)

    assert store.count(key) == 5
    assert store.ttls[key] == 900


async def test_peek_re_arms_expiry_of_an_exhausted_counter():
    store = InMemoryQuotaStore()
    ledger = QuotaLedger(store, allowance=3, ttl_seconds=900)
    key = ledger.key_for(EMAIL)
    store.values[key] = "3"

    status = await ledger.peek(key)

    assert status.exhausted
    assert store.calls == ["get", "ttl", "expire"]
    assert store.ttls[key] == 900
    assert store.count(key) == 3


async def test_peek_leaves_a_live_expiry_alone():
    store = InMemoryQuotaStore()
    ledger = QuotaLedger(store, allowance=3, ttl_seconds=900)
    key = ledger.key_for(EMAIL)
    store.values[key] = "3"
    store.ttls[key] = 120

    await ledger.peek(key)

    assert store.calls == ["get", "ttl"]
    assert store.ttls[key] == 120


async def test_peek_below_the_ceiling_does_not_read_the_ttl():
    store = InMemoryQuotaStore()
    ledger = QuotaLedger(store, allowance=3)
    key = ledger.key_for(EMAIL)
    store.values[key] = "2"

    await ledger.peek(key)

    assert store.calls == ["get"]


async def test_failed_expiry_repair_still_reports_exhaustion():
    store = ExpireFailingQuotaStore()
    ledger = QuotaLedger(store, allowance=1)
    key = ledger.key_for(EMAIL)
    store.values[key] = "1"

    status = await ledger.peek(key)

    assert status.exhausted
    assert not status.unlimited
