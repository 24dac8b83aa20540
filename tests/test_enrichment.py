import asyncio

from portal.schemas.records import Booking, BookingStatus, resolve_display_name
from portal.services.enrichment import NameResolver


def booking(booking_id, user_id, full_name=None):
    return Booking(id=booking_id, user_id=user_id, status=BookingStatus.PENDING, full_name=full_name)


def test_display_name_priority():
    assert resolve_display_name({"fullName": "Ana Reyes", "name": "Ana"}) == "Ana Reyes"
    assert resolve_display_name({"name": "Ana"}) == "Ana"
    assert resolve_display_name({"firstName": "Ana", "lastName": "Reyes"}) == "Ana Reyes"
    assert resolve_display_name({"displayName": "ana.r"}) == "ana.r"
    assert resolve_display_name({"fullName": "  "}) is None
    assert resolve_display_name(None) is None


async def test_enrich_fills_missing_names(store):
    await store.set("users", "u1", {"firstName": "Ana", "lastName": "Reyes"})
    resolver = NameResolver(store)

    enriched = await resolver.enrich(
        [booking("b1", "u1"), booking("b2", "u2", full_name="Walk-in")],
        "user_id",
        "full_name"
    )

    assert [b.full_name for b in enriched] == ["Ana Reyes", "Walk-in"]


async def test_unknown_user_falls_back_to_identifier(store):
    resolver = NameResolver(store)

    enriched = await resolver.enrich([booking("b1", "ghost")], "user_id", "full_name")

    assert enriched[0].full_name == "ghost"


async def test_one_lookup_per_distinct_id(store):
    await store.set("users", "u1", {"name": "Ana"})
    resolver = NameResolver(store)
    records = [booking("b1", "u1"), booking("b2", "u1"), booking("b3", "u1")]

    first = await resolver.enrich(records, "user_id", "full_name")
    second = await resolver.enrich(records, "user_id", "full_name")

    assert resolver.lookups == 1
    assert first == second


async def test_overlapping_passes_share_lookups(store):
    await store.set("users", "u1", {"name": "Ana"})
    resolver = NameResolver(store)

    await asyncio.gather(resolver.resolve(["u1"]), resolver.resolve(["u1"]))

    assert resolver.lookups == 1


async def test_failed_lookup_does_not_fail_the_batch(store, monkeypatch):
    await store.set("users", "u1", {"name": "Ana"})
    original_get = store.get

    async def flaky_get(collection, doc_id):
        if doc_id == "u2":
            raise RuntimeError("network down")
        return await original_get(collection, doc_id)

    monkeypatch.setattr(store, "get", flaky_get)
    resolver = NameResolver(store)

    enriched = await resolver.enrich([booking("b1", "u1"), booking("b2", "u2")], "user_id", "full_name")

    assert [b.full_name for b in enriched] == ["Ana", "u2"]

    # failures are not cached
    await resolver.resolve(["u2"])
    assert resolver.lookups == 3


async def test_slow_lookup_times_out(store, monkeypatch):
    async def slow_get(collection, doc_id):
        await asyncio.sleep(1)

    monkeypatch.setattr(store, "get", slow_get)
    resolver = NameResolver(store, timeout=0.01)

    names = await resolver.resolve(["u1"])

    assert names == {"u1": None}
    assert resolver.name_for("u1") == "u1"
    assert resolver.name_for(None) == "Unknown"
