from datetime import timedelta

import pytest

from libs.store import eq, gte, in_, lt, lte

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_insert_assigns_id_and_timestamps(store, clock, vehicle_data):
    record = await store.vehicles.insert(vehicle_data)

    assert record["id"]
    assert record["created_at"] == clock()
    assert record["updated_at"] == clock()
    assert record["registration_number"] == "REG-001"


@pytest.mark.asyncio
async def test_find_by_id_returns_copy(store, vehicle):
    found = await store.vehicles.find_by_id(vehicle["id"])
    found["make"] = "changed"

    again = await store.vehicles.find_by_id(vehicle["id"])
    assert again["make"] == "Volvo"


@pytest.mark.asyncio
async def test_find_unknown_id_returns_none(store):
    assert await store.vehicles.find_by_id("missing") is None


@pytest.mark.asyncio
async def test_update_by_id_patches_and_bumps_updated_at(store, clock, vehicle):
    clock.advance(minutes=5)
    updated = await store.vehicles.update_by_id(vehicle["id"], {"color": "red"})

    assert updated["color"] == "red"
    assert updated["make"] == "Volvo"
    assert updated["updated_at"] == clock()
    assert updated["created_at"] == vehicle["created_at"]


@pytest.mark.asyncio
async def test_update_unknown_id_returns_none(store):
    assert await store.vehicles.update_by_id("missing", {"color": "red"}) is None


@pytest.mark.asyncio
async def test_populate_expands_vehicle_reference(store, vehicle):
    emergency = await store.emergencies.insert({"vehicle_id": vehicle["id"], "severity": "high"})

    plain = await store.emergencies.find_by_id(emergency["id"])
    populated = await store.emergencies.find_by_id(emergency["id"], populate=("vehicle",))

    assert "vehicle" not in plain
    assert populated["vehicle"]["id"] == vehicle["id"]


@pytest.mark.asyncio
async def test_populate_unknown_reference_raises(store, vehicle):
    with pytest.raises(ValueError):
        await store.vehicles.find_by_id(vehicle["id"], populate=("owner",))


@pytest.mark.asyncio
async def test_query_filters_and_ordering(store, clock):
    base = clock()
    for days, status in [(3, "scheduled"), (1, "scheduled"), (2, "completed"), (5, "scheduled")]:
        await store.services.insert(
            {"service_date": base + timedelta(days=days), "status": status, "cost": 10.0}
        )

    scheduled = await store.services.query(eq("status", "scheduled"), order_by="service_date")
    assert [s["service_date"] for s in scheduled] == [
        base + timedelta(days=1),
        base + timedelta(days=3),
        base + timedelta(days=5),
    ]

    window = await store.services.query(
        gte("service_date", base + timedelta(days=2)),
        lte("service_date", base + timedelta(days=3)),
        order_by="service_date",
        descending=True,
    )
    assert [s["status"] for s in window] == ["scheduled", "completed"]

    before = await store.services.query(lt("service_date", base + timedelta(days=2)))
    assert len(before) == 1


@pytest.mark.asyncio
async def test_query_orders_missing_values_last(store):
    await store.services.insert({"service_date": None})
    await store.services.insert({"mileage": 10, "service_date": None})
    dated = await store.services.insert({"mileage": 5})

    ordered = await store.services.query(order_by="mileage", descending=True)
    assert ordered[0]["mileage"] == 10
    assert ordered[1]["id"] == dated["id"]
    assert ordered[2].get("mileage") is None


@pytest.mark.asyncio
async def test_count_and_sum(store):
    await store.services.insert({"status": "completed", "cost": 120.5})
    await store.services.insert({"status": "completed", "cost": None})
    await store.services.insert({"status": "scheduled", "cost": 99.0})

    assert await store.services.count_where() == 3
    assert await store.services.count_where(in_("status", ["completed"])) == 2
    assert await store.services.sum_where("cost", eq("status", "completed")) == 120.5
    assert await store.services.sum_where("cost", eq("status", "cancelled")) == 0.0


def test_comparison_filters_reject_missing_values():
    record = {"service_date": None}
    assert not lt("service_date", 1).matches(record)
    assert not gte("service_date", 1).matches(record)
    assert eq("service_date", None).matches(record)
