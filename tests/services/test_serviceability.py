# tests/services/test_serviceability.py
from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from checkout.services.checkout_errors import BackendError
from checkout.services.checkout_types import (
    Address,
    DeliveryZoneFallback,
    FulfillmentType,
    ServiceabilityResult,
)
from checkout.services.serviceability import (
    FulfillmentState,
    ServiceabilityResolver,
    reconcile_fulfillment,
)

pytestmark = pytest.mark.grp_flow

HOME = Address(id="a_home", label="Home", latitude=12.9, longitude=77.6, is_default=True)
WORK = Address(id="a_work", label="Work", latitude=13.1, longitude=77.7)
NO_GEO = Address(id="a_text", label="Typed", address="12 Main Road, Indiranagar")

OK = ServiceabilityResult(serviceable=True, distance_km=1.2, delivery_fee=Decimal("20"), eta_minutes=15)
FAR = ServiceabilityResult(serviceable=False, distance_km=14.0, reason="Too far")


async def _spin(n: int = 5) -> None:
    for _ in range(n):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_partial_results_visible_while_other_lookup_in_flight(backend):
    backend.tiers = {(12.9, 77.6): OK, (13.1, 77.7): FAR}
    home_gate = backend.gate("lookup_delivery_tier", (12.9, 77.6))
    resolver = ServiceabilityResolver(backend)

    task = asyncio.create_task(resolver.resolve("store_1", [HOME, WORK]))
    await _spin()

    # WORK 先回来，HOME 还在途：部分结果是合法状态
    assert resolver.results() == {"a_work": FAR}
    assert not task.done()

    home_gate.set()
    results = await task
    assert results == {"a_home": OK, "a_work": FAR}
    assert len(backend.ops("lookup_delivery_tier")) == 2


@pytest.mark.asyncio
async def test_address_without_coordinates_is_never_queried(backend):
    backend.tiers = {(12.9, 77.6): OK}
    resolver = ServiceabilityResolver(backend)

    results = await resolver.resolve("store_1", [HOME, NO_GEO])

    assert "a_text" not in results
    assert [args[1:] for args in backend.ops("lookup_delivery_tier")] == [(12.9, 77.6)]


@pytest.mark.asyncio
async def test_single_failure_leaves_that_address_unknown(backend):
    backend.tiers = {(12.9, 77.6): OK}
    backend.fail("lookup_delivery_tier", BackendError(status_code=500, message="boom"), key=(13.1, 77.7))
    resolver = ServiceabilityResolver(backend)

    results = await resolver.resolve("store_1", [HOME, WORK])

    assert results == {"a_home": OK}
    assert resolver.get("a_work") is None


@pytest.mark.asyncio
async def test_cached_results_are_not_requeried(backend):
    backend.tiers = {(12.9, 77.6): OK, (13.1, 77.7): FAR}
    resolver = ServiceabilityResolver(backend)

    await resolver.resolve("store_1", [HOME])
    await resolver.resolve("store_1", [HOME, WORK])

    assert len(backend.ops("lookup_delivery_tier")) == 2


@pytest.mark.asyncio
async def test_store_switch_discards_in_flight_result(backend):
    backend.tiers = {(12.9, 77.6): OK}
    gate = backend.gate("lookup_delivery_tier", (12.9, 77.6))
    resolver = ServiceabilityResolver(backend)

    task = asyncio.create_task(resolver.resolve("store_1", [HOME]))
    await _spin()
    resolver.reset("store_2")
    gate.set()
    await task

    assert resolver.store_id == "store_2"
    assert resolver.results() == {}


@pytest.mark.asyncio
async def test_zone_fallback_loaded_and_failure_degrades(backend):
    backend.zone = DeliveryZoneFallback(delivery_fee=Decimal("25"), eta_minutes=35)
    resolver = ServiceabilityResolver(backend)
    assert await resolver.load_zone_fallback("store_1") == backend.zone
    assert resolver.zone_fallback == backend.zone

    backend.fail("lookup_delivery_zone", BackendError(status_code=503, message="down"))
    other = ServiceabilityResolver(backend)
    assert await other.load_zone_fallback("store_1") is None
    assert other.zone_fallback is None


# -------------------------------
# reconcile_fulfillment
# -------------------------------
def test_no_known_results_changes_nothing():
    st = FulfillmentState(selected_address_id="a_home")
    assert reconcile_fulfillment(st, [HOME, WORK], {}) == st


def test_all_known_unserviceable_forces_pickup():
    st = FulfillmentState(selected_address_id="a_home")
    out = reconcile_fulfillment(st, [HOME, WORK], {"a_home": FAR, "a_work": FAR})
    assert out.choice is FulfillmentType.PICKUP
    assert out.auto_pickup is True


def test_unknown_address_does_not_force_pickup_alone():
    # 唯一已知的是不可配送，NO_GEO 未知，但已知集合里 0 个可配送 → 仍切自提
    st = FulfillmentState(selected_address_id="a_work")
    out = reconcile_fulfillment(st, [WORK, NO_GEO], {"a_work": FAR})
    assert out.choice is FulfillmentType.PICKUP


def test_unserviceable_selection_switches_to_serviceable_address():
    st = FulfillmentState(selected_address_id="a_work")
    out = reconcile_fulfillment(st, [HOME, WORK], {"a_home": OK, "a_work": FAR})
    assert out.choice is FulfillmentType.DELIVERY
    assert out.selected_address_id == "a_home"


def test_default_address_preferred_when_several_serviceable():
    st = FulfillmentState()
    out = reconcile_fulfillment(st, [WORK, HOME], {"a_home": OK, "a_work": OK})
    assert out.selected_address_id == "a_home"


def test_no_auto_select_when_typing_new_address():
    st = FulfillmentState()
    out = reconcile_fulfillment(st, [HOME], {"a_home": OK}, auto_select=False)
    assert out.selected_address_id is None


def test_forced_pickup_reverts_once_serviceable_address_exists():
    st = FulfillmentState(choice=FulfillmentType.PICKUP, selected_address_id="a_work", auto_pickup=True)
    out = reconcile_fulfillment(st, [HOME, WORK], {"a_home": OK, "a_work": FAR})
    assert out.choice is FulfillmentType.DELIVERY
    assert out.auto_pickup is False
    assert out.selected_address_id == "a_home"


def test_manual_pickup_is_kept():
    st = FulfillmentState(choice=FulfillmentType.PICKUP, selected_address_id="a_home")
    out = reconcile_fulfillment(st, [HOME], {"a_home": OK})
    assert out.choice is FulfillmentType.PICKUP
