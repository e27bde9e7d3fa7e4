# tests/services/test_slot_scheduler.py
from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from checkout.services.checkout_errors import BackendError, CheckoutValidationError
from checkout.services.checkout_types import (
    DeliveryMode,
    ExpressStatus,
    Slot,
    SlotCapability,
)
from checkout.services.slot_scheduler import SlotScheduler

pytestmark = pytest.mark.grp_flow

MORNING = Slot(id="s_morning", start_time="08:00", end_time="10:00", capacity=10, consumed=3)
NOON_FULL = Slot(id="s_noon", start_time="12:00", end_time="14:00", capacity=5, consumed=5)
EVENING = Slot(id="s_evening", start_time="18:00", end_time="20:00", capacity=10, consumed=0)


def _scheduler(backend, today) -> SlotScheduler:
    return SlotScheduler(backend, "store_1", window_days=8, today=lambda: today)


@pytest.mark.asyncio
async def test_no_slot_capability_pins_express(backend, today):
    backend.capability = SlotCapability(has_slots=False)
    s = _scheduler(backend, today)
    await s.load_capability()

    assert s.mode is DeliveryMode.EXPRESS
    assert await s.set_mode(DeliveryMode.SCHEDULED) is DeliveryMode.EXPRESS
    assert backend.ops("list_available_slots") == []


@pytest.mark.asyncio
async def test_capability_failure_means_no_scheduling(backend, today):
    backend.fail("check_delivery_slots", BackendError(status_code=500, message="boom"))
    s = _scheduler(backend, today)
    cap = await s.load_capability()

    assert cap.has_slots is False
    assert s.mode is DeliveryMode.EXPRESS


@pytest.mark.asyncio
async def test_express_unavailable_switches_to_scheduled_today(backend, today):
    backend.capability = SlotCapability(
        has_slots=True, express=ExpressStatus(enabled=True, available=False, reason="Store closed")
    )
    backend.slots_by_date = {today: [NOON_FULL, EVENING]}
    s = _scheduler(backend, today)
    await s.load_capability()

    assert s.mode is DeliveryMode.SCHEDULED
    assert s.selected_date == today
    # 第一个未满的时段被自动选中
    assert s.selected_slot == EVENING
    assert s.express_selectable is False


@pytest.mark.asyncio
async def test_express_disabled_also_switches(backend, today):
    backend.capability = SlotCapability(has_slots=True, express=ExpressStatus(enabled=False))
    backend.slots_by_date = {today: [MORNING]}
    s = _scheduler(backend, today)
    await s.load_capability()
    assert s.mode is DeliveryMode.SCHEDULED
    assert s.choice().slot == MORNING


@pytest.mark.asyncio
async def test_all_full_selects_nothing(backend, today):
    backend.capability = SlotCapability(has_slots=True)
    backend.slots_by_date = {today: [NOON_FULL]}
    s = _scheduler(backend, today)
    await s.load_capability()
    await s.set_mode(DeliveryMode.SCHEDULED)

    assert s.slots == [NOON_FULL]
    assert s.selected_slot is None
    assert s.choice().is_scheduled is False


@pytest.mark.asyncio
async def test_selecting_full_slot_is_noop(backend, today):
    backend.capability = SlotCapability(has_slots=True)
    backend.slots_by_date = {today: [MORNING, NOON_FULL, EVENING]}
    s = _scheduler(backend, today)
    await s.load_capability()
    await s.set_mode(DeliveryMode.SCHEDULED)
    assert s.selected_slot == MORNING

    assert s.select_slot("s_noon") is False
    assert s.selected_slot == MORNING
    assert s.select_slot("missing") is False
    assert s.select_slot("s_evening") is True
    assert s.selected_slot == EVENING


@pytest.mark.asyncio
async def test_stale_date_response_is_discarded(backend, today):
    d1, d2 = today + timedelta(days=1), today + timedelta(days=2)
    backend.capability = SlotCapability(has_slots=True)
    backend.slots_by_date = {d1: [MORNING], d2: [EVENING]}
    s = _scheduler(backend, today)
    await s.load_capability()

    gate = backend.gate("list_available_slots", d1)
    slow = asyncio.create_task(s.select_date(d1))
    await asyncio.sleep(0)

    await s.select_date(d2)
    gate.set()
    await slow

    assert s.selected_date == d2
    assert s.slots == [EVENING]
    assert s.selected_slot == EVENING
    assert s.loading is False


@pytest.mark.asyncio
async def test_switching_to_express_clears_slot_and_drops_in_flight(backend, today):
    backend.capability = SlotCapability(has_slots=True)
    backend.slots_by_date = {today: [MORNING]}
    s = _scheduler(backend, today)
    await s.load_capability()
    await s.set_mode(DeliveryMode.SCHEDULED)
    assert s.selected_slot == MORNING

    d3 = today + timedelta(days=3)
    backend.slots_by_date[d3] = [EVENING]
    gate = backend.gate("list_available_slots", d3)
    pending = asyncio.create_task(s.select_date(d3))
    await asyncio.sleep(0)

    await s.set_mode(DeliveryMode.EXPRESS)
    gate.set()
    await pending

    assert s.mode is DeliveryMode.EXPRESS
    assert s.selected_slot is None
    assert s.choice().is_scheduled is False


@pytest.mark.asyncio
async def test_slots_not_selectable_under_express(backend, today):
    backend.capability = SlotCapability(has_slots=True)
    backend.slots_by_date = {today: [MORNING, EVENING]}
    s = _scheduler(backend, today)
    await s.load_capability()
    await s.set_mode(DeliveryMode.SCHEDULED)
    assert [x.id for x in s.slots] == ["s_morning", "s_evening"]

    await s.set_mode(DeliveryMode.EXPRESS)

    assert s.slots == []
    assert s.select_slot("s_evening") is False
    assert s.selected_slot is None

    # 切回预约：重新拉取当天时段
    await s.set_mode(DeliveryMode.SCHEDULED)
    assert s.select_slot("s_evening") is True
    assert s.choice().slot == EVENING


@pytest.mark.asyncio
async def test_date_window_is_today_plus_seven(backend, today):
    backend.capability = SlotCapability(has_slots=True)
    s = _scheduler(backend, today)
    await s.load_capability()

    dates = s.available_dates()
    assert dates[0] == today
    assert dates[-1] == today + timedelta(days=7)
    assert len(dates) == 8

    await s.select_date(today + timedelta(days=7))
    with pytest.raises(CheckoutValidationError):
        await s.select_date(today + timedelta(days=8))
    with pytest.raises(CheckoutValidationError):
        await s.select_date(today - timedelta(days=1))


@pytest.mark.asyncio
async def test_slot_list_failure_degrades_to_empty(backend, today):
    backend.capability = SlotCapability(has_slots=True)
    backend.fail("list_available_slots", BackendError(status_code=500, message="boom"))
    s = _scheduler(backend, today)
    await s.load_capability()
    await s.set_mode(DeliveryMode.SCHEDULED)

    assert s.mode is DeliveryMode.SCHEDULED
    assert s.slots == []
    assert s.selected_slot is None
    assert s.loading is False


@pytest.mark.asyncio
async def test_delivery_time_label(backend, today):
    backend.capability = SlotCapability(has_slots=True, express=ExpressStatus(eta_minutes=25))
    backend.slots_by_date = {today: [MORNING]}
    s = _scheduler(backend, today)
    await s.load_capability()
    assert s.delivery_time_label() == "Express delivery in 25 min"

    await s.set_mode(DeliveryMode.SCHEDULED)
    assert s.delivery_time_label() == f"08:00 - 10:00, {today:%a %d %b}"
