# checkout/services/slot_scheduler.py
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Callable, List, Optional, Tuple

from checkout.adapters.base import CheckoutBackend
from checkout.obs.metrics import checkout_lookup_failures_total, checkout_stale_responses_total
from checkout.services.checkout_errors import CheckoutValidationError, LookupFailed
from checkout.services.checkout_types import (
    DeliveryMode,
    ScheduleChoice,
    Slot,
    SlotCapability,
)

logger = logging.getLogger("checkout.slots")

# (store_id, date, generation)：响应回来时和当前 key 比对，不一致就丢弃
SlotRequestKey = Tuple[str, date, int]


class SlotScheduler:
    """
    配送模式 & 预约时段：

    状态：EXPRESS（默认，可用时）/ SCHEDULED
    - 门店完全没有预约能力：钉死 EXPRESS（没有别的选择）
    - 有预约时段，且即时配送被关闭或当前不可用（营业时间外）：自动切 SCHEDULED
    - 切到 SCHEDULED：没选日期就默认“今天”并拉取时段
    - 切回 EXPRESS：清掉已选时段
    - 选日期（今天起 window_days 天内）：拉取该日时段，自动选第一个未满的；全满则不选
    - 满的时段不可选：选它是 no-op，不报错
    """

    def __init__(
        self,
        backend: CheckoutBackend,
        store_id: str,
        *,
        window_days: int = 8,
        today: Callable[[], date] = date.today,
    ):
        self.backend = backend
        self.store_id = store_id
        self.window_days = window_days
        self._today = today

        self.capability = SlotCapability()
        self.mode = DeliveryMode.EXPRESS
        self.selected_date: Optional[date] = None
        self.slots: List[Slot] = []
        self.selected_slot: Optional[Slot] = None
        self.loading = False

        self._generation = 0
        self._active_key: Optional[SlotRequestKey] = None

    # ---------- 查询 ----------

    def available_dates(self) -> List[date]:
        start = self._today()
        return [start + timedelta(days=i) for i in range(self.window_days)]

    def choice(self) -> ScheduleChoice:
        if self.mode is DeliveryMode.SCHEDULED:
            return ScheduleChoice(
                mode=self.mode, slot=self.selected_slot, scheduled_date=self.selected_date
            )
        return ScheduleChoice(mode=DeliveryMode.EXPRESS)

    @property
    def express_selectable(self) -> bool:
        ex = self.capability.express
        return ex.enabled and ex.available

    # ---------- 能力 / 模式 ----------

    async def load_capability(self) -> SlotCapability:
        try:
            cap = await self.backend.check_delivery_slots(self.store_id)
        except LookupFailed as e:
            # 查不到就当“没有预约能力”，按即时配送走
            checkout_lookup_failures_total.labels("delivery_slots_check").inc()
            logger.warning("slot capability lookup failed store=%s: %s", self.store_id, e)
            cap = SlotCapability()
        self.capability = cap
        await self._apply_mode_rules()
        return cap

    async def _apply_mode_rules(self) -> None:
        if not self.capability.has_slots:
            self._enter_express()
            return
        if not self.express_selectable and self.mode is not DeliveryMode.SCHEDULED:
            logger.info(
                "express unavailable store=%s (%s), switch to SCHEDULED",
                self.store_id,
                self.capability.express.reason or "disabled",
            )
            await self.set_mode(DeliveryMode.SCHEDULED)

    def _enter_express(self) -> None:
        self.mode = DeliveryMode.EXPRESS
        self.selected_slot = None
        self.slots = []
        # 让在途的时段请求失效
        self._generation += 1
        self._active_key = None
        self.loading = False

    async def set_mode(self, mode: DeliveryMode) -> DeliveryMode:
        if mode is DeliveryMode.EXPRESS:
            self._enter_express()
            return self.mode

        if not self.capability.has_slots:
            logger.debug("store=%s has no slots, SCHEDULED ignored", self.store_id)
            return self.mode

        self.mode = DeliveryMode.SCHEDULED
        await self.select_date(self.selected_date or self._today())
        return self.mode

    # ---------- 日期 / 时段 ----------

    async def select_date(self, day: date) -> List[Slot]:
        if day not in self.available_dates():
            raise CheckoutValidationError(
                f"date must be within {self.window_days} days from today"
            )

        self._generation += 1
        key: SlotRequestKey = (self.store_id, day, self._generation)
        self._active_key = key
        self.selected_date = day
        self.selected_slot = None
        self.slots = []
        self.loading = True

        try:
            slots = await self.backend.list_available_slots(self.store_id, day)
        except LookupFailed as e:
            if key != self._active_key:
                checkout_stale_responses_total.labels("slots").inc()
                return self.slots
            checkout_lookup_failures_total.labels("delivery_slots").inc()
            logger.warning("slot list failed store=%s date=%s: %s", self.store_id, day, e)
            self.loading = False
            return self.slots

        if key != self._active_key:
            checkout_stale_responses_total.labels("slots").inc()
            logger.debug("drop stale slots store=%s date=%s", self.store_id, day)
            return self.slots

        self.slots = list(slots)
        self.loading = False
        self.selected_slot = next((s for s in self.slots if not s.full), None)
        return self.slots

    def select_slot(self, slot_id: str) -> bool:
        """选中返回 True；非 SCHEDULED、不存在或已满返回 False 且保持原选择"""
        if self.mode is not DeliveryMode.SCHEDULED:
            return False
        slot = next((s for s in self.slots if s.id == slot_id), None)
        if slot is None or slot.full:
            return False
        self.selected_slot = slot
        return True

    def delivery_time_label(self, express_eta: Optional[int] = None) -> str:
        """配送时间那一行的展示文案"""
        choice = self.choice()
        if choice.is_scheduled:
            s = choice.slot
            return f"{s.start_time} - {s.end_time}, {choice.scheduled_date:%a %d %b}"
        if self.mode is DeliveryMode.SCHEDULED:
            return "Choose a delivery slot"
        eta = self.capability.express.eta_minutes or express_eta
        return f"Express delivery in {eta} min" if eta else "Express delivery"
