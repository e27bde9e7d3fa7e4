# checkout/services/serviceability.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Optional

from checkout.adapters.base import CheckoutBackend
from checkout.obs.metrics import checkout_lookup_failures_total, checkout_stale_responses_total
from checkout.services.checkout_errors import LookupFailed
from checkout.services.checkout_types import (
    Address,
    DeliveryZoneFallback,
    FulfillmentType,
    ServiceabilityResult,
)

logger = logging.getLogger("checkout.serviceability")


class ServiceabilityResolver:
    """
    地址可配送解析（按地址缓存，会话内有效）：

    - 有坐标、且没有缓存结果的地址各发一次距离分层查询，并发执行
    - 每个查询完成即写回缓存（按 address_id 覆盖，合并与完成顺序无关）
      → 解析过程中 results() 看到的“部分完成”也是合法状态
    - 没坐标的地址永远不解析，视为“未知”（不是“不可配送”）
    - 单个查询失败：只记日志，该地址保持“未知”，不影响其它地址
    - 切换门店（reset）后，旧门店在途的响应一律丢弃
    """

    def __init__(self, backend: CheckoutBackend):
        self.backend = backend
        self._store_id: Optional[str] = None
        self._generation = 0
        self._cache: Dict[str, ServiceabilityResult] = {}
        self._zone: Optional[DeliveryZoneFallback] = None

    @property
    def store_id(self) -> Optional[str]:
        return self._store_id

    @property
    def zone_fallback(self) -> Optional[DeliveryZoneFallback]:
        return self._zone

    def reset(self, store_id: Optional[str]) -> None:
        self._store_id = store_id
        self._generation += 1
        self._cache = {}
        self._zone = None

    def results(self) -> Dict[str, ServiceabilityResult]:
        """当前结果的拷贝（结果对象不可变，整体替换）"""
        return dict(self._cache)

    def get(self, address_id: Optional[str]) -> Optional[ServiceabilityResult]:
        if address_id is None:
            return None
        return self._cache.get(address_id)

    async def load_zone_fallback(self, store_id: str) -> Optional[DeliveryZoneFallback]:
        """门店级粗粒度费用/时效；失败或无配置都返回 None"""
        if store_id != self._store_id:
            self.reset(store_id)
        gen = self._generation
        try:
            zone = await self.backend.lookup_delivery_zone(store_id)
        except LookupFailed as e:
            checkout_lookup_failures_total.labels("delivery_zone").inc()
            logger.warning("delivery zone lookup failed store=%s: %s", store_id, e)
            return None
        if gen != self._generation:
            checkout_stale_responses_total.labels("delivery_zone").inc()
            return None
        self._zone = zone
        return zone

    async def resolve(
        self, store_id: str, addresses: Iterable[Address]
    ) -> Dict[str, ServiceabilityResult]:
        if store_id != self._store_id:
            self.reset(store_id)
        gen = self._generation

        pending = [
            a for a in addresses if a.has_coords and a.id not in self._cache
        ]
        if pending:
            await asyncio.gather(*(self._lookup_one(store_id, a, gen) for a in pending))
        return self.results()

    async def _lookup_one(self, store_id: str, addr: Address, gen: int) -> None:
        try:
            res = await self.backend.lookup_delivery_tier(
                store_id, float(addr.latitude), float(addr.longitude)
            )
        except LookupFailed as e:
            checkout_lookup_failures_total.labels("delivery_tier").inc()
            logger.warning(
                "delivery tier lookup failed store=%s address=%s: %s", store_id, addr.id, e
            )
            return

        if gen != self._generation:
            checkout_stale_responses_total.labels("delivery_tier").inc()
            logger.debug("drop stale tier result address=%s", addr.id)
            return

        self._cache[addr.id] = res


# -------------------------------
# 履约方式自动修正
# -------------------------------
@dataclass(frozen=True)
class FulfillmentState:
    choice: FulfillmentType = FulfillmentType.DELIVERY
    selected_address_id: Optional[str] = None
    # True = 因“全部不可配送”被强制切到自提；用户手动选自提时为 False
    auto_pickup: bool = False


def _first_serviceable(
    addresses: List[Address], results: Mapping[str, ServiceabilityResult]
) -> Optional[Address]:
    ok = [a for a in addresses if a.id in results and results[a.id].serviceable]
    if not ok:
        return None
    for a in ok:
        if a.is_default:
            return a
    return ok[0]


def reconcile_fulfillment(
    state: FulfillmentState,
    addresses: List[Address],
    results: Mapping[str, ServiceabilityResult],
    *,
    auto_select: bool = True,
) -> FulfillmentState:
    """
    规则：
    - 结果集为空（都还没解析 / 没坐标）：什么都不改
    - 结果集非空且 0 个可配送：强制 PICKUP
    - 至少 1 个可配送：
        * 当前选中地址明确不可配送 → 换到一个可配送地址（优先默认地址），而不是切自提
        * 之前是被强制的自提 → 恢复 DELIVERY
    """
    known = {a.id: results[a.id] for a in addresses if a.id in results}
    if not known:
        return state

    serviceable = _first_serviceable(addresses, known)
    if serviceable is None:
        if state.choice is FulfillmentType.PICKUP:
            return state
        logger.info("no serviceable address, fulfillment forced to PICKUP")
        return replace(state, choice=FulfillmentType.PICKUP, auto_pickup=True)

    out = state
    sel = known.get(state.selected_address_id) if state.selected_address_id else None
    if sel is not None and not sel.serviceable:
        logger.info(
            "selected address %s not serviceable, switched to %s",
            state.selected_address_id,
            serviceable.id,
        )
        out = replace(out, selected_address_id=serviceable.id)
    elif state.selected_address_id is None and auto_select:
        out = replace(out, selected_address_id=serviceable.id)

    if out.choice is FulfillmentType.PICKUP and out.auto_pickup:
        out = replace(out, choice=FulfillmentType.DELIVERY, auto_pickup=False)
    return out
