# checkout/services/delivery_fee.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Tuple

from checkout.services.checkout_types import (
    ZERO,
    DeliveryQuote,
    DeliveryZoneFallback,
    FulfillmentType,
    ServiceabilityResult,
    Slot,
    StoreDeliveryConfig,
)


def _resolve_fee(
    resolved: Optional[ServiceabilityResult],
    zone: Optional[DeliveryZoneFallback],
    cfg: StoreDeliveryConfig,
    slot: Optional[Slot],
) -> Tuple[Decimal, str]:
    if slot is not None and slot.delivery_fee is not None:
        return slot.delivery_fee, "slot"
    if resolved is not None and resolved.serviceable and resolved.delivery_fee is not None:
        return resolved.delivery_fee, "tier"
    if zone is not None:
        return zone.delivery_fee, "zone"
    if cfg.base_delivery_fee is not None:
        return cfg.base_delivery_fee, "base"
    return ZERO, "none"


def _resolve_eta(
    resolved: Optional[ServiceabilityResult],
    zone: Optional[DeliveryZoneFallback],
) -> Tuple[Optional[int], str]:
    if resolved is not None and resolved.serviceable and resolved.eta_minutes is not None:
        return resolved.eta_minutes, "tier"
    if zone is not None and zone.eta_minutes is not None:
        return zone.eta_minutes, "zone"
    return None, "none"


def compute_delivery(
    choice: FulfillmentType,
    resolved: Optional[ServiceabilityResult],
    zone: Optional[DeliveryZoneFallback],
    cfg: Optional[StoreDeliveryConfig],
    item_total: Decimal,
    *,
    slot: Optional[Slot] = None,
) -> DeliveryQuote:
    """
    配送费 / 时效（纯函数）。

    费用优先级（高 → 低）：
      a) 自提 → 0
      b) 已选预约时段自带的固定费（仅 SCHEDULED 且选中时段时由调用方传入 slot）
      c) 该地址的距离分层费用（地址可配送时）
      d) 门店区域兜底费用
      e) 门店基础配送费
      f) 0
    时效按同样的层级独立解析（费用和时效可以来自不同层级）。

    免配送门槛：门店设置了 free_delivery_threshold 且 item_total >= 门槛时，
    无论哪一层给出的费用都强制为 0；覆盖前的费用只保留给展示用（original_fee）。
    """
    cfg = cfg or StoreDeliveryConfig()

    if choice is FulfillmentType.PICKUP:
        return DeliveryQuote(fee=ZERO, eta_minutes=None, fee_source="pickup", eta_source="pickup")

    fee, fee_src = _resolve_fee(resolved, zone, cfg, slot)
    eta, eta_src = _resolve_eta(resolved, zone)

    threshold = cfg.free_delivery_threshold
    if threshold is not None and item_total >= threshold:
        return DeliveryQuote(
            fee=ZERO,
            eta_minutes=eta,
            free_applied=True,
            original_fee=fee,
            fee_source=fee_src,
            eta_source=eta_src,
        )

    return DeliveryQuote(fee=fee, eta_minutes=eta, fee_source=fee_src, eta_source=eta_src)


def amount_to_free_delivery(cfg: Optional[StoreDeliveryConfig], item_total: Decimal) -> Optional[Decimal]:
    """距离免配送门槛还差多少；没有门槛返回 None，已达标返回 0"""
    if cfg is None or cfg.free_delivery_threshold is None:
        return None
    return max(cfg.free_delivery_threshold - item_total, ZERO)
