# checkout/api/routers/checkout_preview.py
from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, status

from checkout.api.problem import raise_422
from checkout.core.config import AppSettings, get_settings
from checkout.schemas.checkout_preview import (
    BillLineOut,
    BillPreviewIn,
    BillPreviewOut,
    DeliveryQuoteIn,
    DeliveryQuoteOut,
    SlotDatesOut,
)
from checkout.services.bill_ledger import bill_lines, compute_bill
from checkout.services.checkout_types import (
    CouponState,
    DeliveryZoneFallback,
    FulfillmentType,
    LoyaltyConfig,
    LoyaltyState,
    ServiceabilityResult,
    Slot,
    StoreDeliveryConfig,
    WalletState,
)
from checkout.services.delivery_fee import amount_to_free_delivery, compute_delivery

router = APIRouter(prefix="/checkout", tags=["checkout-preview"])


@router.post("/bill/preview", response_model=BillPreviewOut, status_code=status.HTTP_200_OK)
async def preview_bill(payload: BillPreviewIn) -> BillPreviewOut:
    """
    账单预览：只跑账单流水线，不访问任何后端。
    券额按调用方给出的固定金额处理（后端校验过的结果）。
    """
    coupon = None
    if payload.coupon_discount > 0 or payload.coupon_code:
        coupon = CouponState(
            code=(payload.coupon_code or "").upper(), discount_amount=payload.coupon_discount
        )

    cfg = LoyaltyConfig()
    if payload.loyalty is not None:
        cfg = LoyaltyConfig(
            is_enabled=payload.loyalty.is_enabled,
            earn_rate_per_hundred=payload.loyalty.earn_rate,
            min_redeem_points=payload.loyalty.min_redeem_points,
            max_redeem_percentage=payload.loyalty.max_redeem_percentage,
        )

    bill = compute_bill(
        payload.item_total,
        payload.delivery_fee,
        coupon,
        WalletState(balance=payload.wallet_balance),
        LoyaltyState(balance=payload.loyalty_points, config=cfg),
        use_wallet=payload.use_wallet,
        use_loyalty=payload.use_loyalty,
    )

    return BillPreviewOut(
        item_total=bill.item_total,
        delivery_fee=bill.delivery_fee,
        coupon_discount=bill.coupon_discount,
        grand_total=bill.grand_total,
        wallet_deduction=bill.wallet_deduction,
        after_wallet=bill.after_wallet,
        loyalty_cap=bill.loyalty_cap,
        loyalty_deduction=bill.loyalty_deduction,
        amount_to_pay=bill.amount_to_pay,
        wallet_covers_all=bill.wallet_covers_all,
        payment_method_required=not bill.wallet_covers_all,
        earn_preview=bill.earn_preview,
        lines=[BillLineOut(label=k, value=v) for k, v in bill_lines(bill)],
    )


@router.post("/delivery/quote", response_model=DeliveryQuoteOut, status_code=status.HTTP_200_OK)
async def quote_delivery(payload: DeliveryQuoteIn) -> DeliveryQuoteOut:
    if payload.fulfillment_type is FulfillmentType.PICKUP and payload.slot_fee is not None:
        raise_422(
            "slot_fee_with_pickup",
            "slot_fee only applies to scheduled delivery",
            details=[{"type": "validation", "path": "slot_fee", "reason": "pickup has no delivery slot"}],
        )

    resolved = None
    if payload.tier is not None:
        resolved = ServiceabilityResult(
            serviceable=payload.tier.serviceable,
            delivery_fee=payload.tier.delivery_fee,
            eta_minutes=payload.tier.estimated_minutes,
        )
    zone = None
    if payload.zone is not None:
        zone = DeliveryZoneFallback(
            delivery_fee=payload.zone.delivery_fee, eta_minutes=payload.zone.estimated_minutes
        )
    cfg = StoreDeliveryConfig(
        min_order_amount=payload.store.min_order_amount,
        base_delivery_fee=payload.store.base_delivery_fee,
        free_delivery_threshold=payload.store.free_delivery_threshold,
    )
    slot = None
    if payload.slot_fee is not None:
        slot = Slot(id="preview", start_time="", end_time="", capacity=1, delivery_fee=payload.slot_fee)

    q = compute_delivery(
        payload.fulfillment_type, resolved, zone, cfg, payload.item_total, slot=slot
    )
    min_amount = cfg.min_order_amount
    return DeliveryQuoteOut(
        fee=q.fee,
        eta_minutes=q.eta_minutes,
        free_applied=q.free_applied,
        original_fee=q.original_fee,
        fee_source=q.fee_source,
        eta_source=q.eta_source,
        provisional=q.provisional,
        amount_to_free_delivery=amount_to_free_delivery(cfg, payload.item_total),
        min_order_met=min_amount is None or payload.item_total >= min_amount,
    )


@router.get("/slots/dates", response_model=SlotDatesOut)
async def slot_dates(settings: AppSettings = Depends(get_settings)) -> SlotDatesOut:
    """可预约日期：今天起 SLOT_WINDOW_DAYS 天"""
    today = date.today()
    return SlotDatesOut(dates=[today + timedelta(days=i) for i in range(settings.SLOT_WINDOW_DAYS)])
