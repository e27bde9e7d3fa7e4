# checkout/schemas/checkout_preview.py
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from checkout.services.checkout_types import FulfillmentType


# -------------------------------
# 账单预览
# -------------------------------
class LoyaltyConfigIn(BaseModel):
    is_enabled: bool = False
    earn_rate: int = Field(default=0, ge=0, description="每 100 元可得积分")
    min_redeem_points: int = Field(default=0, ge=0)
    max_redeem_percentage: int = Field(default=0, ge=0, le=100)


class BillPreviewIn(BaseModel):
    item_total: Decimal = Field(..., ge=0)
    delivery_fee: Decimal = Field(default=Decimal("0"), ge=0)

    coupon_code: Optional[str] = None
    coupon_discount: Decimal = Field(default=Decimal("0"), ge=0)

    wallet_balance: Decimal = Field(default=Decimal("0"), ge=0)
    loyalty_points: int = Field(default=0, ge=0)
    loyalty: Optional[LoyaltyConfigIn] = None

    use_wallet: bool = True
    use_loyalty: bool = False


class BillLineOut(BaseModel):
    label: str
    value: str


class BillPreviewOut(BaseModel):
    item_total: Decimal
    delivery_fee: Decimal
    coupon_discount: Decimal
    grand_total: Decimal
    wallet_deduction: Decimal
    after_wallet: Decimal
    loyalty_cap: int
    loyalty_deduction: Decimal
    amount_to_pay: Decimal
    wallet_covers_all: bool
    payment_method_required: bool
    earn_preview: int
    lines: List[BillLineOut] = Field(default_factory=list)


# -------------------------------
# 配送费 / 时效
# -------------------------------
class TierIn(BaseModel):
    """某个地址的距离分层查询结果"""

    serviceable: bool
    delivery_fee: Optional[Decimal] = Field(default=None, ge=0)
    estimated_minutes: Optional[int] = Field(default=None, ge=0)


class ZoneIn(BaseModel):
    delivery_fee: Decimal = Field(..., ge=0)
    estimated_minutes: Optional[int] = Field(default=None, ge=0)


class StoreRulesIn(BaseModel):
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    base_delivery_fee: Optional[Decimal] = Field(default=None, ge=0)
    free_delivery_threshold: Optional[Decimal] = Field(default=None, ge=0)


class DeliveryQuoteIn(BaseModel):
    fulfillment_type: FulfillmentType = FulfillmentType.DELIVERY
    item_total: Decimal = Field(..., ge=0)
    tier: Optional[TierIn] = None
    zone: Optional[ZoneIn] = None
    store: StoreRulesIn = Field(default_factory=StoreRulesIn)
    # 已选预约时段自带的固定费（仅 SCHEDULED 且已选时段时传）
    slot_fee: Optional[Decimal] = Field(default=None, ge=0)


class DeliveryQuoteOut(BaseModel):
    fee: Decimal
    eta_minutes: Optional[int] = None
    free_applied: bool = False
    original_fee: Optional[Decimal] = None
    fee_source: str
    eta_source: str
    provisional: bool = False
    amount_to_free_delivery: Optional[Decimal] = None
    min_order_met: bool = True


# -------------------------------
# 预约日期
# -------------------------------
class SlotDatesOut(BaseModel):
    dates: List[date]
