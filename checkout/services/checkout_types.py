# checkout/services/checkout_types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

ZERO = Decimal("0")


def to_money(v: Any) -> Decimal:
    """后端金额可能是 int / float / str，统一转 Decimal（float 先转 str，避免二进制误差）"""
    if v is None:
        return ZERO
    if isinstance(v, Decimal):
        return v
    if isinstance(v, float):
        return Decimal(str(v))
    return Decimal(v)


def opt_money(v: Any) -> Optional[Decimal]:
    return None if v is None else to_money(v)


class FulfillmentType(str, Enum):
    DELIVERY = "DELIVERY"
    PICKUP = "PICKUP"


class PaymentMethod(str, Enum):
    ONLINE = "ONLINE"
    COD = "COD"


class DeliveryMode(str, Enum):
    EXPRESS = "EXPRESS"
    SCHEDULED = "SCHEDULED"


# -------------------------------
# 购物车
# -------------------------------
@dataclass(frozen=True)
class CartLine:
    store_product_id: str
    product_id: str
    variant_id: str
    unit_price: Decimal
    quantity: int
    product_name: str = ""
    variant_name: str = ""

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    """购物车只读快照：所有行同属一个 store_id"""

    store_id: Optional[str] = None
    store_name: Optional[str] = None
    lines: Tuple[CartLine, ...] = ()

    @property
    def total(self) -> Decimal:
        return sum((ln.line_total for ln in self.lines), ZERO)

    @property
    def item_count(self) -> int:
        return sum(ln.quantity for ln in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines


# -------------------------------
# 地址 / 可配送
# -------------------------------
@dataclass(frozen=True)
class Address:
    id: str
    label: str
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_default: bool = False

    @property
    def has_coords(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class ServiceabilityResult:
    serviceable: bool
    distance_km: Optional[float] = None
    delivery_fee: Optional[Decimal] = None
    eta_minutes: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class DeliveryZoneFallback:
    delivery_fee: Decimal
    eta_minutes: Optional[int] = None


@dataclass(frozen=True)
class StoreDeliveryConfig:
    min_order_amount: Optional[Decimal] = None
    base_delivery_fee: Optional[Decimal] = None
    free_delivery_threshold: Optional[Decimal] = None


@dataclass(frozen=True)
class DeliveryQuote:
    """
    配送费 / 时效结果：
    - fee          : 实收配送费（免配送门槛命中时为 0）
    - original_fee : 门槛覆盖前的费用，仅用于展示“原价 ₹X，现免费”
    - fee_source / eta_source : pickup | slot | tier | zone | base | none
      （两者可来自不同层级：某个查询还在途时）
    """

    fee: Decimal
    eta_minutes: Optional[int]
    free_applied: bool = False
    original_fee: Optional[Decimal] = None
    fee_source: str = "none"
    eta_source: str = "none"

    @property
    def provisional(self) -> bool:
        return self.fee_source == "zone"


# -------------------------------
# 优惠券 / 钱包 / 积分
# -------------------------------
@dataclass(frozen=True)
class CouponState:
    code: str
    discount_amount: Decimal
    description: Optional[str] = None


@dataclass(frozen=True)
class WalletState:
    balance: Decimal = ZERO


@dataclass(frozen=True)
class LoyaltyConfig:
    is_enabled: bool = False
    earn_rate_per_hundred: int = 0
    min_redeem_points: int = 0
    max_redeem_percentage: int = 0


@dataclass(frozen=True)
class LoyaltyState:
    balance: int = 0
    config: LoyaltyConfig = field(default_factory=LoyaltyConfig)


@dataclass(frozen=True)
class Bill:
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
    earn_preview: int


# -------------------------------
# 配送模式 / 时段
# -------------------------------
@dataclass(frozen=True)
class Slot:
    id: str
    start_time: str
    end_time: str
    capacity: int
    consumed: int = 0
    delivery_fee: Optional[Decimal] = None

    @property
    def available(self) -> int:
        return self.capacity - self.consumed

    @property
    def full(self) -> bool:
        return self.available <= 0


@dataclass(frozen=True)
class ExpressStatus:
    enabled: bool = True
    available: bool = True
    eta_minutes: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class SlotCapability:
    has_slots: bool = False
    express: ExpressStatus = field(default_factory=ExpressStatus)


@dataclass(frozen=True)
class ScheduleChoice:
    mode: DeliveryMode = DeliveryMode.EXPRESS
    slot: Optional[Slot] = None
    scheduled_date: Optional[date] = None

    @property
    def is_scheduled(self) -> bool:
        """只有 SCHEDULED 且已选时段才有意义；否则按即时配送处理"""
        return self.mode is DeliveryMode.SCHEDULED and self.slot is not None


# -------------------------------
# 下单 / 支付
# -------------------------------
@dataclass(frozen=True)
class OrderDraft:
    """一次提交尝试对应一个草稿；提交后不可变"""

    store_id: str
    fulfillment_type: FulfillmentType
    payment_method: PaymentMethod
    items: Tuple[CartLine, ...]
    address_id: Optional[str] = None
    delivery_address: Optional[str] = None
    coupon_code: Optional[str] = None
    use_wallet: bool = False
    use_loyalty: bool = False
    delivery_slot_id: Optional[str] = None
    scheduled_date: Optional[date] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "storeId": self.store_id,
            "fulfillmentType": self.fulfillment_type.value,
            "paymentMethod": self.payment_method.value,
            "useWallet": self.use_wallet,
            "useLoyalty": self.use_loyalty,
            "items": [
                {"storeProductId": ln.store_product_id, "quantity": ln.quantity}
                for ln in self.items
            ],
        }
        if self.address_id:
            payload["addressId"] = self.address_id
        if self.delivery_address:
            payload["deliveryAddress"] = self.delivery_address
        if self.coupon_code:
            payload["couponCode"] = self.coupon_code
        if self.delivery_slot_id:
            payload["deliverySlotId"] = self.delivery_slot_id
            if self.scheduled_date is not None:
                payload["scheduledDate"] = self.scheduled_date.isoformat()
        return payload


@dataclass(frozen=True)
class OrderCreated:
    id: str
    wallet_fully_covered: bool = False


@dataclass(frozen=True)
class PaymentSession:
    gateway_order_id: str
    amount: int  # 最小货币单位（paise）
    currency: str
    key: str


@dataclass(frozen=True)
class GatewayResult:
    """网关 UI 的结果：paid=True 时 payload 里带签名三元组，否则视为用户取消"""

    paid: bool
    payload: Dict[str, Any] = field(default_factory=dict)
