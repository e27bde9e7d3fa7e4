# checkout/adapters/base.py
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from checkout.services.checkout_types import (
    Address,
    CouponState,
    DeliveryZoneFallback,
    GatewayResult,
    LoyaltyState,
    OrderCreated,
    OrderDraft,
    PaymentMethod,
    PaymentSession,
    ServiceabilityResult,
    Slot,
    SlotCapability,
    StoreDeliveryConfig,
    WalletState,
)


class CheckoutBackend(Protocol):
    """
    结算编排依赖的远端接口（只定义调用形状，不定义服务端实现）

    失败约定：
    - 只读查询失败抛 LookupFailed（调用方降级）
    - validate_coupon 无效券抛 CouponRejected
    - create_order 被拒抛 OrderSubmissionError
    - create_payment_session / verify_payment 失败抛 PaymentLegError
    """

    async def lookup_delivery_tier(
        self, store_id: str, lat: float, lng: float
    ) -> ServiceabilityResult:
        ...

    async def lookup_delivery_zone(self, store_id: str) -> Optional[DeliveryZoneFallback]:
        ...

    async def validate_coupon(
        self, code: str, store_id: str, order_amount: Decimal
    ) -> CouponState:
        ...

    async def get_wallet_balance(self) -> WalletState:
        ...

    async def get_loyalty(self, store_id: str) -> LoyaltyState:
        ...

    async def check_delivery_slots(self, store_id: str) -> SlotCapability:
        ...

    async def list_available_slots(self, store_id: str, day: date) -> List[Slot]:
        ...

    async def create_order(self, draft: OrderDraft) -> OrderCreated:
        ...

    async def create_payment_session(self, order_id: str) -> PaymentSession:
        ...

    async def verify_payment(self, order_id: str, gateway_payload: Dict[str, Any]) -> None:
        ...

    async def get_payment_preference(self) -> Optional[PaymentMethod]:
        ...

    async def set_payment_preference(self, method: PaymentMethod) -> None:
        ...

    # 以下为外部读接口（地址簿 / 门店配置），结算只读不写
    async def list_addresses(self) -> List[Address]:
        ...

    async def get_store_config(self, store_id: str) -> StoreDeliveryConfig:
        ...


class PaymentGateway(Protocol):
    """
    支付网关 UI：拿着会话拉起收银台，返回“已支付（带签名）/ 用户取消”
    """

    async def open(self, session: PaymentSession) -> GatewayResult:
        ...
