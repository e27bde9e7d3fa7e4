# checkout/services/checkout_session.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from checkout.adapters.base import CheckoutBackend, PaymentGateway
from checkout.core.config import AppSettings, get_settings
from checkout.obs.metrics import checkout_lookup_failures_total, checkout_stale_responses_total
from checkout.services.best_effort import best_effort
from checkout.services.bill_ledger import bill_lines, compute_bill
from checkout.services.cart_store import CartStore
from checkout.services.checkout_errors import (
    AddressTooShort,
    CouponRejected,
    EmptyCart,
    LookupFailed,
    MinimumOrderNotMet,
)
from checkout.services.checkout_types import (
    Address,
    Bill,
    CouponState,
    DeliveryQuote,
    FulfillmentType,
    LoyaltyState,
    PaymentMethod,
    ScheduleChoice,
    StoreDeliveryConfig,
    WalletState,
)
from checkout.services.delivery_fee import amount_to_free_delivery, compute_delivery
from checkout.services.order_orchestrator import (
    CheckoutOutcome,
    CheckoutRequest,
    OrderOrchestrator,
)
from checkout.services.serviceability import (
    FulfillmentState,
    ServiceabilityResolver,
    reconcile_fulfillment,
)
from checkout.services.slot_scheduler import SlotScheduler

logger = logging.getLogger("checkout.session")


@dataclass(frozen=True)
class LedgerInputs:
    """
    账单的券 / 钱包 / 积分 / 开关输入：整体不可变，每次变更整份替换。
    账单只从某一份完整快照计算，不会出现“旧券 + 新钱包”的混合状态。
    """

    coupon: Optional[CouponState] = None
    wallet: WalletState = field(default_factory=WalletState)
    loyalty: LoyaltyState = field(default_factory=LoyaltyState)
    use_wallet: bool = True
    use_loyalty: bool = False


class CheckoutSession:
    """
    一次结算会话：把购物车、地址、履约方式、账单输入、配送模式汇总起来，
    所有远端读取并发进行、各自降级，状态只在异步调用完成后以整体替换的方式更新。
    """

    def __init__(
        self,
        backend: CheckoutBackend,
        gateway: PaymentGateway,
        cart: CartStore,
        *,
        settings: Optional[AppSettings] = None,
        today: Callable[[], date] = date.today,
    ):
        snap = cart.snapshot()
        if snap.is_empty or not snap.store_id:
            raise EmptyCart("cart is empty")

        self.backend = backend
        self.cart = cart
        self.settings = settings or get_settings()
        self.store_id: str = snap.store_id

        self.resolver = ServiceabilityResolver(backend)
        self.scheduler = SlotScheduler(
            backend, self.store_id, window_days=self.settings.SLOT_WINDOW_DAYS, today=today
        )
        self.orchestrator = OrderOrchestrator(
            backend, gateway, on_order_created=lambda _created: cart.clear()
        )

        self.addresses: List[Address] = []
        self.fulfillment = FulfillmentState()
        self.use_new_address = False
        self.new_address: str = ""
        self.store_config = StoreDeliveryConfig()
        self.payment_method = PaymentMethod.ONLINE
        self.coupon_error: Optional[str] = None

        self._inputs = LedgerInputs()
        self._coupon_gen = 0
        self._payment_method_chosen = False

    # ---------- 加载 ----------

    async def load(self) -> None:
        """并发拉取全部只读数据；任何一项失败只降级，不阻断结算"""
        await asyncio.gather(
            self._load_addresses(),
            self._load_store_config(),
            self._load_wallet(),
            self._load_loyalty(),
            self._load_payment_preference(),
            self.resolver.load_zone_fallback(self.store_id),
            self.scheduler.load_capability(),
        )
        await self.refresh_serviceability()

    def _lookup_failed(self, lookup: str, e: Exception) -> None:
        checkout_lookup_failures_total.labels(lookup).inc()
        logger.warning("%s lookup failed store=%s: %s", lookup, self.store_id, e)

    async def _load_addresses(self) -> None:
        try:
            addresses = await self.backend.list_addresses()
        except LookupFailed as e:
            self._lookup_failed("addresses", e)
            self.use_new_address = True
            return
        self.addresses = list(addresses)
        default = next((a for a in self.addresses if a.is_default), None)
        if default is None and self.addresses:
            default = self.addresses[0]
        if default is not None:
            self.fulfillment = replace(self.fulfillment, selected_address_id=default.id)
        else:
            self.use_new_address = True

    async def _load_store_config(self) -> None:
        try:
            self.store_config = await self.backend.get_store_config(self.store_id)
        except LookupFailed as e:
            self._lookup_failed("store_config", e)

    async def _load_wallet(self) -> None:
        try:
            wallet = await self.backend.get_wallet_balance()
        except LookupFailed as e:
            self._lookup_failed("wallet", e)
            return
        self._inputs = replace(self._inputs, wallet=wallet)

    async def _load_loyalty(self) -> None:
        try:
            loyalty = await self.backend.get_loyalty(self.store_id)
        except LookupFailed as e:
            self._lookup_failed("loyalty", e)
            return
        self._inputs = replace(self._inputs, loyalty=loyalty)

    async def _load_payment_preference(self) -> None:
        pref = await best_effort("load_payment_preference", self.backend.get_payment_preference())
        if pref is not None and not self._payment_method_chosen:
            self.payment_method = pref

    # ---------- 地址 / 履约 ----------

    async def refresh_serviceability(self) -> None:
        results = await self.resolver.resolve(self.store_id, self.addresses)
        self.fulfillment = reconcile_fulfillment(
            self.fulfillment, self.addresses, results, auto_select=not self.use_new_address
        )

    async def select_address(self, address_id: str) -> FulfillmentState:
        if not any(a.id == address_id for a in self.addresses):
            raise KeyError(address_id)
        self.use_new_address = False
        self.fulfillment = replace(self.fulfillment, selected_address_id=address_id)
        await self.refresh_serviceability()
        return self.fulfillment

    async def add_address(self, address: Address) -> FulfillmentState:
        """地址簿新增后回调：新地址设为当前选择并解析"""
        self.addresses = [a for a in self.addresses if a.id != address.id] + [address]
        return await self.select_address(address.id)

    def use_typed_address(self, text: str) -> None:
        t = (text or "").strip()
        if len(t) < self.settings.MIN_ADDRESS_LENGTH:
            raise AddressTooShort(
                f"Address must be at least {self.settings.MIN_ADDRESS_LENGTH} characters"
            )
        self.use_new_address = True
        self.new_address = t
        self.fulfillment = replace(self.fulfillment, selected_address_id=None)

    async def set_fulfillment(self, choice: FulfillmentType) -> FulfillmentState:
        self.fulfillment = replace(self.fulfillment, choice=choice, auto_pickup=False)
        if choice is FulfillmentType.DELIVERY:
            await self.refresh_serviceability()
        return self.fulfillment

    # ---------- 券 / 钱包 / 积分 ----------

    async def apply_coupon(self, code: str) -> Optional[CouponState]:
        """
        返回生效的券；被新的申请 / 移除覆盖时返回 None（过期响应丢弃）。
        无效券抛 CouponRejected，账单其它部分不受影响。
        """
        code = (code or "").strip().upper()
        if not code:
            raise CouponRejected("Enter a coupon code")

        self._coupon_gen += 1
        gen = self._coupon_gen
        item_total = self.cart.snapshot().total

        try:
            coupon = await self.backend.validate_coupon(code, self.store_id, item_total)
        except CouponRejected as e:
            if gen != self._coupon_gen:
                checkout_stale_responses_total.labels("coupon").inc()
                return None
            self.coupon_error = str(e)
            raise
        except LookupFailed as e:
            if gen != self._coupon_gen:
                checkout_stale_responses_total.labels("coupon").inc()
                return None
            self._lookup_failed("coupon", e)
            self.coupon_error = "Could not validate coupon, please try again"
            raise CouponRejected(self.coupon_error) from e

        if gen != self._coupon_gen:
            checkout_stale_responses_total.labels("coupon").inc()
            logger.debug("drop stale coupon response code=%s", code)
            return None

        self.coupon_error = None
        self._inputs = replace(self._inputs, coupon=coupon)
        return coupon

    def remove_coupon(self) -> None:
        self._coupon_gen += 1
        self.coupon_error = None
        self._inputs = replace(self._inputs, coupon=None)

    def set_use_wallet(self, on: bool) -> None:
        self._inputs = replace(self._inputs, use_wallet=bool(on))

    def set_use_loyalty(self, on: bool) -> None:
        self._inputs = replace(self._inputs, use_loyalty=bool(on))

    def set_payment_method(self, method: PaymentMethod) -> None:
        self._payment_method_chosen = True
        self.payment_method = method

    @property
    def ledger_inputs(self) -> LedgerInputs:
        return self._inputs

    # ---------- 计算 ----------

    def schedule_choice(self) -> ScheduleChoice:
        if self.fulfillment.choice is FulfillmentType.PICKUP:
            return ScheduleChoice()
        return self.scheduler.choice()

    def delivery_quote(self) -> DeliveryQuote:
        resolved = None if self.use_new_address else self.resolver.get(
            self.fulfillment.selected_address_id
        )
        sched = self.schedule_choice()
        return compute_delivery(
            self.fulfillment.choice,
            resolved,
            self.resolver.zone_fallback,
            self.store_config,
            self.cart.snapshot().total,
            slot=sched.slot if sched.is_scheduled else None,
        )

    def bill(self) -> Bill:
        inputs = self._inputs
        quote = self.delivery_quote()
        return compute_bill(
            self.cart.snapshot().total,
            quote.fee,
            inputs.coupon,
            inputs.wallet,
            inputs.loyalty,
            use_wallet=inputs.use_wallet,
            use_loyalty=inputs.use_loyalty,
        )

    def bill_lines(self) -> List[Tuple[str, str]]:
        return bill_lines(self.bill(), self.delivery_quote())

    @property
    def payment_method_required(self) -> bool:
        """账单被钱包/积分完全覆盖时不再选择支付方式"""
        return not self.bill().wallet_covers_all

    def amount_to_free_delivery(self) -> Optional[Decimal]:
        return amount_to_free_delivery(self.store_config, self.cart.snapshot().total)

    def delivery_time_label(self) -> str:
        if self.fulfillment.choice is FulfillmentType.PICKUP:
            return "Pickup from store"
        return self.scheduler.delivery_time_label(express_eta=self.delivery_quote().eta_minutes)

    # ---------- 下单 ----------

    async def place_order(self) -> CheckoutOutcome:
        cart = self.cart.snapshot()
        if cart.is_empty:
            raise EmptyCart("cart is empty")

        min_amount = self.store_config.min_order_amount
        if min_amount is not None and cart.total < min_amount:
            raise MinimumOrderNotMet(min_amount=min_amount, item_total=cart.total)

        delivery = self.fulfillment.choice is FulfillmentType.DELIVERY
        if delivery and self.use_new_address and self.new_address:
            self.use_typed_address(self.new_address)

        inputs = self._inputs
        req = CheckoutRequest(
            cart=cart,
            fulfillment=self.fulfillment.choice,
            payment_method=self.payment_method,
            address_id=None if self.use_new_address else self.fulfillment.selected_address_id,
            delivery_address=self.new_address if self.use_new_address else None,
            coupon_code=inputs.coupon.code if inputs.coupon else None,
            use_wallet=inputs.use_wallet,
            use_loyalty=inputs.use_loyalty,
            schedule=self.schedule_choice(),
        )
        return await self.orchestrator.submit(req)
