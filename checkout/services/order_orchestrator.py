# checkout/services/order_orchestrator.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from checkout.adapters.base import CheckoutBackend, PaymentGateway
from checkout.obs.metrics import checkout_payment_degraded_total, checkout_submissions_total
from checkout.services.best_effort import best_effort, fire_and_forget
from checkout.services.checkout_errors import (
    IllegalTransition,
    OrderSubmissionError,
    SubmissionInFlight,
)
from checkout.services.checkout_types import (
    CartSnapshot,
    FulfillmentType,
    OrderCreated,
    OrderDraft,
    PaymentMethod,
    PaymentSession,
    ScheduleChoice,
)

logger = logging.getLogger("checkout.order")


class CheckoutState(str, Enum):
    IDLE = "IDLE"
    SUBMITTING = "SUBMITTING"
    WALLET_COVERED = "WALLET_COVERED"
    AWAITING_PAYMENT_METHOD = "AWAITING_PAYMENT_METHOD"
    COD_CONFIRMED = "COD_CONFIRMED"
    GATEWAY_PENDING = "GATEWAY_PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    SUCCESS_SCREEN = "SUCCESS_SCREEN"


S = CheckoutState

_TERMINALS: FrozenSet[CheckoutState] = frozenset(
    {S.WALLET_COVERED, S.COD_CONFIRMED, S.PAID, S.CANCELLED, S.GATEWAY_UNAVAILABLE}
)

_TRANSITIONS: Dict[CheckoutState, FrozenSet[CheckoutState]] = {
    S.IDLE: frozenset({S.SUBMITTING}),
    # 下单失败回到 IDLE，等待用户显式重试
    S.SUBMITTING: frozenset({S.WALLET_COVERED, S.AWAITING_PAYMENT_METHOD, S.IDLE}),
    S.AWAITING_PAYMENT_METHOD: frozenset({S.COD_CONFIRMED, S.GATEWAY_PENDING}),
    S.GATEWAY_PENDING: frozenset({S.PAID, S.CANCELLED, S.GATEWAY_UNAVAILABLE}),
    S.SUCCESS_SCREEN: frozenset({S.IDLE}),
}
for _t in _TERMINALS:
    _TRANSITIONS[_t] = frozenset({S.SUCCESS_SCREEN})


class CheckoutRoute(str, Enum):
    SUCCESS = "SUCCESS"
    ADDRESS_REQUIRED = "ADDRESS_REQUIRED"


@dataclass(frozen=True)
class CheckoutRequest:
    """提交时刻的结算快照（由会话组装，编排器只读）"""

    cart: CartSnapshot
    fulfillment: FulfillmentType
    payment_method: PaymentMethod
    address_id: Optional[str] = None
    delivery_address: Optional[str] = None
    coupon_code: Optional[str] = None
    use_wallet: bool = False
    use_loyalty: bool = False
    schedule: ScheduleChoice = field(default_factory=ScheduleChoice)

    @property
    def has_address(self) -> bool:
        return bool(self.address_id or (self.delivery_address or "").strip())


@dataclass(frozen=True)
class CheckoutOutcome:
    route: CheckoutRoute
    order_id: Optional[str] = None
    terminal_state: Optional[CheckoutState] = None
    payment_pending: bool = False
    message: Optional[str] = None


def build_draft(req: CheckoutRequest) -> OrderDraft:
    if not req.cart.store_id:
        raise OrderSubmissionError("cart has no store")
    sched = req.schedule
    pickup = req.fulfillment is FulfillmentType.PICKUP
    return OrderDraft(
        store_id=req.cart.store_id,
        fulfillment_type=req.fulfillment,
        payment_method=req.payment_method,
        items=req.cart.lines,
        address_id=None if pickup else req.address_id,
        delivery_address=None if pickup or req.address_id else (req.delivery_address or "").strip() or None,
        coupon_code=req.coupon_code,
        use_wallet=req.use_wallet,
        use_loyalty=req.use_loyalty,
        delivery_slot_id=sched.slot.id if sched.is_scheduled and not pickup else None,
        scheduled_date=sched.scheduled_date if sched.is_scheduled and not pickup else None,
    )


class OrderOrchestrator:
    """
    下单 & 支付状态机：

        IDLE → SUBMITTING → {WALLET_COVERED, AWAITING_PAYMENT_METHOD}
        AWAITING_PAYMENT_METHOD → {COD_CONFIRMED, GATEWAY_PENDING}
        GATEWAY_PENDING → {PAID, CANCELLED, GATEWAY_UNAVAILABLE}
        (终态) → SUCCESS_SCREEN

    合同：
    - 配送单没有地址：直接转去收集地址，不建单
    - 单飞：提交进行中再次提交直接拒绝（SubmissionInFlight），不排队
    - 订单一旦创建，支付环节任何失败都不回滚，一律进成功页（必要时标记“待支付”）
    - 下单失败：回到 IDLE，抛 OrderSubmissionError，由用户决定是否重试
    """

    def __init__(
        self,
        backend: CheckoutBackend,
        gateway: PaymentGateway,
        *,
        on_order_created=None,
    ):
        self.backend = backend
        self.gateway = gateway
        # 建单成功回调（清空购物车等）
        self.on_order_created = on_order_created

        self.state = CheckoutState.IDLE
        self.history: List[CheckoutState] = [self.state]
        self.payment_session: Optional[PaymentSession] = None
        self.pending_side_effects: List["asyncio.Task[None]"] = []
        self._submitting = False

    @property
    def submitting(self) -> bool:
        return self._submitting

    def _to(self, nxt: CheckoutState) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if nxt not in allowed:
            raise IllegalTransition(f"{self.state.value} -> {nxt.value}")
        logger.debug("checkout state %s -> %s", self.state.value, nxt.value)
        self.state = nxt
        self.history.append(nxt)

    def reset(self) -> None:
        """成功页离开后回到 IDLE，开始新的结算"""
        if self.state is CheckoutState.SUCCESS_SCREEN:
            self._to(CheckoutState.IDLE)
        self.payment_session = None

    async def submit(self, req: CheckoutRequest) -> CheckoutOutcome:
        if self._submitting:
            raise SubmissionInFlight("order submission already in progress")

        if req.fulfillment is FulfillmentType.DELIVERY and not req.has_address:
            return CheckoutOutcome(route=CheckoutRoute.ADDRESS_REQUIRED)

        self._submitting = True
        try:
            return await self._submit(req)
        finally:
            self._submitting = False
            # 建单途中被取消：没有订单产生，回到 IDLE
            if self.state is CheckoutState.SUBMITTING:
                logger.warning("order submission cancelled store=%s", req.cart.store_id)
                self._to(CheckoutState.IDLE)

    async def _submit(self, req: CheckoutRequest) -> CheckoutOutcome:
        self._to(CheckoutState.SUBMITTING)
        try:
            draft = build_draft(req)
            created = await self.backend.create_order(draft)
        except Exception as e:
            checkout_submissions_total.labels("rejected").inc()
            logger.error("order submission rejected store=%s: %s", req.cart.store_id, e)
            self._to(CheckoutState.IDLE)
            if isinstance(e, OrderSubmissionError):
                raise
            raise OrderSubmissionError(str(e) or "Failed to place order") from e

        checkout_submissions_total.labels("created").inc()
        logger.info(
            "order created id=%s method=%s wallet_covered=%s",
            created.id,
            draft.payment_method.value,
            created.wallet_fully_covered,
        )
        if self.on_order_created is not None:
            self.on_order_created(created)

        if created.wallet_fully_covered:
            self._to(CheckoutState.WALLET_COVERED)
            return self._finish(created)

        self._to(CheckoutState.AWAITING_PAYMENT_METHOD)

        if draft.payment_method is PaymentMethod.COD:
            self._to(CheckoutState.COD_CONFIRMED)
            self.pending_side_effects.append(
                fire_and_forget(
                    "save_payment_preference",
                    self.backend.set_payment_preference(PaymentMethod.COD),
                )
            )
            return self._finish(created)

        return await self._pay_online(created)

    async def _pay_online(self, created: OrderCreated) -> CheckoutOutcome:
        self._to(CheckoutState.GATEWAY_PENDING)
        try:
            self.payment_session = await self.backend.create_payment_session(created.id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # 网关不可用：订单已存在，不回滚，进成功页并提示“待支付”
            checkout_payment_degraded_total.labels("gateway_unavailable").inc()
            logger.warning("payment session failed order=%s: %s", created.id, e)
            self._to(CheckoutState.GATEWAY_UNAVAILABLE)
            return self._finish(
                created,
                payment_pending=True,
                message="Order placed but payment gateway is unavailable. Please pay later from your orders.",
            )

        result = await best_effort("payment_gateway_open", self.gateway.open(self.payment_session))
        if result is None:
            checkout_payment_degraded_total.labels("gateway_unavailable").inc()
            self._to(CheckoutState.GATEWAY_UNAVAILABLE)
            return self._finish(
                created,
                payment_pending=True,
                message="Order placed but payment could not be started. Please pay later from your orders.",
            )

        if not result.paid:
            checkout_payment_degraded_total.labels("cancelled").inc()
            logger.info("payment cancelled by user order=%s", created.id)
            self._to(CheckoutState.CANCELLED)
            return self._finish(
                created,
                payment_pending=True,
                message="Payment not completed. You can pay later from your orders.",
            )

        # 验签失败不影响成功页：订单已经存在
        await best_effort("verify_payment", self.backend.verify_payment(created.id, result.payload))
        self._to(CheckoutState.PAID)
        return self._finish(created)

    def _finish(
        self,
        created: OrderCreated,
        *,
        payment_pending: bool = False,
        message: Optional[str] = None,
    ) -> CheckoutOutcome:
        terminal = self.state
        self.payment_session = None
        self._to(CheckoutState.SUCCESS_SCREEN)
        return CheckoutOutcome(
            route=CheckoutRoute.SUCCESS,
            order_id=created.id,
            terminal_state=terminal,
            payment_pending=payment_pending,
            message=message,
        )
