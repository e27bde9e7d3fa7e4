# checkout/adapters/http_backend.py
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from checkout.core.config import AppSettings, get_settings
from checkout.services.checkout_errors import (
    BackendError,
    CouponRejected,
    LookupFailed,
    OrderSubmissionError,
    PaymentLegError,
)
from checkout.services.checkout_types import (
    Address,
    CouponState,
    DeliveryZoneFallback,
    ExpressStatus,
    LoyaltyConfig,
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
    opt_money,
    to_money,
)

logger = logging.getLogger("checkout.http")

API_PREFIX = "/api/v1"


def _opt_int(v: Any) -> Optional[int]:
    return None if v is None else int(v)


def _opt_float(v: Any) -> Optional[float]:
    return None if v is None else float(v)


def _as_dict(d: Any, what: str) -> Dict[str, Any]:
    """2xx 但 data 不是对象（null / 列表 / 字符串）：按查询失败处理"""
    if not isinstance(d, dict):
        raise LookupFailed(f"{what}: unexpected payload {type(d).__name__}")
    return d


def _as_rows(d: Any, what: str) -> List[Dict[str, Any]]:
    if d is None:
        return []
    if not isinstance(d, list) or not all(isinstance(r, dict) for r in d):
        raise LookupFailed(f"{what}: unexpected payload {type(d).__name__}")
    return d


class HttpCheckoutBackend:
    """
    基于 httpx.AsyncClient 的后端实现。

    - 响应统一是 {"success": true, "data": ...} 信封，这里只取 data
    - 非 2xx：优先用 body.message 作为错误文案，拿不到就 "HTTP <code>"
    - client 可注入（测试用 httpx.MockTransport）；不注入时按 settings 自建并由 aclose() 释放
    """

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        settings: Optional[AppSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.settings.API_BASE_URL,
            timeout=self.settings.API_TIMEOUT_SECONDS,
        )
        self.token = token

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "HttpCheckoutBackend":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ---------- 底层请求 ----------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            resp = await self.client.request(
                method, f"{API_PREFIX}{path}", json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            # 超时 / 连接失败：视为普通失败，由调用方按环节处理
            raise BackendError(status_code=0, message=f"{type(e).__name__}: {e}") from e

        if resp.is_error:
            try:
                body = resp.json()
                message = (body.get("message") if isinstance(body, dict) else None) or f"HTTP {resp.status_code}"
            except ValueError:
                message = "Request failed"
            raise BackendError(status_code=resp.status_code, message=str(message))

        try:
            body = resp.json()
        except ValueError as e:
            # 2xx 但不是 JSON（网关 / 代理错误页）
            raise BackendError(status_code=resp.status_code, message="Invalid JSON response") from e
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    # ---------- 配送 ----------

    async def lookup_delivery_tier(
        self, store_id: str, lat: float, lng: float
    ) -> ServiceabilityResult:
        d = await self._request(
            "POST",
            "/delivery-tiers/lookup",
            json={"storeId": store_id, "latitude": lat, "longitude": lng},
        )
        d = _as_dict(d, "delivery tier")
        return ServiceabilityResult(
            serviceable=bool(d.get("serviceable")),
            distance_km=_opt_float(d.get("distance")),
            delivery_fee=opt_money(d.get("deliveryFee")),
            eta_minutes=_opt_int(d.get("estimatedMinutes")),
            reason=d.get("reason"),
        )

    async def lookup_delivery_zone(self, store_id: str) -> Optional[DeliveryZoneFallback]:
        d = await self._request("GET", "/delivery-zones/lookup", params={"storeId": store_id})
        if not d:
            return None
        d = _as_dict(d, "delivery zone")
        return DeliveryZoneFallback(
            delivery_fee=to_money(d.get("deliveryFee")),
            eta_minutes=_opt_int(d.get("estimatedMinutes")),
        )

    async def check_delivery_slots(self, store_id: str) -> SlotCapability:
        d = await self._request("GET", "/delivery-slots/check", params={"storeId": store_id})
        d = _as_dict(d, "delivery slots check")
        ex = d.get("express")
        if not isinstance(ex, dict):
            ex = {}
        return SlotCapability(
            has_slots=bool(d.get("hasSlots")),
            express=ExpressStatus(
                enabled=bool(ex.get("enabled", True)),
                available=bool(ex.get("available", True)),
                eta_minutes=_opt_int(ex.get("etaMinutes")),
                reason=ex.get("reason"),
            ),
        )

    async def list_available_slots(self, store_id: str, day: date) -> List[Slot]:
        rows = await self._request(
            "GET",
            "/delivery-slots/available",
            params={"storeId": store_id, "date": day.isoformat()},
        )
        out: List[Slot] = []
        for r in _as_rows(rows, "delivery slots"):
            capacity = int(r.get("maxOrders") or 0)
            available = int(r.get("available") or 0)
            out.append(
                Slot(
                    id=str(r["id"]),
                    start_time=str(r.get("startTime") or ""),
                    end_time=str(r.get("endTime") or ""),
                    capacity=capacity,
                    consumed=capacity - available,
                    delivery_fee=opt_money(r.get("deliveryFee")),
                )
            )
        return out

    # ---------- 优惠 / 余额 ----------

    async def validate_coupon(
        self, code: str, store_id: str, order_amount: Decimal
    ) -> CouponState:
        try:
            d = await self._request(
                "POST",
                "/coupons/validate",
                json={"code": code, "storeId": store_id, "orderAmount": float(order_amount)},
            )
        except BackendError as e:
            if 400 <= e.status_code < 500:
                raise CouponRejected(e.message) from e
            raise
        d = _as_dict(d, "coupon validation")
        if not d.get("valid", True):
            raise CouponRejected(d.get("message") or "Invalid coupon")
        return CouponState(
            code=str(d.get("code") or code.upper()),
            discount_amount=to_money(d.get("discount")),
            description=d.get("description"),
        )

    async def get_wallet_balance(self) -> WalletState:
        d = await self._request("GET", "/wallet")
        d = _as_dict(d, "wallet")
        return WalletState(balance=to_money(d.get("balance")))

    async def get_loyalty(self, store_id: str) -> LoyaltyState:
        d = await self._request("GET", "/loyalty", params={"storeId": store_id})
        d = _as_dict(d, "loyalty")
        cfg = d.get("config")
        bal = d.get("balance")
        if not isinstance(bal, dict):
            bal = {}
        config = LoyaltyConfig()
        if isinstance(cfg, dict):
            config = LoyaltyConfig(
                is_enabled=bool(cfg.get("isEnabled")),
                earn_rate_per_hundred=int(cfg.get("earnRate") or 0),
                min_redeem_points=int(cfg.get("minRedeemPoints") or 0),
                max_redeem_percentage=int(cfg.get("maxRedeemPercentage") or 0),
            )
        return LoyaltyState(balance=int(bal.get("points") or 0), config=config)

    # ---------- 下单 / 支付 ----------

    async def create_order(self, draft: OrderDraft) -> OrderCreated:
        try:
            d = await self._request("POST", "/orders", json=draft.to_payload())
        except BackendError as e:
            raise OrderSubmissionError(e.message) from e
        if not isinstance(d, dict) or not d.get("id"):
            raise OrderSubmissionError("Order response missing id")
        return OrderCreated(
            id=str(d["id"]),
            wallet_fully_covered=bool(d.get("walletFullyCovered", False)),
        )

    async def create_payment_session(self, order_id: str) -> PaymentSession:
        try:
            d = await self._request("POST", f"/orders/{order_id}/payment", json={})
        except BackendError as e:
            raise PaymentLegError(str(e)) from e
        if not isinstance(d, dict) or not d.get("razorpay_order_id"):
            raise PaymentLegError("payment session missing gateway order id")
        return PaymentSession(
            gateway_order_id=str(d["razorpay_order_id"]),
            amount=int(d.get("amount") or 0),
            currency=str(d.get("currency") or self.settings.CURRENCY),
            key=str(d.get("key_id") or ""),
        )

    async def verify_payment(self, order_id: str, gateway_payload: Dict[str, Any]) -> None:
        try:
            await self._request("POST", f"/orders/{order_id}/verify-payment", json=gateway_payload)
        except BackendError as e:
            raise PaymentLegError(str(e)) from e

    async def get_payment_preference(self) -> Optional[PaymentMethod]:
        d = await self._request("GET", "/users/me/payment-preference")
        method = d.get("method") if isinstance(d, dict) else None
        if not method:
            return None
        try:
            return PaymentMethod(str(method).upper())
        except ValueError:
            logger.warning("unknown payment preference %r, ignored", method)
            return None

    async def set_payment_preference(self, method: PaymentMethod) -> None:
        await self._request("PUT", "/users/me/payment-preference", json={"method": method.value})

    # ---------- 外部只读 ----------

    async def list_addresses(self) -> List[Address]:
        rows = await self._request("GET", "/addresses")
        return [
            Address(
                id=str(r["id"]),
                label=str(r.get("label") or ""),
                address=str(r.get("address") or ""),
                latitude=_opt_float(r.get("latitude")),
                longitude=_opt_float(r.get("longitude")),
                is_default=bool(r.get("isDefault")),
            )
            for r in _as_rows(rows, "addresses")
        ]

    async def get_store_config(self, store_id: str) -> StoreDeliveryConfig:
        d = await self._request("GET", f"/stores/{store_id}")
        if not d:
            raise LookupFailed(f"store {store_id} not found")
        d = _as_dict(d, "store config")
        return StoreDeliveryConfig(
            min_order_amount=opt_money(d.get("minOrderAmount")),
            base_delivery_fee=opt_money(d.get("baseDeliveryFee")),
            free_delivery_threshold=opt_money(d.get("freeDeliveryThreshold")),
        )
