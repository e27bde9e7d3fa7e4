# checkout/adapters/gateway.py
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlencode

from checkout.core.config import AppSettings, get_settings
from checkout.services.checkout_types import GatewayResult, PaymentSession

HOSTED_CHECKOUT_URL = "https://api.razorpay.com/v1/checkout/embedded"

# 打开托管收银台的回调：返回网关回传的签名字段；用户关闭 / 取消时返回 None
Opener = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


def build_checkout_url(session: PaymentSession, *, display_name: str) -> str:
    query = urlencode(
        {
            "key_id": session.key,
            "order_id": session.gateway_order_id,
            "amount": session.amount,
            "currency": session.currency,
            "name": display_name,
            "description": "Order Payment",
        }
    )
    return f"{HOSTED_CHECKOUT_URL}?{query}"


class HostedCheckoutGateway:
    """
    托管收银台：拼 URL 交给 opener（浏览器 / WebView），按回传判断支付成功或取消。
    """

    def __init__(self, opener: Opener, *, settings: Optional[AppSettings] = None):
        self.opener = opener
        self.settings = settings or get_settings()

    async def open(self, session: PaymentSession) -> GatewayResult:
        url = build_checkout_url(session, display_name=self.settings.GATEWAY_DISPLAY_NAME)
        payload = await self.opener(url)
        if not payload or not payload.get("razorpay_payment_id"):
            return GatewayResult(paid=False)
        return GatewayResult(
            paid=True,
            payload={
                "razorpay_order_id": payload.get("razorpay_order_id") or session.gateway_order_id,
                "razorpay_payment_id": payload["razorpay_payment_id"],
                "razorpay_signature": payload.get("razorpay_signature", ""),
            },
        )
