# checkout/services/checkout_errors.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


class CheckoutValidationError(Exception):
    """本地校验失败：行内提示，不影响其它环节"""


class CouponRejected(CheckoutValidationError):
    """优惠券无效 / 过期 / 未达门槛（message 来自后端）"""


class AddressTooShort(CheckoutValidationError):
    """手填地址过短"""


class EmptyCart(CheckoutValidationError):
    """购物车为空"""


@dataclass(eq=False)
class MinimumOrderNotMet(CheckoutValidationError):
    min_amount: Decimal
    item_total: Decimal

    def __str__(self) -> str:
        return f"Minimum order amount is {self.min_amount} (cart total {self.item_total})"


class LookupFailed(Exception):
    """只读查询失败：调用方降级为“未知 / 空”，不阻断结算"""


@dataclass(eq=False)
class BackendError(LookupFailed):
    status_code: int
    message: str

    def __str__(self) -> str:
        return f"HTTP {self.status_code}: {self.message}"


class OrderSubmissionError(Exception):
    """下单被拒：阻断式提示，状态回到 IDLE，用户可重新提交"""


class SubmissionInFlight(Exception):
    """上一次提交尚未结束"""


class PaymentLegError(Exception):
    """支付环节失败（建会话 / 验签）：相对已创建订单而言永远非致命"""


class IllegalTransition(Exception):
    """状态机非法迁移"""
