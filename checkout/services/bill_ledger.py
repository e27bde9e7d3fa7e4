# checkout/services/bill_ledger.py
from __future__ import annotations

import math
from decimal import Decimal
from typing import List, Optional, Tuple

from checkout.services.checkout_types import (
    ZERO,
    Bill,
    CouponState,
    DeliveryQuote,
    LoyaltyState,
    WalletState,
)

HUNDRED = Decimal("100")


def _non_negative(name: str, v: Decimal) -> Decimal:
    if v < 0:
        raise ValueError(f"{name} must be >= 0, got {v}")
    return v


def compute_bill(
    item_total: Decimal,
    delivery_fee: Decimal,
    coupon: Optional[CouponState],
    wallet: WalletState,
    loyalty: LoyaltyState,
    *,
    use_wallet: bool = True,
    use_loyalty: bool = False,
) -> Bill:
    """
    账单流水线（纯函数，顺序敏感，不能调换）：

        grand_total      = item_total - coupon + delivery_fee
        wallet_deduction = use_wallet ? min(wallet, grand_total) : 0
        after_wallet     = grand_total - wallet_deduction
        loyalty_cap      = floor(after_wallet * max_redeem_pct / 100)
        loyalty_deduction= (use_loyalty && enabled && points >= min_redeem)
                             ? min(points, after_wallet, loyalty_cap) : 0
        amount_to_pay    = after_wallet - loyalty_deduction
        wallet_covers_all= amount_to_pay == 0 && (wallet_deduction > 0 || loyalty_deduction > 0)
        earn_preview     = enabled ? floor(grand_total / 100 * earn_rate) : 0

    积分与货币 1:1 兑换（固定汇率）。
    券额是后端已按购物车校验过的固定金额，这里不再重算百分比规则。
    入参约定非负；grand_total 兜底不低于 0，保证 amount_to_pay >= 0。
    """
    item_total = _non_negative("item_total", item_total)
    delivery_fee = _non_negative("delivery_fee", delivery_fee)
    coupon_discount = _non_negative("coupon_discount", coupon.discount_amount if coupon else ZERO)
    wallet_balance = _non_negative("wallet_balance", wallet.balance)

    cfg = loyalty.config

    grand_total = max(item_total - coupon_discount + delivery_fee, ZERO)

    wallet_deduction = min(wallet_balance, grand_total) if use_wallet else ZERO
    after_wallet = grand_total - wallet_deduction

    loyalty_cap = math.floor(after_wallet * Decimal(cfg.max_redeem_percentage) / HUNDRED)

    points = max(loyalty.balance, 0)
    loyalty_deduction = ZERO
    if use_loyalty and cfg.is_enabled and points >= cfg.min_redeem_points:
        loyalty_deduction = min(Decimal(points), after_wallet, Decimal(loyalty_cap))

    amount_to_pay = after_wallet - loyalty_deduction
    wallet_covers_all = amount_to_pay == 0 and (wallet_deduction > 0 or loyalty_deduction > 0)

    earn_preview = 0
    if cfg.is_enabled:
        earn_preview = math.floor(grand_total / HUNDRED * Decimal(cfg.earn_rate_per_hundred))

    return Bill(
        item_total=item_total,
        delivery_fee=delivery_fee,
        coupon_discount=coupon_discount,
        grand_total=grand_total,
        wallet_deduction=wallet_deduction,
        after_wallet=after_wallet,
        loyalty_cap=loyalty_cap,
        loyalty_deduction=loyalty_deduction,
        amount_to_pay=amount_to_pay,
        wallet_covers_all=wallet_covers_all,
        earn_preview=earn_preview,
    )


def _fmt(amount: Decimal, symbol: str) -> str:
    q = amount.quantize(Decimal("1")) if amount == amount.to_integral_value() else amount.quantize(Decimal("0.01"))
    return f"{symbol}{q}"


def bill_lines(
    bill: Bill, delivery: Optional[DeliveryQuote] = None, *, symbol: str = "₹"
) -> List[Tuple[str, str]]:
    """账单明细展示行（顺序即展示顺序）"""
    rows: List[Tuple[str, str]] = [("Item total", _fmt(bill.item_total, symbol))]

    if delivery is not None and delivery.free_applied and delivery.original_fee:
        rows.append(("Delivery fee", f"was {_fmt(delivery.original_fee, symbol)}, now FREE"))
    elif bill.delivery_fee == 0:
        rows.append(("Delivery fee", "FREE"))
    else:
        rows.append(("Delivery fee", _fmt(bill.delivery_fee, symbol)))

    if bill.coupon_discount > 0:
        rows.append(("Coupon discount", f"-{_fmt(bill.coupon_discount, symbol)}"))
    if bill.wallet_deduction > 0:
        rows.append(("Wallet", f"-{_fmt(bill.wallet_deduction, symbol)}"))
    if bill.loyalty_deduction > 0:
        rows.append(("Loyalty points", f"-{_fmt(bill.loyalty_deduction, symbol)}"))

    rows.append(("To Pay", _fmt(bill.amount_to_pay, symbol)))
    if bill.earn_preview > 0:
        rows.append(("You will earn", f"{bill.earn_preview} points"))
    return rows
