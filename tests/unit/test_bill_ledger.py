# tests/unit/test_bill_ledger.py
from __future__ import annotations

from decimal import Decimal

import pytest

from checkout.services.bill_ledger import bill_lines, compute_bill
from checkout.services.checkout_types import (
    CouponState,
    DeliveryQuote,
    LoyaltyConfig,
    LoyaltyState,
    WalletState,
)

pytestmark = pytest.mark.grp_ledger

D = Decimal


def _loyalty(points: int, *, pct: int = 10, min_points: int = 100, earn: int = 0) -> LoyaltyState:
    return LoyaltyState(
        balance=points,
        config=LoyaltyConfig(
            is_enabled=True,
            earn_rate_per_hundred=earn,
            min_redeem_points=min_points,
            max_redeem_percentage=pct,
        ),
    )


def test_coupon_fee_and_wallet_pipeline():
    """500 商品 + 40 配送 - 50 券，钱包 100 → 应付 390"""
    bill = compute_bill(
        D("500"), D("40"), CouponState("SAVE50", D("50")), WalletState(D("100")), LoyaltyState()
    )
    assert bill.grand_total == D("490")
    assert bill.wallet_deduction == D("100")
    assert bill.after_wallet == D("390")
    assert bill.loyalty_deduction == 0
    assert bill.amount_to_pay == D("390")
    assert bill.wallet_covers_all is False


def test_wallet_covers_everything():
    bill = compute_bill(D("1000"), D("0"), None, WalletState(D("1000")), LoyaltyState())
    assert bill.wallet_deduction == D("1000")
    assert bill.amount_to_pay == 0
    assert bill.wallet_covers_all is True


def test_wallet_toggle_off_keeps_balance_untouched():
    bill = compute_bill(
        D("300"), D("20"), None, WalletState(D("1000")), LoyaltyState(), use_wallet=False
    )
    assert bill.wallet_deduction == 0
    assert bill.amount_to_pay == D("320")
    assert bill.wallet_covers_all is False


def test_loyalty_limited_by_percentage_cap():
    bill = compute_bill(
        D("1000"), D("0"), None, WalletState(), _loyalty(500, pct=10), use_loyalty=True
    )
    assert bill.loyalty_cap == 100
    assert bill.loyalty_deduction == D("100")
    assert bill.amount_to_pay == D("900")


def test_loyalty_limited_by_points_balance():
    bill = compute_bill(
        D("1000"), D("0"), None, WalletState(), _loyalty(150, pct=50), use_loyalty=True
    )
    assert bill.loyalty_cap == 500
    assert bill.loyalty_deduction == D("150")


def test_loyalty_cap_is_floored():
    # 333 * 10% = 33.3 → 33
    bill = compute_bill(
        D("333"), D("0"), None, WalletState(), _loyalty(1000, pct=10, min_points=0), use_loyalty=True
    )
    assert bill.loyalty_cap == 33
    assert bill.loyalty_deduction == D("33")
    assert bill.amount_to_pay == D("300")


def test_loyalty_below_minimum_points_not_redeemed():
    bill = compute_bill(
        D("1000"), D("0"), None, WalletState(), _loyalty(99, min_points=100), use_loyalty=True
    )
    assert bill.loyalty_deduction == 0
    assert bill.amount_to_pay == D("1000")


def test_loyalty_not_requested_still_reports_cap():
    bill = compute_bill(D("1000"), D("0"), None, WalletState(), _loyalty(500))
    assert bill.loyalty_cap == 100
    assert bill.loyalty_deduction == 0


def test_loyalty_applies_after_wallet():
    bill = compute_bill(
        D("1000"), D("0"), None, WalletState(D("800")), _loyalty(500, pct=50), use_loyalty=True
    )
    assert bill.after_wallet == D("200")
    assert bill.loyalty_cap == 100
    assert bill.loyalty_deduction == D("100")
    assert bill.amount_to_pay == D("100")


def test_loyalty_disabled_store_never_redeems_or_earns():
    cfg = LoyaltyConfig(is_enabled=False, earn_rate_per_hundred=5, min_redeem_points=0, max_redeem_percentage=100)
    bill = compute_bill(
        D("500"), D("0"), None, WalletState(), LoyaltyState(balance=1000, config=cfg), use_loyalty=True
    )
    assert bill.loyalty_deduction == 0
    assert bill.earn_preview == 0


def test_wallet_plus_loyalty_cover_all():
    bill = compute_bill(
        D("200"), D("0"), None, WalletState(D("100")), _loyalty(500, pct=100, min_points=0), use_loyalty=True
    )
    assert bill.amount_to_pay == 0
    assert bill.wallet_covers_all is True


def test_earn_preview_on_grand_total():
    # grand 490 → floor(4.9 * 2) = 9
    bill = compute_bill(
        D("500"), D("40"), CouponState("X", D("50")), WalletState(D("100")), _loyalty(0, earn=2)
    )
    assert bill.earn_preview == 9


def test_coupon_larger_than_total_floors_at_zero():
    bill = compute_bill(D("100"), D("0"), CouponState("BIG", D("150")), WalletState(D("50")), LoyaltyState())
    assert bill.grand_total == 0
    assert bill.wallet_deduction == 0
    assert bill.amount_to_pay == 0
    # 没有任何抵扣，不算“钱包全额支付”
    assert bill.wallet_covers_all is False


def test_negative_inputs_rejected():
    with pytest.raises(ValueError):
        compute_bill(D("-1"), D("0"), None, WalletState(), LoyaltyState())
    with pytest.raises(ValueError):
        compute_bill(D("10"), D("0"), None, WalletState(D("-5")), LoyaltyState())


@pytest.mark.parametrize("use_loyalty", [False, True])
def test_more_wallet_never_increases_amount_to_pay(use_loyalty):
    loyalty = _loyalty(300, pct=20, min_points=0)
    prev = None
    for balance in range(0, 700, 50):
        bill = compute_bill(
            D("540"), D("30"), CouponState("C", D("20")), WalletState(D(balance)), loyalty,
            use_loyalty=use_loyalty,
        )
        assert 0 <= bill.amount_to_pay <= bill.grand_total
        assert bill.wallet_deduction <= bill.grand_total
        if prev is not None:
            assert bill.amount_to_pay <= prev
        prev = bill.amount_to_pay


@pytest.mark.parametrize("use_wallet", [False, True])
def test_bigger_coupon_never_increases_amount_to_pay(use_wallet):
    loyalty = _loyalty(200, pct=25, min_points=50)
    prev = None
    for discount in range(0, 700, 35):
        bill = compute_bill(
            D("560"), D("40"), CouponState("C", D(discount)), WalletState(D("120")), loyalty,
            use_wallet=use_wallet, use_loyalty=True,
        )
        assert bill.amount_to_pay >= 0
        if prev is not None:
            assert bill.amount_to_pay <= prev
        prev = bill.amount_to_pay


@pytest.mark.parametrize("pct", [0, 5, 30, 100])
def test_more_points_never_increase_amount_to_pay(pct):
    prev = None
    for points in range(0, 1200, 40):
        bill = compute_bill(
            D("700"), D("25"), CouponState("C", D("60")), WalletState(D("90")),
            _loyalty(points, pct=pct, min_points=100), use_loyalty=True,
        )
        assert bill.loyalty_deduction <= bill.loyalty_cap
        assert bill.loyalty_deduction <= points
        assert bill.amount_to_pay >= 0
        if prev is not None:
            assert bill.amount_to_pay <= prev
        prev = bill.amount_to_pay


@pytest.mark.parametrize("points", [0, 80, 150, 10_000])
def test_higher_redeem_percentage_never_increases_amount_to_pay(points):
    prev = None
    for pct in range(0, 101, 5):
        bill = compute_bill(
            D("333"), D("17"), None, WalletState(D("40")),
            _loyalty(points, pct=pct, min_points=100), use_loyalty=True,
        )
        assert bill.loyalty_deduction <= bill.loyalty_cap
        assert bill.loyalty_deduction <= points
        assert bill.loyalty_deduction <= bill.after_wallet
        if prev is not None:
            assert bill.amount_to_pay <= prev
        prev = bill.amount_to_pay


def test_bill_lines_show_free_delivery_original_fee():
    bill = compute_bill(D("600"), D("0"), CouponState("X", D("50")), WalletState(D("100")), LoyaltyState())
    quote = DeliveryQuote(
        fee=D("0"), eta_minutes=20, free_applied=True, original_fee=D("40"), fee_source="tier"
    )
    rows = dict(bill_lines(bill, quote))
    assert rows["Item total"] == "₹600"
    assert rows["Delivery fee"] == "was ₹40, now FREE"
    assert rows["Coupon discount"] == "-₹50"
    assert rows["Wallet"] == "-₹100"
    assert rows["To Pay"] == "₹450"
    assert "Loyalty points" not in rows


def test_bill_lines_keep_paise():
    bill = compute_bill(D("99.50"), D("25"), None, WalletState(), LoyaltyState())
    rows = bill_lines(bill)
    assert rows[0] == ("Item total", "₹99.50")
    assert rows[1] == ("Delivery fee", "₹25")
    assert rows[-1] == ("To Pay", "₹124.50")
