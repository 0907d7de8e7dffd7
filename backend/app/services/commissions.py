"""
Referral commission arithmetic.

Pure functions only: nothing here touches the database. The order transition
and ledger services apply the results inside their transactions.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from backend.app.core.constants import DEFAULT_COMMISSION_RATE, ONE_CENT, PERCENT_BASE, ZERO


@dataclass(frozen=True)
class CommissionGrant:
    affiliate_id: uuid.UUID
    order_id: uuid.UUID
    amount: Decimal
    rate: Decimal


@dataclass(frozen=True)
class BalanceDelta:
    """Signed changes to apply to a profile's balance and total_earnings."""
    balance: Decimal
    total_earnings: Decimal


def to_money(value) -> Decimal:
    """Quantize any numeric value to cents."""
    return Decimal(str(value)).quantize(ONE_CENT, rounding=ROUND_HALF_UP)


def commission_rate_for(product_rate: Optional[Decimal]) -> Decimal:
    """
    Effective commission percentage for a product.

    An unset rate falls back to DEFAULT_COMMISSION_RATE (10%). An explicit 0 is
    respected and yields a zero commission.
    """
    if product_rate is None:
        return DEFAULT_COMMISSION_RATE
    return Decimal(str(product_rate))


def calculate_commission(order_amount: Decimal, rate: Decimal) -> Decimal:
    return to_money(Decimal(str(order_amount)) * rate / PERCENT_BASE)


def grant(
    order_id: uuid.UUID,
    order_amount: Decimal,
    product_rate: Optional[Decimal],
    referrer_id: uuid.UUID,
) -> CommissionGrant:
    """Build the commission owed to referrer_id for a paid order."""
    rate = commission_rate_for(product_rate)
    return CommissionGrant(
        affiliate_id=referrer_id,
        order_id=order_id,
        amount=calculate_commission(order_amount, rate),
        rate=rate,
    )


def reverse(commission_amount: Decimal, balance: Decimal, total_earnings: Decimal) -> BalanceDelta:
    """
    Deltas that take a commission back from its referrer.

    Neither figure is allowed to go below zero: if the referrer already spent
    part of the commission (e.g. withdrew it) only what is left is taken back.
    """
    amount = to_money(commission_amount)
    balance = to_money(balance or ZERO)
    total_earnings = to_money(total_earnings or ZERO)
    return BalanceDelta(
        balance=-min(amount, max(balance, ZERO)),
        total_earnings=-min(amount, max(total_earnings, ZERO)),
    )
