"""
Task Payments - Fee Calculator
Platform fee rules applied to a task price
"""
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from numbers import Real

from app.exceptions import InvalidAmount
from app.schemas.payment import PaymentBreakdown


@dataclass(frozen=True)
class FeeSchedule:
    """Fixed platform fee rules."""
    payer_fee_cents: int = 200  # €2.00 charged to the person paying
    payee_commission_percent: int = 10  # taken from the payee's earnings


DEFAULT_FEE_SCHEDULE = FeeSchedule()
DEFAULT_CURRENCY = "eur"


def _validate_price(task_price_cents) -> int:
    if isinstance(task_price_cents, bool) or not isinstance(task_price_cents, (Real, Decimal)):
        raise InvalidAmount(task_price_cents)

    if isinstance(task_price_cents, int):
        value = task_price_cents
    else:
        if isinstance(task_price_cents, Decimal):
            finite = task_price_cents.is_finite()
        else:
            finite = math.isfinite(task_price_cents)
        if not finite or task_price_cents != int(task_price_cents):
            raise InvalidAmount(task_price_cents)
        value = int(task_price_cents)

    if value < 0:
        raise InvalidAmount(task_price_cents)
    return value


def compute_breakdown(
    task_price_cents: int,
    currency: str = DEFAULT_CURRENCY,
    schedule: FeeSchedule = DEFAULT_FEE_SCHEDULE
) -> PaymentBreakdown:
    """
    Calculate the payment breakdown for a task price.

    The payer pays the task price plus a fixed fee. The platform keeps that
    fee plus a percentage commission of the task price (rounded half-up to
    the cent); the payee receives the rest of the task price.

    Args:
        task_price_cents: Task price in cents (e.g. 10000 = €100.00)
        currency: Currency code
        schedule: Fee rules to apply

    Returns:
        Detailed payment breakdown

    Raises:
        InvalidAmount: if the price is negative, non-finite or fractional
    """
    price = _validate_price(task_price_cents)

    payer_fee_cents = schedule.payer_fee_cents
    payee_commission_cents = int(
        (Decimal(price) * Decimal(schedule.payee_commission_percent) / Decimal(100))
        .quantize(Decimal(1), rounding=ROUND_HALF_UP)
    )

    return PaymentBreakdown(
        task_price_cents=price,
        payer_fee_cents=payer_fee_cents,
        payee_commission_cents=payee_commission_cents,
        total_charge_cents=price + payer_fee_cents,
        platform_fee_cents=payer_fee_cents + payee_commission_cents,
        payee_receives_cents=price - payee_commission_cents,
        currency=currency.lower(),
    )
