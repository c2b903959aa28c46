"""Refund rules for customer-initiated cancellations.

The refund depends only on how long ago the order was placed: a
cancellation inside the partial window returns a fraction of the amount
paid, anything later is refunded in full. Nothing here touches the
database or the request, so the same evaluator backs the refund quote
shown to customers and the amount written into cancellation requests.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENTS = Decimal('0.01')


@dataclass(frozen=True)
class RefundPolicy:
    partial_window_minutes: int = 30
    partial_fraction: float = 0.35
    currency_symbol: str = '₱'

    @classmethod
    def from_config(cls, config):
        return cls(
            partial_window_minutes=int(
                config.get('REFUND_PARTIAL_WINDOW_MINUTES', 30)),
            partial_fraction=float(
                config.get('REFUND_PARTIAL_FRACTION', 0.35)),
            currency_symbol=config.get('CURRENCY_SYMBOL', '₱'),
        )

    def __post_init__(self):
        if self.partial_window_minutes < 0:
            raise ValueError('partial_window_minutes must be >= 0')
        if not 0 <= self.partial_fraction <= 1:
            raise ValueError('partial_fraction must be between 0 and 1')


@dataclass(frozen=True)
class RefundDecision:
    refund_amount: Decimal
    is_partial: bool
    base: Decimal
    elapsed_minutes: int


def to_money(value) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value))
    if not amount.is_finite():
        raise InvalidOperation(f"Not a finite amount: {value!r}")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def refund_base(order) -> Decimal:
    # deposit_paid of 0 is a real value, only None falls back.
    deposit = getattr(order, 'deposit_paid', None)
    if deposit is not None:
        return to_money(deposit)
    return to_money(order.total_amount)


def compute_refund(order, now: datetime = None,
                   policy: RefundPolicy = None) -> RefundDecision:
    """Work out what a cancellation placed at ``now`` would refund.

    ``order`` only needs ``created_at``, ``total_amount`` and, optionally,
    ``deposit_paid``. Elapsed time is truncated to whole minutes, and the
    partial window is inclusive: a request exactly on the threshold still
    gets the partial refund.
    """
    policy = policy or RefundPolicy()
    now = now or datetime.utcnow()

    if order.created_at is None:
        raise ValueError('Order has no creation time')
    if order.created_at > now:
        raise ValueError('Order creation time is in the future')
    try:
        total = to_money(order.total_amount)
        base = refund_base(order)
    except ArithmeticError:
        raise ValueError('Order amounts must be finite numbers')
    if total < 0:
        raise ValueError('Order total cannot be negative')
    if base < 0:
        raise ValueError('Deposit paid cannot be negative')

    elapsed_minutes = int((now - order.created_at).total_seconds() // 60)

    if elapsed_minutes <= policy.partial_window_minutes:
        amount = to_money(base * Decimal(str(policy.partial_fraction)))
        return RefundDecision(amount, True, base, elapsed_minutes)

    return RefundDecision(base, False, base, elapsed_minutes)


def format_money(amount, policy: RefundPolicy = None) -> str:
    policy = policy or RefundPolicy()
    return f"{policy.currency_symbol}{to_money(amount):.2f}"


def refund_advisory(decision: RefundDecision,
                    policy: RefundPolicy = None) -> str:
    policy = policy or RefundPolicy()
    amount = format_money(decision.refund_amount, policy)
    if decision.is_partial:
        percent = f"{policy.partial_fraction * 100:g}%"
        return (
            f"Cancelling within {policy.partial_window_minutes} minutes of "
            f"order time. Only {percent} refund ({amount}) will be "
            f"processed."
        )
    return f"Full refund ({amount}) will be processed."
