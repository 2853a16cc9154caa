"""Display helpers: two-decimal amounts, balance statements, timestamps."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from shared_ledger.models.ledger import BalanceSummary


CENT = Decimal("0.01")


def round_amount(amount: Decimal) -> Decimal:
    """Round half up to two decimals. Display only."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal, currency_symbol: str = "") -> str:
    return f"{currency_symbol}{round_amount(amount)}"


def describe_balance(summary: BalanceSummary, currency_symbol: str = "") -> str:
    """
    The "who owes whom" sentence for a summary.

    Uses the summary's own settled flag, which was computed on the raw
    magnitude, so 0.004 reads as settled and never as "owes 0.00".
    """
    if summary.is_settled:
        return "All settled up"
    return (
        f"{summary.debtor} owes {summary.receiver} "
        f"{format_amount(summary.magnitude, currency_symbol)}"
    )


def format_timestamp(timestamp: datetime) -> str:
    """Day/month and time in local time, e.g. 03/11 18:42."""
    return timestamp.astimezone().strftime("%d/%m %H:%M")
