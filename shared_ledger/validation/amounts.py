"""
Amount Validation

DESIGN DECISION: Amounts typed by a user are validated locally, before any
call to the store. A rejected amount never leaves the process.

Accepted:
- Decimal, int, float and numeric strings ("12", "12.50", " 7.5 ")

Rejected:
- Empty or non-numeric text ("", "abc", "12abc")
- Booleans (True is an int in Python, but not an amount)
- NaN and infinities
- Zero and negative values

IMPORTANT: Validation NEVER silently fixes input. "12abc" is rejected,
not truncated to 12.
"""

from decimal import Decimal, InvalidOperation


class AmountValidationError(ValueError):
    """The input is not a finite, strictly positive number."""

    def __init__(self, message: str, raw_value: object = None):
        super().__init__(message)
        self.raw_value = raw_value


def parse_amount(raw: object) -> Decimal:
    """
    Convert user input to a strictly positive Decimal.

    Floats go through their string representation so that 0.1 becomes
    Decimal("0.1") and not its binary approximation.

    Raises:
        AmountValidationError: If the input is not a valid amount
    """
    if raw is None or isinstance(raw, bool):
        raise AmountValidationError("Please enter an amount", raw)

    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, int):
        value = Decimal(raw)
    elif isinstance(raw, float):
        value = Decimal(str(raw))
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise AmountValidationError("Please enter an amount", raw)
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise AmountValidationError(f"'{raw}' is not a valid amount", raw)
    else:
        raise AmountValidationError(
            f"Unsupported amount type: {type(raw).__name__}", raw
        )

    if not value.is_finite():
        raise AmountValidationError("Amount must be a finite number", raw)

    if value <= 0:
        raise AmountValidationError("Amount must be greater than zero", raw)

    return value
