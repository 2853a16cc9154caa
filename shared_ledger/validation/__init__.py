"""Input validation package."""

from shared_ledger.validation.amounts import AmountValidationError, parse_amount

__all__ = ["AmountValidationError", "parse_amount"]
