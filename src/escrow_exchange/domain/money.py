"""Fixed-point money helpers.

Amounts are Decimal end to end and stored as NUMERIC(20, 8). Every currency
has a minor-unit exponent; an escrow amount must already be representable in
that unit, and the platform fee is rounded half-up to it exactly once.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from escrow_exchange.domain.exceptions import InvalidAmountError

CURRENCY_EXPONENTS: dict[str, int] = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "JPY": 0,
    "USDC": 6,
    "BTC": 8,
}
DEFAULT_EXPONENT = 2

# Column scale of every stored amount
STORAGE_SCALE = 8

ZERO = Decimal("0")


def normalize_currency(currency: str) -> str:
    code = (currency or "").strip().upper()
    if not code or len(code) > 10:
        raise InvalidAmountError(f"Invalid currency code: {currency!r}")
    return code


def minor_unit(currency: str) -> Decimal:
    """Smallest representable amount, e.g. Decimal('0.01') for USD."""
    exponent = CURRENCY_EXPONENTS.get(currency.upper(), DEFAULT_EXPONENT)
    return Decimal(1).scaleb(-exponent)


def parse_amount(value: Decimal | str | int, currency: str) -> Decimal:
    """Validate an escrow or deposit amount.

    Raises:
        InvalidAmountError: if the amount is not a finite positive number or has
            more precision than the currency's minor unit.
    """
    if isinstance(value, float):
        raise InvalidAmountError("Amounts must be given as decimal strings, not floats")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmountError(f"Invalid amount: {value!r}") from exc

    if not amount.is_finite():
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    if amount <= ZERO:
        raise InvalidAmountError(f"Amount must be positive, got {amount}")

    unit = minor_unit(currency)
    if amount != amount.quantize(unit):
        raise InvalidAmountError(
            f"Amount {amount} has more precision than {currency} allows ({unit})"
        )
    return amount.quantize(unit)


def compute_fee(amount: Decimal, fee_percent: Decimal, currency: str) -> Decimal:
    """Platform fee for an escrow amount, rounded half-up to the minor unit."""
    if fee_percent < ZERO or fee_percent > Decimal("100"):
        raise InvalidAmountError(f"Fee percent out of range: {fee_percent}")
    raw = amount * fee_percent / Decimal("100")
    return raw.quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal, currency: str) -> str:
    """Render an amount at the currency's precision, e.g. '115.00'."""
    return str(amount.quantize(minor_unit(currency)))
