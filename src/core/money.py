"""Decimal money helpers. All checkout amounts are single-currency, 2 decimals."""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def to_money(value: Decimal | float | int | str | None) -> Decimal:
    """Coerce a provider or database amount to a 2-decimal Decimal."""
    if value is None:
        return Decimal("0.00")
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Decimal euros to integer cents (Stripe unit_amount)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(cents: int | None) -> Decimal:
    """Integer cents to Decimal euros."""
    return to_money(Decimal(cents or 0) / 100)


def format_amount(amount: Decimal) -> str:
    """Decimal to PayPal's string amount format ("710.00")."""
    return f"{to_money(amount):.2f}"
