from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_cents(amount) -> int:
    """
    Convert a decimal amount (Decimal, str or int) into integer minor units.
    Floats are refused: they cannot represent money exactly.
    """
    if isinstance(amount, float):
        raise TypeError("Money amounts must not be floats")
    value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    return int((value * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def fee_cents(gross_cents: int, rate: Decimal) -> int:
    # round(gross * rate), half-up to the cent
    return int((Decimal(gross_cents) * rate).to_integral_value(rounding=ROUND_HALF_UP))


def gross_for_net(net_cents: int, rate: Decimal) -> int:
    """
    Smallest gross amount whose fee-deducted net equals ``net_cents``.

    ``gross - fee_cents(gross)`` grows by 0 or 1 per cent of gross, so an
    exact match always exists for rate < 1.
    """
    if net_cents <= 0:
        return 0
    gross = int((Decimal(net_cents) / (1 - rate)).to_integral_value(rounding=ROUND_HALF_UP))
    while gross - fee_cents(gross, rate) > net_cents:
        gross -= 1
    while gross - fee_cents(gross, rate) < net_cents:
        gross += 1
    while gross > 0 and (gross - 1) - fee_cents(gross - 1, rate) == net_cents:
        gross -= 1
    return gross
