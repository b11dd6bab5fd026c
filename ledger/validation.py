from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ledger.exceptions import InvalidAmount, InvalidRequest

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Quantize to two places, the precision every balance is held at."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, ROUND_HALF_UP)


def to_decimal(value, field_name: str) -> Decimal:
    """Secure decimal conversion with validation"""
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"{field_name} must be a number")

    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, (int, float, str)):
            result = Decimal(str(value).strip())
        else:
            raise InvalidAmount(f"Invalid type for {field_name}: {type(value).__name__}")
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(f"{field_name} must be a number")

    if not result.is_finite():
        raise InvalidAmount(f"{field_name} must be a finite number")
    return result


def to_amount(value, field_name: str = "amount") -> Decimal:
    """Positive money amount, rounded to cents."""
    amount = money(to_decimal(value, field_name))
    if amount <= 0:
        raise InvalidAmount(f"{field_name} must be greater than zero")
    return amount


def to_rate(value, field_name: str) -> Decimal:
    """Non-negative rate such as 0.05 for five percent."""
    rate = to_decimal(value, field_name)
    if rate < 0:
        raise InvalidAmount(f"{field_name} cannot be negative")
    return rate


def to_price(value, field_name: str = "price") -> Decimal:
    price = to_decimal(value, field_name)
    if price <= 0:
        raise InvalidAmount(f"{field_name} must be greater than zero")
    return price


def require_choice(value, choices, field_name: str) -> str:
    normalized = str(value or "").strip()
    for choice in choices:
        if normalized.lower() == choice.lower():
            return choice
    raise InvalidRequest(f"{field_name} must be one of: {', '.join(choices)}")


def require_text(value, field_name: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise InvalidRequest(f"{field_name} is required")
    return text
