"""
VIP tier policy.

A tier table is a list of rows with ``level``, ``deposit_threshold`` and
``trade_limit`` (``None`` meaning unlimited). Rows can be ``VipTier`` models
or plain dicts; the functions here never touch the database.
"""
from decimal import Decimal
from typing import Iterable, Optional

from ledger.exceptions import InvalidRequest

DEFAULT_MIN_BALANCE = Decimal("120")


def _field(tier, name):
    if isinstance(tier, dict):
        return tier.get(name)
    return getattr(tier, name)


def compute_vip_level(balance, total_deposits, tiers: Iterable, min_balance=DEFAULT_MIN_BALANCE) -> int:
    """Balance below the minimum is level 0; otherwise the highest threshold reached, never below 1."""
    if Decimal(str(balance)) < Decimal(str(min_balance)):
        return 0

    deposits = Decimal(str(total_deposits))
    ranked = sorted(
        (t for t in tiers if int(_field(t, "level")) > 0),
        key=lambda t: Decimal(str(_field(t, "deposit_threshold"))),
        reverse=True,
    )
    for tier in ranked:
        if deposits >= Decimal(str(_field(tier, "deposit_threshold"))):
            return int(_field(tier, "level"))
    return 1


def trade_limit_for(level: int, tiers: Iterable) -> Optional[int]:
    """Concurrent contract allowance for a level; None means unlimited."""
    # Below-minimum accounts trade on the entry tier's allowance
    lookup = level or 1
    for tier in tiers:
        if int(_field(tier, "level")) == lookup:
            return _field(tier, "trade_limit")
    return 1


def refresh_vip_level(account, tiers: Iterable, min_balance=DEFAULT_MIN_BALANCE) -> int:
    account.vip_level = compute_vip_level(account.balance, account.total_deposits, tiers, min_balance)
    return account.vip_level


def parse_tier_table(rows) -> list:
    """Normalize camelCase tier rows from settings payloads into tier dicts."""
    if not isinstance(rows, list) or not rows:
        raise InvalidRequest("vipTiers must be a non-empty list")

    parsed = []
    seen = set()
    for row in rows:
        if not isinstance(row, dict):
            raise InvalidRequest("Each VIP tier must be an object")
        try:
            level = int(row.get("level"))
            threshold = Decimal(str(row.get("depositThreshold", row.get("deposit_threshold"))))
        except (TypeError, ValueError, ArithmeticError):
            raise InvalidRequest("VIP tier level and depositThreshold must be numeric")
        if not threshold.is_finite():
            raise InvalidRequest("VIP tier depositThreshold must be a finite number")
        if level < 0 or level in seen:
            raise InvalidRequest(f"Invalid or duplicate VIP level: {level}")
        seen.add(level)

        limit = row.get("tradeLimit", row.get("trade_limit"))
        if limit is None or str(limit).lower() == "unlimited":
            limit = None
        else:
            try:
                limit = int(limit)
            except (TypeError, ValueError, OverflowError):
                raise InvalidRequest("tradeLimit must be an integer or 'unlimited'")
            if limit < 0:
                raise InvalidRequest("tradeLimit cannot be negative")

        parsed.append({"level": level, "deposit_threshold": threshold, "trade_limit": limit})
    return sorted(parsed, key=lambda t: t["level"])
