from decimal import Decimal

import pytest

from ledger.exceptions import InvalidRequest
from ledger.tier_policy import compute_vip_level, parse_tier_table, refresh_vip_level, trade_limit_for

TIERS = [
    {"level": 1, "deposit_threshold": 0, "trade_limit": 1},
    {"level": 2, "deposit_threshold": 500, "trade_limit": 2},
    {"level": 3, "deposit_threshold": 2000, "trade_limit": 3},
]


def test_balance_below_minimum_is_level_zero():
    assert compute_vip_level(100, 0, TIERS) == 0


def test_below_minimum_ignores_large_deposits():
    assert compute_vip_level(Decimal("119.99"), 50000, TIERS) == 0


def test_highest_reached_threshold_wins():
    assert compute_vip_level(150, 600, TIERS) == 2
    assert compute_vip_level(5000, 2000, TIERS) == 3
    assert compute_vip_level(120, 0, TIERS) == 1


def test_defaults_to_level_one_without_matching_tier():
    tiers = [{"level": 2, "deposit_threshold": 500, "trade_limit": 2}]
    assert compute_vip_level(300, 100, tiers) == 1


def test_level_zero_rows_are_ignored_when_ranking():
    tiers = TIERS + [{"level": 0, "deposit_threshold": -1, "trade_limit": 0}]
    assert compute_vip_level(200, 10, tiers) == 1


def test_is_deterministic():
    results = {compute_vip_level(150, 600, list(reversed(TIERS))) for _ in range(5)}
    assert results == {2}


def test_custom_minimum_balance():
    assert compute_vip_level(100, 600, TIERS, min_balance=50) == 2


def test_trade_limit_lookup():
    tiers = TIERS + [{"level": 5, "deposit_threshold": 10000, "trade_limit": None}]
    assert trade_limit_for(2, tiers) == 2
    assert trade_limit_for(5, tiers) is None


def test_level_zero_uses_entry_tier_limit():
    assert trade_limit_for(0, TIERS) == 1


def test_missing_tier_limit_defaults_to_one():
    assert trade_limit_for(9, TIERS) == 1


def test_refresh_vip_level_updates_model():
    class FakeAccount:
        balance = Decimal("900")
        total_deposits = Decimal("2500")
        vip_level = 0

    account = FakeAccount()
    assert refresh_vip_level(account, TIERS) == 3
    assert account.vip_level == 3


def test_parse_tier_table_accepts_camel_case_and_unlimited():
    parsed = parse_tier_table([
        {"level": 2, "depositThreshold": 500, "tradeLimit": 2},
        {"level": 1, "depositThreshold": 0, "tradeLimit": "1"},
        {"level": 5, "depositThreshold": 10000, "tradeLimit": "unlimited"},
    ])
    assert [t["level"] for t in parsed] == [1, 2, 5]
    assert parsed[0]["trade_limit"] == 1
    assert parsed[2]["trade_limit"] is None
    assert parsed[1]["deposit_threshold"] == Decimal("500")


@pytest.mark.parametrize("rows", [
    [],
    "not a list",
    [{"level": 1, "depositThreshold": 0, "tradeLimit": 1}, {"level": 1, "depositThreshold": 5, "tradeLimit": 1}],
    [{"level": "x", "depositThreshold": 0, "tradeLimit": 1}],
    [{"level": 1, "depositThreshold": 0, "tradeLimit": "many"}],
    [{"level": 1, "depositThreshold": 0, "tradeLimit": -1}],
    [{"level": 1, "depositThreshold": float("nan"), "tradeLimit": 1}],
    [{"level": 1, "depositThreshold": "Infinity", "tradeLimit": 1}],
    [{"level": 1, "depositThreshold": 0, "tradeLimit": float("inf")}],
])
def test_parse_tier_table_rejects_bad_rows(rows):
    with pytest.raises(InvalidRequest):
        parse_tier_table(rows)
