from decimal import Decimal

import pytest

from ledger.exceptions import AuthFailed, InsufficientFunds, InvalidAmount, InvalidRequest, Unauthorized
from models import AuditLog, Transaction, TransactionKind, TransactionStatus

ADMIN_PASSWORD = "admin-pass-1"


def _audit_actions(ledger):
    return [row.action for row in ledger.store.session.query(AuditLog).order_by(AuditLog.id)]


def test_non_admin_is_rejected(ledger, make_account):
    user = make_account(balance=100)
    with pytest.raises(Unauthorized):
        ledger.admin.set_balance(user, "secret123", user.uid, 1000)
    with pytest.raises(Unauthorized):
        ledger.admin.pending_deposits(user)
    assert user.balance == Decimal("100.00")


def test_wrong_password_is_rejected_every_call(ledger, admin, make_account):
    user = make_account(balance=100)
    ledger.admin.set_balance(admin, ADMIN_PASSWORD, user.uid, 200)

    with pytest.raises(AuthFailed):
        ledger.admin.set_balance(admin, "not-it", user.uid, 300)
    with pytest.raises(AuthFailed):
        ledger.admin.verify_password(admin, "")
    assert user.balance == Decimal("200.00")
    assert ledger.admin.verify_password(admin, ADMIN_PASSWORD) is True


def test_balance_override_records_adjustment(ledger, admin, make_account):
    user = make_account(balance=500)
    ledger.admin.set_balance(admin, ADMIN_PASSWORD, user.uid, 80)

    assert user.balance == Decimal("80.00")
    assert user.vip_level == 0
    adjustment = user.transactions[0]
    assert adjustment.kind == TransactionKind.ADMIN_ADJUSTMENT.value
    assert adjustment.amount == Decimal("-420.00")
    assert adjustment.status == TransactionStatus.COMPLETED.value
    assert _audit_actions(ledger) == ["set_balance"]


def test_manual_deposit_counts_towards_vip(ledger, admin, make_account):
    user = make_account(balance=100)
    tx = ledger.admin.add_manual_transaction(admin, ADMIN_PASSWORD, user.email, "deposit", 600)

    assert tx.status == TransactionStatus.COMPLETED.value
    assert user.balance == Decimal("700.00")
    assert user.total_deposits == Decimal("600.00")
    assert user.vip_level == 2
    assert user.notifications[0].title == "Manual Deposit"


def test_manual_withdrawal_over_balance_writes_nothing(ledger, admin, make_account):
    user = make_account(balance=50)
    with pytest.raises(InsufficientFunds):
        ledger.admin.add_manual_transaction(admin, ADMIN_PASSWORD, user.email, "Withdrawal", 80)

    assert user.balance == Decimal("50.00")
    assert ledger.store.session.query(Transaction).count() == 0
    assert user.notifications == []
    assert _audit_actions(ledger) == []


def test_manual_transaction_validates_input(ledger, admin, make_account):
    user = make_account(balance=50)
    with pytest.raises(InvalidRequest):
        ledger.admin.add_manual_transaction(admin, ADMIN_PASSWORD, user.email, "Trade", 10)
    with pytest.raises(InvalidAmount):
        ledger.admin.add_manual_transaction(admin, ADMIN_PASSWORD, user.email, "Deposit", -10)


def test_resolve_deposit_and_withdrawal(ledger, admin, make_account):
    user = make_account(balance=0, kyc_status="verified")
    deposit = ledger.funding.request_deposit(user, 300, "BTC")
    ledger.admin.resolve_deposit(admin, ADMIN_PASSWORD, deposit.id, "Completed")
    withdrawal = ledger.funding.request_withdrawal(user, 100, "bc1-address", "secret123")
    ledger.admin.resolve_withdrawal(admin, ADMIN_PASSWORD, withdrawal.id, "Completed")

    assert user.balance == Decimal("200.00")
    assert withdrawal.resolved_by_id == admin.id
    assert _audit_actions(ledger) == ["resolve_deposit", "resolve_withdrawal"]


def test_resolve_contract(ledger, admin, make_account):
    user = make_account(balance=1000)
    contract = ledger.contracts.place_contract(user, 100, "buy", 60, "0.05", "0.02", 50000)

    with pytest.raises(AuthFailed):
        ledger.admin.resolve_contract(admin, "bad", contract.id, "win")
    assert contract.status == "active"

    ledger.admin.resolve_contract(admin, ADMIN_PASSWORD, contract.id, "win")
    assert user.balance == Decimal("1003.00")
    assert contract.status == "won"

    with pytest.raises(InvalidRequest):
        ledger.admin.resolve_contract(admin, ADMIN_PASSWORD, contract.id, "draw")


def test_kyc_decision_notifies(ledger, admin, make_account):
    user = make_account()
    ledger.accounts.submit_kyc(user, "Jane Doe", "1990-01-01", "Kenya", "1 Main St", "front", "back")

    ledger.admin.update_kyc_status(admin, ADMIN_PASSWORD, user.uid, "verified")
    assert user.kyc_status == "verified"
    assert user.notifications[0].title == "KYC Approved"

    with pytest.raises(InvalidRequest):
        ledger.admin.update_kyc_status(admin, ADMIN_PASSWORD, user.uid, "pending")


def test_pending_kyc_listing(ledger, admin, make_account):
    user = make_account()
    ledger.accounts.submit_kyc(user, "Jane Doe", "1990-01-01", "Kenya", "1 Main St", "front-img", "back-img")

    pending = ledger.admin.pending_kyc(admin)
    assert pending[0]["user"]["uid"] == user.uid
    assert pending[0]["kycImages"] == {"idFront": "front-img", "idBack": "back-img"}


def test_tier_table_change_recomputes_levels(ledger, admin, make_account):
    user = make_account(balance=300)
    ledger.admin.add_manual_transaction(admin, ADMIN_PASSWORD, user.email, "Deposit", 300)
    assert user.vip_level == 1

    settings = ledger.admin.update_system_settings(admin, ADMIN_PASSWORD, {
        "vipTiers": [
            {"level": 1, "depositThreshold": 0, "tradeLimit": 1},
            {"level": 2, "depositThreshold": 250, "tradeLimit": "unlimited"},
        ],
    })

    assert user.vip_level == 2
    assert settings["vipTiers"][1] == {"level": 2, "depositThreshold": 250.0, "tradeLimit": "unlimited"}


def test_settings_merge_deposit_addresses(ledger, admin):
    before = ledger.settings.as_dict()
    after = ledger.admin.update_system_settings(admin, ADMIN_PASSWORD, {"depositAddresses": {"BTC": "bc1-new"}})

    assert after["depositAddresses"]["BTC"] == "bc1-new"
    assert after["depositAddresses"]["TRC20"] == before["depositAddresses"]["TRC20"]
    assert after["homepageActionItems"] == before["homepageActionItems"]

    with pytest.raises(InvalidRequest):
        ledger.admin.update_system_settings(admin, ADMIN_PASSWORD, {"colour": "blue"})


def test_admin_creates_account_with_temporary_password(ledger, admin):
    account, temporary = ledger.admin.create_account(admin, "new person", "new@example.com")
    assert account.name == "New Person"
    assert temporary
    assert ledger.credentials.check(account.password_hash, temporary)


def test_dashboard(ledger, admin, make_account):
    user = make_account(balance=1000)
    ledger.funding.request_deposit(user, 50, "BTC")
    ledger.contracts.place_contract(user, 100, "buy", 60, "0.05", "0.02", 50000)

    stats = ledger.admin.dashboard(admin)
    assert stats["total_users"] == 2
    assert stats["pending_deposits"] == 1
    assert stats["active_contracts"] == 1
    assert stats["daily_new_users"] == 2
    assert stats["total_balance"] == 898.0


def test_non_finite_tier_threshold_is_rejected(ledger, admin):
    with pytest.raises(InvalidRequest):
        ledger.admin.update_system_settings(admin, ADMIN_PASSWORD, {
            "vipTiers": [
                {"level": 1, "depositThreshold": 0, "tradeLimit": 1},
                {"level": 2, "depositThreshold": float("nan"), "tradeLimit": 2},
            ],
        })
    assert [t.level for t in ledger.store.tiers()] == [0, 1, 2, 3, 4, 5]


def test_failed_withdrawal_resolution_is_audited(ledger, admin, make_account):
    user = make_account(balance=100, kyc_status="verified")
    withdrawal = ledger.funding.request_withdrawal(user, 80, "T-address", "secret123")
    ledger.admin.set_balance(admin, ADMIN_PASSWORD, user.uid, 50)

    with pytest.raises(InsufficientFunds):
        ledger.admin.resolve_withdrawal(admin, ADMIN_PASSWORD, withdrawal.id, "Completed")

    assert withdrawal.status == TransactionStatus.FAILED.value
    assert user.balance == Decimal("50.00")
    assert _audit_actions(ledger) == ["set_balance", "resolve_withdrawal"]
    entry = ledger.store.session.query(AuditLog).order_by(AuditLog.id.desc()).first()
    assert entry.target == str(withdrawal.id)
    assert entry.details["reason"] == "insufficient_funds"
