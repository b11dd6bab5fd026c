"""
Admin settlement interface.

Every mutating call re-checks that the actor is an administrator and that the
password they re-submitted matches, then delegates to the same workflow and
engine primitives the self-serve paths use. Each mutation leaves an AuditLog row.
"""
import logging
import secrets
from datetime import datetime, time

from sqlalchemy import func

from models import (
    Account, AuditLog, Contract, ContractStatus, KycStatus, NotificationKind,
    Transaction, TransactionKind, TransactionStatus, utcnow,
)
from ledger.exceptions import AuthFailed, InsufficientFunds, Unauthorized
from ledger.store import AccountLockManager
from ledger.validation import require_choice, to_amount


logger = logging.getLogger(__name__)

MANUAL_KINDS = (TransactionKind.DEPOSIT.value, TransactionKind.WITHDRAWAL.value)
KYC_DECISIONS = (KycStatus.VERIFIED.value, KycStatus.REJECTED.value)


class AdminService:

    def __init__(self, ledger):
        self.ledger = ledger
        self.store = ledger.store

    # ==========================================================
    #                  RE-AUTHENTICATION
    # ==========================================================
    def _require_admin(self, admin):
        if admin is None or not getattr(admin, "is_admin", False):
            logger.warning(f"Unauthorized: admin operation by {getattr(admin, 'uid', None)}")
            raise Unauthorized("Administrator privileges required")

    def _authorize(self, admin, password):
        self._require_admin(admin)
        if not self.ledger.credentials.check(admin.password_hash, password):
            logger.warning(f"AuthFailed: admin password mismatch for {admin.uid}")
            raise AuthFailed("Incorrect admin password")

    def _audit(self, admin, action, target=None, details=None):
        self.store.add(AuditLog(actor_id=admin.id, action=action, target=target, details=details))

    def _audited(self, admin, action, target=None, details=None):
        with self.store.unit_of_work():
            self._audit(admin, action, target, details)
        logger.info(f"Admin {admin.uid}: {action} {target or ''}".rstrip())

    def verify_password(self, admin, password) -> bool:
        self._authorize(admin, password)
        return True

    # ==========================================================
    #                  BALANCES & MANUAL TRANSACTIONS
    # ==========================================================
    def set_balance(self, admin, password, uid, new_balance) -> Account:
        self._authorize(admin, password)
        account = self.store.get_account(uid)

        with AccountLockManager.locked(account.uid):
            with self.store.unit_of_work():
                previous = account.balance
                diff = self.store.set_balance(account, new_balance)
                self.store.append_transaction(
                    account,
                    TransactionKind.ADMIN_ADJUSTMENT.value,
                    diff,
                    status=TransactionStatus.COMPLETED.value,
                )
                self._audit(admin, "set_balance", account.uid,
                            {"from": str(previous), "to": str(account.balance), "difference": str(diff)})
        logger.info(f"Admin {admin.uid} set balance of {account.uid} to {account.balance}")
        return account

    def add_manual_transaction(self, admin, password, user_email, kind, amount, asset=None) -> Transaction:
        """Completed deposit or withdrawal that skips review; validated before anything is written."""
        self._authorize(admin, password)
        kind = require_choice(kind, MANUAL_KINDS, "type")
        amount = to_amount(amount)
        asset = (asset or self.store.default_asset).upper()
        account = self.store.get_account_by_email(user_email)

        with AccountLockManager.locked(account.uid):
            with self.store.unit_of_work():
                if kind == TransactionKind.DEPOSIT.value:
                    self.store.credit(account, amount)
                else:
                    self.store.debit(account, amount)
                tx = self.store.append_transaction(
                    account, kind, amount, status=TransactionStatus.COMPLETED.value, asset=asset)
                tx.resolved_by_id = admin.id
                self.store.refresh_vip(account)
                self.store.append_notification(
                    account,
                    f"Manual {kind}",
                    f"An admin has processed a manual {kind} of {amount} {asset} for your account.",
                    NotificationKind.TRANSACTION.value,
                )
                self._audit(admin, "manual_transaction", account.uid,
                            {"type": kind, "amount": str(amount), "asset": asset})
        logger.info(f"Admin {admin.uid} recorded manual {kind} of {amount} {asset} for {account.uid}")
        return tx

    # ==========================================================
    #                  FUNDING & CONTRACTS
    # ==========================================================
    def resolve_deposit(self, admin, password, transaction_id, status) -> Transaction:
        self._authorize(admin, password)
        tx = self.ledger.funding.resolve_deposit(transaction_id, status, resolver=admin)
        self._audited(admin, "resolve_deposit", str(tx.id), {"status": tx.status})
        return tx

    def resolve_withdrawal(self, admin, password, transaction_id, status) -> Transaction:
        self._authorize(admin, password)
        try:
            tx = self.ledger.funding.resolve_withdrawal(transaction_id, status, resolver=admin)
        except InsufficientFunds:
            # The workflow already committed the request as Failed
            self._audited(admin, "resolve_withdrawal", str(transaction_id),
                          {"status": TransactionStatus.FAILED.value, "reason": "insufficient_funds"})
            raise
        self._audited(admin, "resolve_withdrawal", str(tx.id), {"status": tx.status})
        return tx

    def resolve_contract(self, admin, password, contract_id, outcome, close_price=None) -> Contract:
        self._authorize(admin, password)
        outcome = require_choice(outcome, ("win", "loss"), "outcome")
        contract = self.ledger.contracts.settle_contract(
            contract_id, outcome=outcome, exit_price=close_price, settled_by="admin")
        self._audited(admin, "resolve_contract", str(contract.id),
                      {"outcome": outcome, "status": contract.status})
        return contract

    # ==========================================================
    #                  KYC, SETTINGS, ACCOUNTS
    # ==========================================================
    def update_kyc_status(self, admin, password, uid, status) -> Account:
        self._authorize(admin, password)
        status = require_choice(status, KYC_DECISIONS, "status")
        account = self.store.get_account(uid)

        with self.store.unit_of_work():
            account.kyc_status = status
            approved = status == KycStatus.VERIFIED.value
            self.store.append_notification(
                account,
                f"KYC {'Approved' if approved else 'Rejected'}",
                "Your identity has been successfully verified." if approved
                else "Your KYC submission has been rejected. Please resubmit.",
                NotificationKind.SYSTEM.value,
            )
            self._audit(admin, "update_kyc_status", account.uid, {"status": status})
        logger.info(f"Admin {admin.uid} set KYC of {account.uid} to {status}")
        return account

    def update_system_settings(self, admin, password, changes) -> dict:
        self._authorize(admin, password)
        with self.store.unit_of_work():
            tiers_changed = self.ledger.settings.update(changes)
            if tiers_changed:
                tiers = self.store.tiers()
                for account in self.store.session.query(Account).all():
                    self.store.refresh_vip(account, tiers)
            self._audit(admin, "update_system_settings", None, {"keys": sorted(changes)})
        logger.info(f"Admin {admin.uid} updated settings {sorted(changes)}")
        return self.ledger.settings.as_dict()

    def create_account(self, admin, name, email, password=None, details=None):
        """Admin-created account; a temporary password is generated when none is given."""
        self._require_admin(admin)
        temporary = None
        if not password:
            temporary = password = secrets.token_urlsafe(9)
        account = self.ledger.accounts.create_account(name, email, password, details=details)
        self._audited(admin, "create_account", account.uid)
        return account, temporary

    # ==========================================================
    #                  READ-ONLY LISTINGS
    # ==========================================================
    def accounts(self, admin):
        self._require_admin(admin)
        rows = self.store.session.query(Account).order_by(Account.id.desc()).all()
        return [a.to_dict(include_ledger=False) for a in rows]

    def pending_kyc(self, admin):
        self._require_admin(admin)
        rows = self.store.session.query(Account).filter(
            Account.kyc_status == KycStatus.PENDING.value
        ).order_by(Account.id).all()
        result = []
        for account in rows:
            document = account.kyc_document
            result.append({
                "user": account.to_dict(include_ledger=False),
                "kycImages": {
                    "idFront": document.id_front if document else "",
                    "idBack": document.id_back if document else "",
                },
            })
        return result

    def pending_deposits(self, admin):
        self._require_admin(admin)
        return self.ledger.funding.pending_deposits()

    def pending_withdrawals(self, admin):
        self._require_admin(admin)
        return self.ledger.funding.pending_withdrawals()

    def orders(self, admin):
        self._require_admin(admin)
        return self.ledger.funding.orders()

    def trades(self, admin):
        self._require_admin(admin)
        return self.ledger.contracts.trades()

    def active_contracts(self, admin):
        self._require_admin(admin)
        return self.ledger.contracts.active_contracts()

    def dashboard(self, admin) -> dict:
        self._require_admin(admin)
        session = self.store.session
        start_of_day = datetime.combine(utcnow().date(), time.min)

        def _total(column, *criteria):
            return float(session.query(func.sum(column)).filter(*criteria).scalar() or 0)

        return {
            "total_users": session.query(Account).count(),
            "active_users": session.query(Account).filter_by(is_active=True).count(),
            "verified_users": session.query(Account).filter_by(kyc_status=KycStatus.VERIFIED.value).count(),
            "pending_kyc": session.query(Account).filter_by(kyc_status=KycStatus.PENDING.value).count(),
            "daily_new_users": session.query(Account).filter(Account.created_at >= start_of_day).count(),
            "pending_deposits": session.query(Transaction).filter_by(
                kind=TransactionKind.DEPOSIT.value, status=TransactionStatus.PENDING.value).count(),
            "pending_withdrawals": session.query(Transaction).filter_by(
                kind=TransactionKind.WITHDRAWAL.value, status=TransactionStatus.PENDING.value).count(),
            "active_contracts": session.query(Contract).filter_by(status=ContractStatus.ACTIVE.value).count(),
            "total_balance": _total(Account.balance),
            "total_deposits": _total(
                Transaction.amount,
                Transaction.kind == TransactionKind.DEPOSIT.value,
                Transaction.status == TransactionStatus.COMPLETED.value,
            ),
            "total_withdrawals": _total(
                Transaction.amount,
                Transaction.kind == TransactionKind.WITHDRAWAL.value,
                Transaction.status == TransactionStatus.COMPLETED.value,
            ),
        }
