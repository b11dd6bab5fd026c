"""
Deposit and withdrawal workflow.

Self-serve requests are created ``Pending`` and move exactly once to
``Completed`` or ``Failed`` when an administrator resolves them. Balances only
change at resolution time.
"""
import logging
from decimal import Decimal
from typing import Optional

from models import (
    DEPOSIT_NETWORKS, Account, KycStatus, NotificationKind, Transaction,
    TransactionKind, TransactionStatus, utcnow,
)
from ledger.exceptions import AuthFailed, InsufficientFunds, KycRequired, TransactionNotPending
from ledger.store import AccountLockManager
from ledger.validation import require_choice, require_text, to_amount


logger = logging.getLogger(__name__)

RESOLUTION_STATUSES = (TransactionStatus.COMPLETED.value, TransactionStatus.FAILED.value)


def _outcome_word(status: str) -> str:
    return "approved" if status == TransactionStatus.COMPLETED.value else "declined"


class FundingWorkflow:

    def __init__(self, store, credentials, referrals):
        self.store = store
        self.credentials = credentials
        self.referrals = referrals

    # ==========================================================
    #                  REQUESTS
    # ==========================================================
    def request_deposit(self, account: Account, amount, network, proof=None, asset: Optional[str] = None) -> Transaction:
        """Create a Pending deposit and tell the back office about it."""
        amount = to_amount(amount)
        network = require_choice(network, DEPOSIT_NETWORKS, "network")
        asset = (asset or self.store.default_asset).upper()

        settings = self.store.system_settings()
        address = (settings.deposit_addresses or {}).get(network) if settings else None

        with AccountLockManager.locked(account.uid):
            with self.store.unit_of_work():
                tx = self.store.append_transaction(
                    account,
                    TransactionKind.DEPOSIT.value,
                    amount,
                    status=TransactionStatus.PENDING.value,
                    asset=asset,
                    network=network,
                    address=address,
                    proof=proof,
                )
                self.store.notify_admins(
                    "New Deposit Request",
                    f"{account.name} has submitted a new deposit of {amount} {asset}.",
                )

        logger.info(f"Deposit request {tx.id} for {amount} {asset} created by {account.uid}")
        return tx

    def request_withdrawal(self, account: Account, amount, address, password, asset: Optional[str] = None) -> Transaction:
        """
        Create a Pending withdrawal.

        Checks run in order: amount, destination, KYC, password, balance.
        Nothing is reserved; the balance is checked again at resolution.
        """
        amount = to_amount(amount)
        address = require_text(address, "address")
        asset = (asset or self.store.default_asset).upper()

        if account.kyc_status != KycStatus.VERIFIED.value:
            logger.warning(f"KycRequired: withdrawal by {account.uid} with KYC {account.kyc_status}")
            raise KycRequired("KYC verification is required for withdrawals")

        try:
            self.credentials.verify(account, password)
        except AuthFailed:
            logger.warning(f"AuthFailed: withdrawal password mismatch for {account.uid}")
            raise

        with AccountLockManager.locked(account.uid):
            if Decimal(account.balance or 0) < amount:
                logger.warning(f"InsufficientFunds: withdrawal of {amount} by {account.uid}")
                raise InsufficientFunds("Insufficient balance")

            with self.store.unit_of_work():
                tx = self.store.append_transaction(
                    account,
                    TransactionKind.WITHDRAWAL.value,
                    amount,
                    status=TransactionStatus.PENDING.value,
                    asset=asset,
                    address=address,
                )
                self.store.notify_admins(
                    "New Withdrawal Request",
                    f"{account.name} has requested a withdrawal of {amount} {asset}.",
                )

        logger.info(f"Withdrawal request {tx.id} for {amount} {asset} created by {account.uid}")
        return tx

    # ==========================================================
    #                  RESOLUTION
    # ==========================================================
    def _lookup(self, transaction_id, kind: str, status) -> tuple:
        status = require_choice(status, RESOLUTION_STATUSES, "status")
        tx = self.store.get_transaction(transaction_id, kind=kind)
        return tx, status

    def _ensure_pending(self, tx: Transaction):
        # Re-read under the account lock so a concurrent resolution is seen
        self.store.session.refresh(tx, with_for_update=True)
        if tx.status != TransactionStatus.PENDING.value:
            logger.warning(f"TransactionNotPending: {tx.kind} {tx.id} is {tx.status}")
            raise TransactionNotPending(f"{tx.kind} {tx.id} is already {tx.status}")

    def _mark_resolved(self, tx: Transaction, status: str, resolver: Optional[Account]):
        tx.status = status
        tx.resolved_at = utcnow()
        tx.resolved_by_id = resolver.id if resolver else None

    def resolve_deposit(self, transaction_id, status, resolver: Optional[Account] = None) -> Transaction:
        tx, status = self._lookup(transaction_id, TransactionKind.DEPOSIT.value, status)
        account = tx.account

        with AccountLockManager.locked(account.uid):
            self._ensure_pending(tx)
            with self.store.unit_of_work():
                first_deposit = account.total_deposits == 0
                self._mark_resolved(tx, status, resolver)

                if status == TransactionStatus.COMPLETED.value:
                    self.store.credit(account, tx.amount)
                    if first_deposit:
                        self.referrals.grant_first_deposit_reward(account)

                self.store.append_notification(
                    account,
                    f"Deposit {status}",
                    f"Your deposit of {tx.amount} {tx.asset} has been {_outcome_word(status)}.",
                    NotificationKind.TRANSACTION.value,
                )

        logger.info(f"Deposit {tx.id} of {account.uid} resolved as {status}")
        return tx

    def resolve_withdrawal(self, transaction_id, status, resolver: Optional[Account] = None) -> Transaction:
        """
        Completing debits the account. When the balance no longer covers the
        amount the transaction is committed as Failed and InsufficientFunds is raised.
        """
        tx, status = self._lookup(transaction_id, TransactionKind.WITHDRAWAL.value, status)
        account = tx.account

        with AccountLockManager.locked(account.uid):
            self._ensure_pending(tx)
            if status == TransactionStatus.COMPLETED.value and Decimal(account.balance or 0) < Decimal(tx.amount):
                with self.store.unit_of_work():
                    self._mark_resolved(tx, TransactionStatus.FAILED.value, resolver)
                    self.store.append_notification(
                        account,
                        "Withdrawal Failed",
                        f"Your withdrawal of {tx.amount} {tx.asset} failed due to insufficient funds.",
                        NotificationKind.TRANSACTION.value,
                    )
                logger.warning(f"InsufficientFunds: withdrawal {tx.id} of {account.uid} forced to Failed")
                raise InsufficientFunds("Withdrawal failed due to insufficient funds")

            with self.store.unit_of_work():
                self._mark_resolved(tx, status, resolver)
                if status == TransactionStatus.COMPLETED.value:
                    self.store.debit(account, tx.amount)
                self.store.append_notification(
                    account,
                    f"Withdrawal {status}",
                    f"Your withdrawal of {tx.amount} {tx.asset} has been {_outcome_word(status)}.",
                    NotificationKind.TRANSACTION.value,
                )

        logger.info(f"Withdrawal {tx.id} of {account.uid} resolved as {status}")
        return tx

    # ==========================================================
    #                  BACK OFFICE LISTINGS
    # ==========================================================
    def _funding_query(self, kinds, status=None):
        query = self.store.session.query(Transaction).filter(Transaction.kind.in_(kinds))
        if status:
            query = query.filter(Transaction.status == status)
        return query.order_by(Transaction.id.desc()).all()

    @staticmethod
    def _with_owner(tx: Transaction) -> dict:
        data = tx.to_dict()
        data.update({
            "userId": tx.account.uid,
            "userName": tx.account.name,
            "userEmail": tx.account.email,
        })
        return data

    def pending_deposits(self):
        return [self._with_owner(tx) for tx in self._funding_query(
            [TransactionKind.DEPOSIT.value], TransactionStatus.PENDING.value)]

    def pending_withdrawals(self):
        return [self._with_owner(tx) for tx in self._funding_query(
            [TransactionKind.WITHDRAWAL.value], TransactionStatus.PENDING.value)]

    def orders(self):
        return [self._with_owner(tx) for tx in self._funding_query(
            [TransactionKind.DEPOSIT.value, TransactionKind.WITHDRAWAL.value])]
