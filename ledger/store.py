import logging
import threading
import weakref
from contextlib import contextmanager
from decimal import Decimal
from typing import Optional

from models import (
    Account, Contract, NotificationKind, Notification, SystemSettings,
    Transaction, TransactionStatus, VipTier,
)
from ledger.exceptions import (
    AccountNotFound, ContractNotFound, InsufficientFunds, TransactionNotFound,
)
from ledger.tier_policy import parse_tier_table, refresh_vip_level
from ledger.validation import money, to_amount, to_decimal


logger = logging.getLogger(__name__)


# ==========================================================
#                  ACCOUNT LOCK MANAGER
# ==========================================================
class AccountLockManager:
    """One re-entrant lock per account uid, held around validate-then-mutate sequences."""
    # Entries disappear once no caller holds a reference to the lock
    _locks = weakref.WeakValueDictionary()
    _guard = threading.Lock()

    @classmethod
    def _lock_for(cls, uid: str):
        with cls._guard:
            lock = cls._locks.get(uid)
            if lock is None:
                lock = threading.RLock()
                cls._locks[uid] = lock
            return lock

    @classmethod
    @contextmanager
    def locked(cls, uid: str):
        lock = cls._lock_for(uid)
        with lock:
            yield


# ==========================================================
#                  LEDGER STORE
# ==========================================================
class LedgerStore:
    """
    Owns every account mutation: balances, transactions and notifications.

    The store never commits on its own; services call ``save()`` (or use
    ``unit_of_work()``) once all preconditions have been checked and every
    mutation of the operation has been applied.
    """

    def __init__(self, session, config):
        self.session = session
        self.config = config

    # ------------------------------------------------------
    # Lookups
    # ------------------------------------------------------
    def get_account(self, uid: str, for_update: bool = False) -> Account:
        query = self.session.query(Account).filter(Account.uid == uid)
        if for_update:
            query = query.with_for_update()
        account = query.first()
        if not account:
            raise AccountNotFound(f"Account {uid} not found")
        return account

    def get_account_by_email(self, email: str) -> Account:
        account = self.session.query(Account).filter(
            Account.email == (email or "").strip().lower()
        ).first()
        if not account:
            raise AccountNotFound(f"No account registered for {email}")
        return account

    def find_account_by_email(self, email: str) -> Optional[Account]:
        return self.session.query(Account).filter(
            Account.email == (email or "").strip().lower()
        ).first()

    def get_account_by_referral_code(self, code: str) -> Optional[Account]:
        if not code:
            return None
        return self.session.query(Account).filter(
            Account.referral_code == code.strip().upper()
        ).first()

    def get_transaction(self, transaction_id, kind: Optional[str] = None, for_update: bool = False) -> Transaction:
        try:
            transaction_id = int(transaction_id)
        except (TypeError, ValueError):
            raise TransactionNotFound(f"Transaction {transaction_id} not found")

        query = self.session.query(Transaction).filter(Transaction.id == transaction_id)
        if for_update:
            query = query.with_for_update()
        tx = query.first()
        if not tx or (kind and tx.kind != kind):
            raise TransactionNotFound(f"{kind or 'Transaction'} {transaction_id} not found")
        return tx

    def get_contract(self, contract_id, for_update: bool = False) -> Contract:
        try:
            contract_id = int(contract_id)
        except (TypeError, ValueError):
            raise ContractNotFound(f"Contract {contract_id} not found")

        query = self.session.query(Contract).filter(Contract.id == contract_id)
        if for_update:
            query = query.with_for_update()
        contract = query.first()
        if not contract:
            raise ContractNotFound(f"Contract {contract_id} not found")
        return contract

    def admins(self):
        return self.session.query(Account).filter(Account.is_admin.is_(True)).order_by(Account.id).all()

    def tiers(self):
        """Tier table from the database, falling back to the configured defaults before seeding."""
        rows = self.session.query(VipTier).order_by(VipTier.level).all()
        if rows:
            return rows
        return parse_tier_table(self.config.get("DEFAULT_VIP_TIERS", []))

    def system_settings(self) -> Optional[SystemSettings]:
        return self.session.query(SystemSettings).order_by(SystemSettings.id).first()

    @property
    def min_balance(self) -> Decimal:
        return Decimal(str(self.config.get("VIP_MIN_BALANCE", 120)))

    @property
    def default_asset(self) -> str:
        return self.config.get("DEFAULT_ASSET", "USDT")

    # ------------------------------------------------------
    # Mutations
    # ------------------------------------------------------
    def refresh_vip(self, account: Account, tiers=None) -> int:
        previous = account.vip_level
        level = refresh_vip_level(account, tiers if tiers is not None else self.tiers(), self.min_balance)
        if previous != level:
            logger.info(f"VIP level for {account.uid} changed {previous} -> {level}")
        return level

    def credit(self, account: Account, amount) -> Decimal:
        amount = to_amount(amount)
        account.balance = money(Decimal(account.balance or 0) + amount)
        self.refresh_vip(account)
        logger.info(f"Credited {amount} to {account.uid}; balance {account.balance}")
        return account.balance

    def debit(self, account: Account, amount) -> Decimal:
        amount = to_amount(amount)
        balance = Decimal(account.balance or 0)
        if amount > balance:
            logger.warning(f"InsufficientFunds: debit {amount} from {account.uid} with balance {balance}")
            raise InsufficientFunds(f"Insufficient balance: {balance} available, {amount} required")
        account.balance = money(balance - amount)
        self.refresh_vip(account)
        logger.info(f"Debited {amount} from {account.uid}; balance {account.balance}")
        return account.balance

    def set_balance(self, account: Account, value) -> Decimal:
        """Direct override; returns the signed difference applied."""
        new_balance = money(to_decimal(value, "balance"))
        diff = money(new_balance - Decimal(account.balance or 0))
        account.balance = new_balance
        self.refresh_vip(account)
        logger.info(f"Balance of {account.uid} set to {new_balance} (difference {diff})")
        return diff

    def append_transaction(self, account: Account, kind: str, amount, status: str = TransactionStatus.PENDING.value,
                           asset: Optional[str] = None, **fields) -> Transaction:
        tx = Transaction(
            kind=kind,
            amount=money(amount),
            status=status,
            asset=asset or self.default_asset,
            **fields,
        )
        account.transactions.append(tx)
        self.session.add(tx)
        self.session.flush()
        return tx

    def append_notification(self, account: Account, title: str, message: str,
                            kind: str = NotificationKind.SYSTEM.value) -> Notification:
        note = Notification(title=title, message=message, kind=kind)
        account.notifications.append(note)
        self.session.add(note)
        return note

    def notify_admins(self, title: str, message: str):
        for admin in self.admins():
            self.append_notification(admin, title, message, NotificationKind.SYSTEM.value)

    # ------------------------------------------------------
    # Persistence boundary
    # ------------------------------------------------------
    def add(self, instance):
        self.session.add(instance)
        return instance

    def flush(self):
        self.session.flush()

    def save(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()

    @contextmanager
    def unit_of_work(self):
        """Commit when the block finishes, roll back and re-raise on any error."""
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
