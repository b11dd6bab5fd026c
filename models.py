# models.py - Canonical Flask-SQLAlchemy models for the ledger
from datetime import datetime, timezone
from decimal import Decimal
import enum
from sqlalchemy import Index
from flask_login import UserMixin
from extensions import db


def utcnow():
    """Naive UTC timestamp; SQLite drops tzinfo so everything is stored naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


def _num(value):
    return float(value) if value is not None else None


# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class TransactionKind(enum.Enum):
    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"
    TRADE = "Trade"
    ADMIN_ADJUSTMENT = "Admin Adjustment"
    SIGNUP_BONUS = "Signup Bonus"


class TransactionStatus(enum.Enum):
    COMPLETED = "Completed"
    PENDING = "Pending"
    FAILED = "Failed"
    OPEN = "Open"


class KycStatus(enum.Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class ContractStatus(enum.Enum):
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"


class ContractDirection(enum.Enum):
    BUY = "buy"
    SELL = "sell"


class ReferralStatus(enum.Enum):
    REGISTERED = "registered"
    DEPOSITED = "deposited"


class NotificationKind(enum.Enum):
    SECURITY = "security"
    TRANSACTION = "transaction"
    SYSTEM = "system"


DEPOSIT_NETWORKS = ("TRC20", "ERC20", "BTC")


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


# ===========================================================
# ACCOUNT
# ===========================================================

class Account(db.Model, BaseMixin, UserMixin):
    """One wallet per user: balance, ledger history, contracts and referrals."""
    __tablename__ = 'accounts'

    id = db.Column(db.Integer, primary_key=True)
    uid = db.Column(db.String(32), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    fund_password_hash = db.Column(db.String(255), nullable=True)

    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    balance = db.Column(db.Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    referral_rewards = db.Column(db.Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    vip_level = db.Column(db.Integer, default=0, nullable=False)

    kyc_status = db.Column(db.String(20), default=KycStatus.UNVERIFIED.value, nullable=False)
    full_name = db.Column(db.String(150))
    date_of_birth = db.Column(db.String(20))
    country = db.Column(db.String(80))
    address = db.Column(db.String(255))

    referral_code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    referred_by_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=True)

    # Relationships (newest first)
    transactions = db.relationship(
        'Transaction', back_populates='account', foreign_keys='Transaction.account_id',
        order_by='Transaction.id.desc()', cascade="all,delete-orphan")
    notifications = db.relationship(
        'Notification', back_populates='account',
        order_by='Notification.id.desc()', cascade="all,delete-orphan")
    contracts = db.relationship(
        'Contract', back_populates='account',
        order_by='Contract.id.desc()', cascade="all,delete-orphan")
    referrals = db.relationship(
        'Referral', back_populates='referrer', foreign_keys='Referral.referrer_id',
        order_by='Referral.id.desc()')
    login_records = db.relationship(
        'LoginRecord', back_populates='account',
        order_by='LoginRecord.id.desc()', cascade="all,delete-orphan")
    kyc_document = db.relationship(
        'KycDocument', uselist=False, back_populates='account', cascade="all,delete-orphan")
    referred_by = db.relationship('Account', remote_side=[id])

    @property
    def total_deposits(self):
        """Sum of completed deposits, recomputed from the ledger every time."""
        total = Decimal("0.00")
        for tx in self.transactions:
            if tx.kind == TransactionKind.DEPOSIT.value and tx.status == TransactionStatus.COMPLETED.value:
                total += Decimal(tx.amount)
        return total

    @property
    def active_contracts(self):
        return [c for c in self.contracts if c.status == ContractStatus.ACTIVE.value]

    @property
    def contract_history(self):
        return [c for c in self.contracts if c.status != ContractStatus.ACTIVE.value]

    def to_dict(self, include_ledger=True):
        """Serialize the account for JSON responses; password hashes never leave the model."""
        result = {
            "id": self.id,
            "uid": self.uid,
            "name": self.name,
            "email": self.email,
            "isAdmin": self.is_admin,
            "isActive": self.is_active,
            "balance": _num(self.balance),
            "totalDeposits": float(self.total_deposits),
            "referralRewards": _num(self.referral_rewards),
            "vipLevel": self.vip_level,
            "kycStatus": self.kyc_status,
            "fullName": self.full_name,
            "dateOfBirth": self.date_of_birth,
            "country": self.country,
            "address": self.address,
            "referralCode": self.referral_code,
            "hasFundPassword": bool(self.fund_password_hash),
            "memberSince": _iso(self.created_at),
        }

        if include_ledger:
            result["transactions"] = [tx.to_dict() for tx in self.transactions]
            result["notifications"] = [n.to_dict() for n in self.notifications]
            result["activeContracts"] = [c.to_dict() for c in self.active_contracts]
            result["contractHistory"] = [c.to_dict() for c in self.contract_history]
            result["referredUsers"] = [r.to_dict() for r in self.referrals]
            result["loginHistory"] = [r.to_dict() for r in self.login_records]
        return result

    def __repr__(self):
        return f'<Account {self.uid} {self.email}>'


# ===========================================================
# TRANSACTIONS & NOTIFICATIONS
# ===========================================================

class Transaction(db.Model, BaseMixin):
    __tablename__ = 'transactions'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    kind = db.Column(db.String(30), nullable=False)
    asset = db.Column(db.String(16), nullable=False, default="USDT")
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    status = db.Column(db.String(20), default=TransactionStatus.PENDING.value, nullable=False)

    # Funding
    network = db.Column(db.String(10))
    address = db.Column(db.String(255))
    proof = db.Column(db.Text)
    resolved_at = db.Column(db.DateTime)
    resolved_by_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=True)

    # Trade
    contract_id = db.Column(db.Integer, db.ForeignKey('contracts.id'), nullable=True, unique=True)
    pair = db.Column(db.String(20))
    direction = db.Column(db.String(4))
    stake = db.Column(db.Numeric(18, 2))
    commission = db.Column(db.Numeric(18, 2))
    entry_price = db.Column(db.Numeric(20, 8))
    exit_price = db.Column(db.Numeric(20, 8))
    settlement_duration = db.Column(db.Integer)
    profit_percentage = db.Column(db.Numeric(8, 4))
    commission_percentage = db.Column(db.Numeric(8, 4))
    end_time = db.Column(db.DateTime)

    account = db.relationship('Account', back_populates='transactions', foreign_keys=[account_id])

    __table_args__ = (
        Index('idx_transaction_kind_status', 'kind', 'status'),
    )

    def to_dict(self):
        result = {
            "id": self.id,
            "type": self.kind,
            "asset": self.asset,
            "amount": _num(self.amount),
            "status": self.status,
            "date": _iso(self.created_at),
        }
        if self.kind in (TransactionKind.DEPOSIT.value, TransactionKind.WITHDRAWAL.value):
            result.update({
                "network": self.network,
                "address": self.address,
                "hasProof": bool(self.proof),
                "resolvedAt": _iso(self.resolved_at),
            })
        if self.kind == TransactionKind.TRADE.value:
            result.update({
                "contractId": self.contract_id,
                "pair": self.pair,
                "direction": self.direction,
                "stake": _num(self.stake),
                "commission": _num(self.commission),
                "profit": _num(self.amount),
                "entryPrice": _num(self.entry_price),
                "exitPrice": _num(self.exit_price),
                "settlementDuration": self.settlement_duration,
                "profitPercentage": _num(self.profit_percentage),
                "commissionPercentage": _num(self.commission_percentage),
                "endTime": _iso(self.end_time),
            })
        return result


class Notification(db.Model):
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    title = db.Column(db.String(120), nullable=False)
    message = db.Column(db.Text, nullable=False)
    kind = db.Column(db.String(20), default=NotificationKind.SYSTEM.value, nullable=False)
    read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    account = db.relationship('Account', back_populates='notifications')

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.kind,
            "read": self.read,
            "date": _iso(self.created_at),
        }


# ===========================================================
# SECOND CONTRACTS
# ===========================================================

class Contract(db.Model):
    """Fixed-duration directional trade; closes_at plus status is the settlement due index."""
    __tablename__ = 'contracts'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    pair = db.Column(db.String(20), nullable=False)
    direction = db.Column(db.String(4), nullable=False)
    stake = db.Column(db.Numeric(18, 2), nullable=False)
    duration_seconds = db.Column(db.Integer, nullable=False)
    profit_rate = db.Column(db.Numeric(8, 4), nullable=False)
    commission_rate = db.Column(db.Numeric(8, 4), nullable=False)
    entry_price = db.Column(db.Numeric(20, 8), nullable=False)
    close_price = db.Column(db.Numeric(20, 8), nullable=True)
    status = db.Column(db.String(10), default=ContractStatus.ACTIVE.value, nullable=False)
    closes_at = db.Column(db.DateTime, nullable=False)
    expired_at = db.Column(db.DateTime, nullable=True)
    settled_at = db.Column(db.DateTime, nullable=True)
    settled_by = db.Column(db.String(10), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    account = db.relationship('Account', back_populates='contracts')

    __table_args__ = (
        Index('idx_contract_status_closes', 'status', 'closes_at'),
    )

    @property
    def commission(self):
        return (Decimal(self.stake) * Decimal(self.commission_rate)).quantize(Decimal("0.01"))

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.account.uid if self.account else None,
            "pair": self.pair,
            "type": self.direction,
            "amount": _num(self.stake),
            "duration": self.duration_seconds,
            "profitRate": _num(self.profit_rate),
            "commissionRate": _num(self.commission_rate),
            "entryPrice": _num(self.entry_price),
            "closePrice": _num(self.close_price),
            "status": self.status,
            "closesAt": _iso(self.closes_at),
            "awaitingSettlement": self.expired_at is not None and self.status == ContractStatus.ACTIVE.value,
            "settledAt": _iso(self.settled_at),
            "settledBy": self.settled_by,
            "createdDate": _iso(self.created_at),
        }


# ===========================================================
# REFERRALS
# ===========================================================

class Referral(db.Model):
    __tablename__ = 'referrals'

    id = db.Column(db.Integer, primary_key=True)
    referrer_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    referred_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, unique=True)
    status = db.Column(db.String(20), default=ReferralStatus.REGISTERED.value, nullable=False)
    reward_amount = db.Column(db.Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    rewarded_at = db.Column(db.DateTime, nullable=True)

    referrer = db.relationship('Account', foreign_keys=[referrer_id], back_populates='referrals')
    referred = db.relationship('Account', foreign_keys=[referred_id])

    def to_dict(self):
        return {
            "uid": self.referred.uid if self.referred else None,
            "name": self.referred.name if self.referred else None,
            "status": self.status,
            "reward": _num(self.reward_amount),
            "date": _iso(self.created_at),
        }


# ===========================================================
# SYSTEM SETTINGS
# ===========================================================

class VipTier(db.Model):
    """Configurable VIP brackets; trade_limit NULL means unlimited"""
    __tablename__ = 'vip_tiers'

    id = db.Column(db.Integer, primary_key=True)
    level = db.Column(db.Integer, nullable=False, unique=True)
    deposit_threshold = db.Column(db.Numeric(18, 2), nullable=False)
    trade_limit = db.Column(db.Integer, nullable=True)

    __table_args__ = (
        db.CheckConstraint('level >= 0', name='chk_vip_level_range'),
    )

    def to_dict(self):
        return {
            "level": self.level,
            "depositThreshold": _num(self.deposit_threshold),
            "tradeLimit": "unlimited" if self.trade_limit is None else self.trade_limit,
        }


class SystemSettings(db.Model):
    __tablename__ = 'system_settings'

    id = db.Column(db.Integer, primary_key=True)
    deposit_addresses = db.Column(db.JSON, nullable=False, default=dict)
    homepage_action_items = db.Column(db.JSON, nullable=False, default=list)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


# ===========================================================
# KYC, SESSIONS & AUDITING
# ===========================================================

class KycDocument(db.Model):
    __tablename__ = 'kyc_documents'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, unique=True)
    id_front = db.Column(db.Text)
    id_back = db.Column(db.Text)
    submitted_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    account = db.relationship('Account', back_populates='kyc_document')


class LoginRecord(db.Model):
    __tablename__ = 'login_records'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    ip_address = db.Column(db.String(45))
    device = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    account = db.relationship('Account', back_populates='login_records')

    def to_dict(self):
        return {"date": _iso(self.created_at), "ipAddress": self.ip_address, "device": self.device}


class AuditLog(db.Model, BaseMixin):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=True, index=True)
    action = db.Column(db.String(255), nullable=False)
    target = db.Column(db.String(120))
    details = db.Column(db.JSON)

    def to_dict(self):
        return {
            "id": self.id,
            "actorId": self.actor_id,
            "action": self.action,
            "target": self.target,
            "details": self.details,
            "date": _iso(self.created_at),
        }
