import logging
from typing import Optional

from models import (
    Account, KycDocument, KycStatus, LoginRecord, Notification, utcnow,
)
from ledger.exceptions import AccountExists, AuthFailed, InvalidRequest
from ledger.validation import require_text
from utils import validate_email


logger = logging.getLogger(__name__)

UID_PREFIX = "UID-"
FIRST_UID_NUMBER = 10000


def format_name(name: str) -> str:
    return " ".join(part[:1].upper() + part[1:] for part in name.strip().split())


def referral_code_for(uid: str) -> str:
    return f"REF{uid.replace(UID_PREFIX, '')[:6]}".upper()


class AccountService:
    """Signup, login bookkeeping, KYC submission and profile security."""

    def __init__(self, store, credentials, referrals):
        self.store = store
        self.credentials = credentials
        self.referrals = referrals

    def next_uid(self) -> str:
        highest = FIRST_UID_NUMBER
        for (uid,) in self.store.session.query(Account.uid).filter(Account.uid.like(f"{UID_PREFIX}%")):
            suffix = uid[len(UID_PREFIX):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{UID_PREFIX}{highest + 1}"

    def create_account(self, name, email, password, details: Optional[dict] = None,
                       referral_code: Optional[str] = None, is_admin: bool = False,
                       uid: Optional[str] = None) -> Account:
        """Register a new account and link it to a referrer when the code matches."""
        name = format_name(require_text(name, "name"))
        email = require_text(email, "email").lower()
        if not validate_email(email):
            raise InvalidRequest("Invalid email address")
        if self.store.find_account_by_email(email):
            logger.warning(f"AccountExists: signup attempt for {email}")
            raise AccountExists("An account with this email already exists")

        password_hash = self.credentials.hash_password(
            password, self.store.config.get("MIN_SIGNUP_PASSWORD_LENGTH", 6))
        details = details or {}

        with self.store.unit_of_work():
            uid = uid or self.next_uid()
            account = Account(
                uid=uid,
                name=name,
                email=email,
                password_hash=password_hash,
                is_admin=is_admin,
                balance=0,
                referral_rewards=0,
                vip_level=0,
                kyc_status=KycStatus.UNVERIFIED.value,
                full_name=details.get("fullName") or name,
                date_of_birth=details.get("dateOfBirth"),
                country=details.get("country"),
                address=details.get("address"),
                referral_code=referral_code_for(uid),
            )
            self.store.add(account)
            self.store.flush()
            self.store.refresh_vip(account)
            self.referrals.register_referral(account, referral_code)

        logger.info(f"Account {account.uid} created for {email}")
        return account

    def authenticate(self, email, password, ip_address: Optional[str] = None,
                     device: Optional[str] = None) -> Account:
        account = self.store.find_account_by_email(email)
        if not account or not account.is_active or not self.credentials.check(account.password_hash, password):
            logger.warning(f"AuthFailed: login attempt for {email}")
            raise AuthFailed("Invalid email or password")

        with self.store.unit_of_work():
            record = LoginRecord(ip_address=ip_address, device=(device or "")[:255] or None)
            account.login_records.append(record)
            self.store.add(record)
        logger.info(f"Account {account.uid} logged in from {ip_address}")
        return account

    def submit_kyc(self, account: Account, full_name, date_of_birth, country, address,
                   id_front=None, id_back=None) -> Account:
        full_name = require_text(full_name, "fullName")
        date_of_birth = require_text(date_of_birth, "dateOfBirth")
        country = require_text(country, "country")
        address = require_text(address, "address")
        if account.kyc_status == KycStatus.VERIFIED.value:
            raise InvalidRequest("Identity is already verified")

        with self.store.unit_of_work():
            account.full_name = full_name
            account.date_of_birth = date_of_birth
            account.country = country
            account.address = address
            account.kyc_status = KycStatus.PENDING.value

            document = account.kyc_document
            if document is None:
                document = KycDocument()
                account.kyc_document = document
                self.store.add(document)
            document.id_front = id_front
            document.id_back = id_back
            document.submitted_at = utcnow()

            self.store.notify_admins(
                "New KYC Submission",
                f"{account.name} has submitted documents for KYC verification.",
            )
        logger.info(f"KYC submitted by {account.uid}")
        return account

    def change_password(self, account: Account, current_password, new_password) -> Account:
        self.credentials.verify(account, current_password)
        new_hash = self.credentials.hash_password(
            new_password, self.store.config.get("MIN_PASSWORD_LENGTH", 8))

        with self.store.unit_of_work():
            account.password_hash = new_hash
            self.store.append_notification(
                account, "Password Changed", "Your login password was changed.", "security")
        logger.info(f"Password changed for {account.uid}")
        return account

    def set_fund_password(self, account: Account, login_password, new_fund_password) -> Account:
        self.credentials.verify(account, login_password)
        new_hash = self.credentials.hash_password(
            new_fund_password, self.store.config.get("MIN_FUND_PASSWORD_LENGTH", 6))

        with self.store.unit_of_work():
            account.fund_password_hash = new_hash
            self.store.append_notification(
                account, "Fund Password Set", "Your fund password has been updated.", "security")
        logger.info(f"Fund password set for {account.uid}")
        return account

    def mark_notifications_read(self, account: Account, notification_id=None) -> int:
        """Mark one notification (or all of them) as read; returns how many changed."""
        query = self.store.session.query(Notification).filter(
            Notification.account_id == account.id,
            Notification.read.is_(False),
        )
        if notification_id is not None:
            try:
                query = query.filter(Notification.id == int(notification_id))
            except (TypeError, ValueError):
                raise InvalidRequest("Invalid notification id")

        with self.store.unit_of_work():
            notes = query.all()
            for note in notes:
                note.read = True
        return len(notes)

    def snapshot(self, account: Account) -> dict:
        data = account.to_dict()
        data["referral"] = self.referrals.summary(account)
        data["unreadNotifications"] = sum(1 for n in account.notifications if not n.read)
        return data
