from flask import current_app, g

from extensions import db
from ledger.accounts import AccountService
from ledger.admin import AdminService
from ledger.auth import CredentialVerifier
from ledger.contracts import ContractEngine
from ledger.funding import FundingWorkflow
from ledger.referrals import ReferralEngine
from ledger.settings import SettingsService
from ledger.store import LedgerStore


class Ledger:
    """
    Wires every ledger service to one store.

    Build one per request (or per worker pass) with the session and config it
    should use; nothing here is module-level state.
    """

    def __init__(self, session, config):
        self.config = config
        self.store = LedgerStore(session, config)
        self.credentials = CredentialVerifier(config.get("MIN_SIGNUP_PASSWORD_LENGTH", 6))
        self.referrals = ReferralEngine(self.store)
        self.funding = FundingWorkflow(self.store, self.credentials, self.referrals)
        self.contracts = ContractEngine(self.store)
        self.accounts = AccountService(self.store, self.credentials, self.referrals)
        self.settings = SettingsService(self.store)
        self.admin = AdminService(self)


def get_ledger():
    """Ledger bound to the current Flask app and its database session."""
    if "ledger" not in g:
        g.ledger = Ledger(db.session, current_app.config)
    return g.ledger
