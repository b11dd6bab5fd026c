# make_admin.py
# Usage: python make_admin.py <email> [password]
#    or: flask create-admin <email>

import sys

from sqlalchemy.exc import IntegrityError

from extensions import db
from ledger.service import Ledger

DEFAULT_NAME = "Administrator"


def make_admin(app, email, password, name=DEFAULT_NAME):
    """Promote the account registered under ``email``, creating it first when missing."""
    with app.app_context():
        ledger = Ledger(db.session, app.config)
        account = ledger.store.find_account_by_email(email)

        if account:
            print(f"Found account {account.uid} ({account.email}). Promoting to admin...")
        else:
            print(f"No account with email {email} found, creating one.")
            try:
                account = ledger.accounts.create_account(name, email, password)
            except IntegrityError as e:
                db.session.rollback()
                raise RuntimeError("Failed to create admin account") from e

        account.is_admin = True
        ledger.store.save()
        db.session.refresh(account)
        print(f"Account {account.uid} ({account.email}) is now admin.")
        return account


if __name__ == "__main__":
    from app import create_app

    if len(sys.argv) < 3:
        print("Usage: python make_admin.py <email> <password>")
        sys.exit(1)
    make_admin(create_app(), sys.argv[1], sys.argv[2])
