from werkzeug.security import check_password_hash, generate_password_hash

from ledger.exceptions import AuthFailed, InvalidRequest


class CredentialVerifier:
    """Password hashing and checks, kept out of the ledger services."""

    def __init__(self, min_length: int = 6):
        self.min_length = min_length

    def hash_password(self, password: str, min_length: int = None) -> str:
        min_length = self.min_length if min_length is None else min_length
        if not password or len(password) < min_length:
            raise InvalidRequest(f"Password must be at least {min_length} characters")
        return generate_password_hash(password)

    def check(self, password_hash: str, password: str) -> bool:
        if not password_hash or not password:
            return False
        return check_password_hash(password_hash, password)

    def verify(self, account, password: str) -> bool:
        """Raise AuthFailed unless the login password matches."""
        if not self.check(account.password_hash, password):
            raise AuthFailed("Incorrect password")
        return True
