from cryptography.fernet import Fernet, InvalidToken

from runsync.config import Settings


class TokenCipher:
    """Fernet encryption for Strava refresh tokens at rest. Without a key (dev) values are stored as-is."""

    def __init__(self, settings: Settings):
        key = settings.encryption_key
        self._fernet = Fernet(key.encode()) if key else None

    def encrypt(self, value: str) -> str:
        if not value:
            return ""
        if self._fernet is None:
            return value  # dev: no key → store plaintext
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, encrypted: str) -> str:
        if not encrypted:
            return ""
        if self._fernet is None:
            return encrypted  # dev: no key
        try:
            return self._fernet.decrypt(encrypted.encode()).decode()
        except InvalidToken:
            return ""
