"""
Identity Vault

Reversible encryption of the submitter behind an ANONYMOUS report, plus the
tracking token that lets the submitter follow the report without logging in.

- Each record gets a fresh random salt (key_id).
- The record key is HKDF-SHA256(master secret, salt=key_id).
- The reporter id is sealed with Fernet under that key.
- The tracking token is returned once and only its bcrypt hash is stored.

decrypt() is for privileged internal paths only. No public lookup reaches it.
"""
import base64
import secrets
from dataclasses import dataclass

import bcrypt
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ...config import IDENTITY_MASTER_SECRET
from ...errors import Internal

KEY_INFO = b"lapor-anonymous-reporter"

# bcrypt only looks at the first 72 bytes and newer releases refuse longer input
BCRYPT_MAX_BYTES = 72


@dataclass(frozen=True)
class SealedIdentity:
    encrypted_reporter_id: str
    key_id: str
    tracking_token: str


class IdentityVault:
    """Capability object for anonymous reporter identities."""

    def __init__(self, master_secret: str = IDENTITY_MASTER_SECRET):
        if not master_secret:
            raise ValueError("Identity master secret must not be empty")
        self._master = master_secret.encode("utf-8")

    def _fernet(self, key_id: str) -> Fernet:
        key = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=bytes.fromhex(key_id),
            info=KEY_INFO,
        ).derive(self._master)
        return Fernet(base64.urlsafe_b64encode(key))

    def encrypt(self, reporter_id: str) -> SealedIdentity:
        key_id = secrets.token_hex(16)
        token = self._fernet(key_id).encrypt(reporter_id.encode("utf-8"))
        return SealedIdentity(
            encrypted_reporter_id=token.decode("ascii"),
            key_id=key_id,
            tracking_token=secrets.token_hex(16).upper(),
        )

    def decrypt(self, encrypted_reporter_id: str, key_id: str) -> str:
        try:
            plain = self._fernet(key_id).decrypt(encrypted_reporter_id.encode("ascii"))
        except (InvalidToken, ValueError) as e:
            raise Internal("Anonymous identity could not be decrypted") from e
        return plain.decode("utf-8")

    # =========================================================================
    # TRACKING TOKENS
    # =========================================================================

    @staticmethod
    def hash_token(tracking_token: str) -> str:
        """Hash a tracking token using bcrypt."""
        return bcrypt.hashpw(tracking_token.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def verify_token(tracking_token: str, token_hash: str) -> bool:
        """Verify a tracking token against its stored hash."""
        if not tracking_token or not token_hash:
            return False
        candidate = tracking_token.encode("utf-8")
        if len(candidate) > BCRYPT_MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(candidate, token_hash.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False
