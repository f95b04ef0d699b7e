import base64
import binascii
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import DecryptionError

KEY_SIZE = 32                                                # AES-256
NONCE_SIZE = 12                                              # 96-bit GCM nonce
TAG_SIZE = 16                                                # GCM authentication tag

_hasher = PasswordHasher()


# ---------------------------
# Symmetric secret cipher
# ---------------------------
def derive_key(material: str) -> bytes:
    """Pad (with '0') or truncate the configured key material to 32 bytes."""
    raw = material.encode("utf-8")
    return raw.ljust(KEY_SIZE, b"0")[:KEY_SIZE]


class SecretCipher:
    """AES-256-GCM wrapper protecting TOTP seeds at rest.

    Blob layout is ``base64(nonce || ciphertext || tag)`` with a fresh random
    nonce per call.
    """

    def __init__(self, key_material: str):
        self._aead = AESGCM(derive_key(key_material))

    def encrypt(self, plaintext: bytes) -> str:
        nonce = secrets.token_bytes(NONCE_SIZE)
        ct = self._aead.encrypt(nonce, plaintext, None)
        return base64.b64encode(nonce + ct).decode("ascii")

    def decrypt(self, blob: str) -> bytes:
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError, TypeError):
            raise DecryptionError("ciphertext is not valid base64") from None
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("ciphertext too short")
        nonce, ct = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            return self._aead.decrypt(nonce, ct, None)
        except InvalidTag:
            raise DecryptionError("authentication tag mismatch") from None

    def encrypt_text(self, text: str) -> str:
        return self.encrypt(text.encode("utf-8"))

    def decrypt_text(self, blob: str) -> str:
        try:
            return self.decrypt(blob).decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("plaintext is not utf-8") from None


# ---------------------------
# Password hashing
# ---------------------------
def hash_password(password: str) -> str:
    """Hash a password with argon2id (salt is embedded in the hash)."""
    return _hasher.hash(password)


def verify_password(stored_hash: str, password: str) -> bool:
    """Verify password against stored hash."""
    try:
        return _hasher.verify(stored_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def new_token(nbytes: int = 32) -> str:
    """Random URL-safe token for sessions and reset links."""
    return secrets.token_urlsafe(nbytes)
