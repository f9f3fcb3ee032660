"""
AES-256-GCM sealing for broker secrets.

Master key is a 32-byte random key stored at $CREDBROKER_STATE_DIR/.broker-key (chmod 600).
Each seal gets a fresh random 12-byte nonce prepended to the ciphertext. The
record's name is bound as associated data, so a sealed value moved onto a
different record will not open.
"""

from __future__ import annotations

import base64
import binascii
import os
import secrets
import tempfile
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from credbroker.errors import CryptoError, StorageError
from credbroker.vault.models import SealedValue

ALGORITHM = "AES-256-GCM"
KEY_FILE = ".broker-key"
NONCE_SIZE = 12
TAG_SIZE = 16

_cached_keys: dict[Path, bytes] = {}


def init_master_key(state_dir: Path | str) -> Path:
    """Generate a new master key file. Returns the path. Idempotent — skips if exists."""
    key_path = Path(state_dir) / KEY_FILE
    if key_path.exists():
        return key_path
    try:
        key_path.parent.mkdir(parents=True, exist_ok=True)
        # mkstemp creates the file 600.
        fd, tmp = tempfile.mkstemp(dir=key_path.parent, prefix=f"{KEY_FILE}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(secrets.token_bytes(32))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, key_path)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
    except OSError as e:
        raise StorageError(f"Cannot create broker master key at {key_path}: {e}") from e
    return key_path


def get_master_key(state_dir: Path | str) -> bytes:
    """Load the master key from disk (cached per state dir after first read)."""
    key_path = (Path(state_dir) / KEY_FILE).resolve()
    cached = _cached_keys.get(key_path)
    if cached is not None:
        return cached

    if not key_path.exists():
        raise CryptoError(
            f"Broker master key not found at {key_path}. "
            "It is created on first use of the broker."
        )
    try:
        key = key_path.read_bytes()
    except OSError as e:
        raise CryptoError(f"Cannot read broker master key at {key_path}: {e}") from e
    if len(key) != 32:
        raise CryptoError(f"Broker master key must be 32 bytes, got {len(key)}")
    _cached_keys[key_path] = key
    return key


def reset_key_cache() -> None:
    """Clear the cached master keys (for testing)."""
    _cached_keys.clear()


def encrypt(plaintext: str, master_key: bytes, aad: bytes | None = None) -> bytes:
    """Encrypt with AES-256-GCM. Returns nonce (12 bytes) + ciphertext + tag (16 bytes)."""
    nonce = secrets.token_bytes(NONCE_SIZE)
    aesgcm = AESGCM(master_key)
    ciphertext = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), aad)
    return nonce + ciphertext


def decrypt(data: bytes, master_key: bytes, aad: bytes | None = None) -> str:
    """Decrypt nonce + ciphertext + tag back to plaintext."""
    if len(data) < NONCE_SIZE + TAG_SIZE:
        raise CryptoError("Encrypted data too short")
    nonce = data[:NONCE_SIZE]
    ciphertext = data[NONCE_SIZE:]
    try:
        plaintext = AESGCM(master_key).decrypt(nonce, ciphertext, aad)
    except InvalidTag as e:
        raise CryptoError("Decryption failed: data corrupted or key mismatch") from e
    return plaintext.decode("utf-8")


def seal(value: str, master_key: bytes, context: str) -> SealedValue:
    """Seal a value for storage, bound to context (usually the secret name)."""
    data = encrypt(value, master_key, context.encode("utf-8"))
    return SealedValue(
        alg=ALGORITHM,
        nonce=base64.b64encode(data[:NONCE_SIZE]).decode("ascii"),
        ciphertext=base64.b64encode(data[NONCE_SIZE:]).decode("ascii"),
    )


def unseal(sealed: SealedValue, master_key: bytes, context: str) -> str:
    if sealed.alg != ALGORITHM:
        raise CryptoError(f"Unsupported sealing algorithm: {sealed.alg}")
    try:
        nonce = base64.b64decode(sealed.nonce, validate=True)
        ciphertext = base64.b64decode(sealed.ciphertext, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError("Sealed value is not valid base64") from e
    if len(nonce) != NONCE_SIZE:
        raise CryptoError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
    return decrypt(nonce + ciphertext, master_key, context.encode("utf-8"))
