"""Typed failures surfaced by the broker. Every one carries a readable message."""

from __future__ import annotations


class BrokerError(Exception):
    """Base class for all broker failures."""


class NotFound(BrokerError):
    """Secret (or grant) does not exist."""


class InvalidTier(BrokerError):
    """Unrecognized tier string, or a grant requested on an open secret."""


class InvalidCode(BrokerError):
    """TOTP code did not verify."""


class ValidationError(BrokerError):
    """Malformed caller input (TTL, empty name/value, bad config value)."""


class LockTimeout(BrokerError):
    """Exclusive access to the state directory was not obtained in time."""


class StorageError(BrokerError):
    """Reading or writing persisted state failed."""


class CryptoError(BrokerError):
    """Seal/unseal failure: corrupted ciphertext, wrong key, bad key file."""
