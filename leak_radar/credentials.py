"""
Encryption of billing API keys at rest.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from .errors import CredentialError

LOG = logging.getLogger("leak_radar.credentials")


class CredentialCipher:
    """Fernet wrapper used to store Stripe secret keys."""

    def __init__(self, key: Union[str, bytes]):
        if not key:
            raise CredentialError("ENCRYPTION_KEY is not set")
        raw = key.encode() if isinstance(key, str) else key
        try:
            self.cipher = Fernet(raw)
        except (ValueError, TypeError) as exc:
            raise CredentialError("ENCRYPTION_KEY is not a valid Fernet key") from exc

    @classmethod
    def generate_key(cls) -> str:
        return Fernet.generate_key().decode()

    @classmethod
    def from_settings(cls, settings) -> "CredentialCipher":
        return cls(settings.encryption_key or "")

    def encrypt(self, secret: str) -> str:
        if not secret:
            raise CredentialError("Cannot encrypt an empty secret")
        return self.cipher.encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: Optional[str]) -> str:
        if not token:
            raise CredentialError("No encrypted credential stored")
        try:
            return self.cipher.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            LOG.error("Stored credential could not be decrypted with the current key")
            raise CredentialError("Stored credential could not be decrypted") from exc


def mask_secret(secret: Optional[str], visible: int = 4) -> str:
    """Return ``secret`` with everything except the last characters hidden."""
    if not secret:
        return ""
    if len(secret) <= visible:
        return "*" * len(secret)
    return "*" * (len(secret) - visible) + secret[-visible:]
