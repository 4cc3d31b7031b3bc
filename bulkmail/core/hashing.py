"""Keyed, one-way hashing of raw identifiers (sending IP, SMTP login).

Digests allow equality joins for quota correlation without storing the raw
value. The pepper is dedicated to this purpose and not shared with the
encryption or session secrets.
"""
from __future__ import annotations

import hashlib
import hmac
from functools import lru_cache

from bulkmail.core.config import settings
from bulkmail.core.exceptions import ConfigurationError


class IdentifierHasher:
    def __init__(self, pepper: str | None):
        if not pepper:
            raise ConfigurationError("IDENTIFIER_HASH_PEPPER")
        self._pepper = pepper.encode("utf-8")

    def hash(self, raw_identifier: str) -> str:
        return hmac.new(self._pepper, raw_identifier.encode("utf-8"), hashlib.sha256).hexdigest()

    def hash_ip(self, ip_address: str) -> str:
        return self.hash(ip_address.strip())

    def hash_smtp_identity(self, smtp_identity: str) -> str:
        # Mail logins are case-insensitive; fold case so "Bob@x.com" and "bob@x.com" match
        return self.hash(smtp_identity.strip().lower())


@lru_cache
def get_hasher() -> IdentifierHasher:
    return IdentifierHasher(settings.IDENTIFIER_HASH_PEPPER)
