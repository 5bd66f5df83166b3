#!/usr/bin/env python3
"""
Credential Vault - Keeps the DNS provider API token in memory only.

The token lives in a single mutable buffer that is zeroed whenever it is
replaced or cleared. The only way to obtain plaintext is
read_for_process_environment(), which exists solely to build the
environment block of the worker process.
"""

import logging
import threading
from typing import Optional


MASKED_PLACEHOLDER = "•" * 16


class CredentialVault:
    """Holds one secret string in memory."""

    def __init__(self):
        """Initialize an empty vault."""
        self._buffer: Optional[bytearray] = None
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def set(self, secret: str) -> None:
        """Replace any existing secret, destroying the previous one first."""
        if not isinstance(secret, str):
            raise TypeError("secret must be a str")

        with self._lock:
            self._wipe()
            self._buffer = bytearray(secret.encode("utf-8"))

        self.logger.info("Credential stored in memory")

    def read_for_process_environment(self) -> Optional[str]:
        """Return the secret for child-process environment injection.

        Returns None when no credential has been set, so callers can tell
        "not set" apart from "set to empty". Callers must not keep the
        returned string beyond the injection.
        """
        with self._lock:
            if self._buffer is None:
                return None
            return self._buffer.decode("utf-8")

    def masked(self) -> str:
        """Return the fixed display placeholder."""
        return MASKED_PLACEHOLDER

    def is_set(self) -> bool:
        """Check whether a credential is present."""
        with self._lock:
            return self._buffer is not None

    def contains_secret(self, text: str) -> bool:
        """Check whether text contains the live secret verbatim."""
        if not text:
            return False
        with self._lock:
            if not self._buffer:
                return False
            return bytes(self._buffer) in text.encode("utf-8")

    def redact(self, text: str) -> str:
        """Replace literal occurrences of the live secret with the placeholder."""
        if not text:
            return text
        with self._lock:
            if not self._buffer:
                return text
            needle = bytes(self._buffer)
            data = text.encode("utf-8")
            if needle not in data:
                return text
            return data.replace(needle, MASKED_PLACEHOLDER.encode("utf-8")).decode("utf-8")

    def clear(self) -> None:
        """Destroy the secret. Safe to call repeatedly."""
        with self._lock:
            had_secret = self._buffer is not None
            self._wipe()

        if had_secret:
            self.logger.info("Credential cleared from memory")

    def _wipe(self) -> None:
        # caller holds the lock
        if self._buffer is not None:
            for i in range(len(self._buffer)):
                self._buffer[i] = 0
            self._buffer = None

    def __enter__(self) -> "CredentialVault":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clear()

    def __repr__(self) -> str:
        state = "set" if self.is_set() else "empty"
        return f"<CredentialVault {state} {MASKED_PLACEHOLDER}>"

    __str__ = __repr__

    def __reduce__(self):
        raise TypeError("CredentialVault cannot be pickled")

    def __copy__(self):
        raise TypeError("CredentialVault cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("CredentialVault cannot be copied")
