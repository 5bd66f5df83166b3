#!/usr/bin/env python3
"""
Log Masker - Removes credentials from text before it reaches a log sink.
"""

import logging
import re
from typing import Dict, List, Optional, Pattern

from ..vault.credential import CredentialVault


MASK_NONE = "none"
MASK_FULL = "full"
MASK_PARTIAL = "partial"

FULL_MASK = "********"
PARTIAL_FILL = "•" * 15

SENSITIVE_KEYWORDS = [
    "password", "passwd", "pwd",
    "token", "api_key", "apikey", "secret",
    "key", "private", "credential",
]


class LogMasker:
    """Masks sensitive values by field name or by pattern inside free text."""

    def __init__(self, vault: Optional[CredentialVault] = None):
        """Initialize masker, optionally bound to a vault for literal redaction."""
        self.vault = vault
        self.sensitive_fields: Dict[str, str] = {
            "cf_api_token": MASK_PARTIAL,
            "server_password": MASK_FULL,
            "password": MASK_FULL,
            "api_token": MASK_PARTIAL,
            "token": MASK_PARTIAL,
            "secret": MASK_FULL,
            "key": MASK_PARTIAL,
            "access_key": MASK_PARTIAL,
            "secret_key": MASK_PARTIAL,
        }
        self.patterns = self._compile_patterns()

    def _compile_patterns(self) -> List[Pattern]:
        """Compile patterns in the order they are applied."""
        return [
            # key=value style tokens
            re.compile(r'(cf_api_token|api_token|token|access_key|secret_key)["\s:=]+([a-zA-Z0-9_-]{16,})'),
            re.compile(r'(password|passwd)["\s:=]+([^\s"\')]{8,})'),
            re.compile(r'Bearer\s+([a-zA-Z0-9._\-+=/]{20,})'),
            # long opaque strings
            re.compile(r'\b[a-zA-Z0-9]{32,}\b'),
        ]

    def mask(self, value: str, field: str) -> str:
        """Mask a value according to the sensitivity of its field name."""
        strategy = self.sensitive_fields.get(field)
        if strategy is None:
            if self.is_sensitive_field(field):
                return self.apply_mask(value, MASK_PARTIAL)
            return value
        return self.apply_mask(value, strategy)

    def apply_mask(self, value: str, strategy: str) -> str:
        """Apply a masking strategy to a value."""
        if strategy == MASK_FULL:
            return FULL_MASK
        if strategy == MASK_PARTIAL:
            return self.mask_partial(value)
        return value

    def mask_partial(self, value: str) -> str:
        """Show the first 3 and last 2 characters only."""
        if not value:
            return ""
        if len(value) <= 5:
            return "•" * len(value)
        return value[:3] + PARTIAL_FILL + value[-2:]

    def is_sensitive_field(self, field: str) -> bool:
        """Check if a field name contains a sensitive keyword."""
        lower_field = field.lower()
        return any(keyword in lower_field for keyword in SENSITIVE_KEYWORDS)

    def set_mask_strategy(self, field: str, strategy: str) -> None:
        self.sensitive_fields[field] = strategy

    def get_mask_strategy(self, field: str) -> str:
        return self.sensitive_fields.get(field, MASK_NONE)

    def mask_in_string(self, text: str) -> str:
        """Mask every sensitive pattern found in text."""
        if not text:
            return text

        result = text
        if self.vault is not None:
            result = self.vault.redact(result)

        for pattern in self.patterns:
            result = pattern.sub(self._mask_match, result)

        return result

    def _mask_match(self, match) -> str:
        """Mask the value part of a match, keeping any key prefix."""
        groups = match.groups()
        whole = match.group(0)
        if not groups:
            return self.mask_partial(whole)

        value = groups[-1]
        return whole.replace(value, self.mask_partial(value), 1)


class SecretMaskingFilter(logging.Filter):
    """Logging filter that masks secrets in every record it sees."""

    def __init__(self, masker: LogMasker):
        super().__init__()
        self.masker = masker

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = self.masker.mask_in_string(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True
