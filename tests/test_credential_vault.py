#!/usr/bin/env python3
"""
Tests for CredentialVault functionality.
"""

import copy
import pickle
import unittest

from mailops_supervisor.vault.credential import CredentialVault, MASKED_PLACEHOLDER


class TestCredentialVault(unittest.TestCase):
    """Test cases for CredentialVault."""

    def setUp(self):
        """Set up test fixtures."""
        self.vault = CredentialVault()

    def test_empty_vault_signals_no_credential(self):
        """Reading an empty vault returns None, not an empty string."""
        self.assertFalse(self.vault.is_set())
        self.assertIsNone(self.vault.read_for_process_environment())

    def test_empty_secret_is_distinguishable(self):
        """A secret set to empty is reported as set."""
        self.vault.set("")
        self.assertTrue(self.vault.is_set())
        self.assertEqual(self.vault.read_for_process_environment(), "")

    def test_set_and_read(self):
        """Test storing and reading a secret."""
        self.vault.set("cf-token-123")
        self.assertEqual(self.vault.read_for_process_environment(), "cf-token-123")

    def test_set_replaces_and_zeroes_previous(self):
        """Replacing a secret wipes the previous buffer."""
        self.vault.set("first-secret")
        old_buffer = self.vault._buffer

        self.vault.set("second")

        self.assertEqual(bytes(old_buffer), b"\x00" * len(b"first-secret"))
        self.assertEqual(self.vault.read_for_process_environment(), "second")

    def test_clear_is_idempotent(self):
        """Clearing twice is safe and leaves the vault empty."""
        self.vault.set("secret-value")
        buffer = self.vault._buffer

        self.vault.clear()
        self.vault.clear()

        self.assertFalse(self.vault.is_set())
        self.assertIsNone(self.vault.read_for_process_environment())
        self.assertTrue(all(b == 0 for b in buffer))

    def test_masked_is_fixed(self):
        """masked() never depends on the secret."""
        self.assertEqual(self.vault.masked(), MASKED_PLACEHOLDER)

        for secret in ["a", "abc123", "x" * 200, "tøkén-ünicode", "••••"]:
            self.vault.set(secret)
            masked = self.vault.masked()
            self.assertEqual(masked, MASKED_PLACEHOLDER)
            self.assertFalse(set(masked) & (set(secret) - {"•"}))

    def test_repr_does_not_leak(self):
        """String forms never contain the secret."""
        self.vault.set("super-secret-token")
        self.assertNotIn("super-secret-token", repr(self.vault))
        self.assertNotIn("super-secret-token", str(self.vault))

    def test_redact_and_contains_secret(self):
        """Literal occurrences are found and replaced by the placeholder."""
        self.vault.set("abc-secret-xyz")

        self.assertTrue(self.vault.contains_secret("token is abc-secret-xyz"))
        self.assertFalse(self.vault.contains_secret("nothing here"))
        self.assertEqual(self.vault.redact("t=abc-secret-xyz;"), f"t={MASKED_PLACEHOLDER};")

    def test_redact_without_secret(self):
        """Redacting with an empty vault leaves text unchanged."""
        self.assertEqual(self.vault.redact("plain text"), "plain text")

    def test_cannot_pickle_or_copy(self):
        """The secret cannot escape through serialization or copies."""
        self.vault.set("secret")
        with self.assertRaises(TypeError):
            pickle.dumps(self.vault)
        with self.assertRaises(TypeError):
            copy.copy(self.vault)
        with self.assertRaises(TypeError):
            copy.deepcopy(self.vault)

    def test_context_manager_clears(self):
        """Leaving the with block destroys the secret."""
        with CredentialVault() as vault:
            vault.set("scoped-secret")
            self.assertTrue(vault.is_set())
        self.assertFalse(vault.is_set())

    def test_set_rejects_non_string(self):
        """Only strings can be stored."""
        with self.assertRaises(TypeError):
            self.vault.set(b"bytes-token")


if __name__ == '__main__':
    unittest.main()
