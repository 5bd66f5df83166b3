#!/usr/bin/env python3
"""
Tests for the MailOps Supervisor command-line interface.
"""

import io
import os
import signal
import unittest
from unittest.mock import MagicMock, patch

from mailops_supervisor.api.models import DnsRecord, ServiceStatus
from mailops_supervisor.app.session import CheckResult, EnvironmentReport
from mailops_supervisor.cli.main import MailOpsCLI, main
from mailops_supervisor.config.loader import get_default_config
from mailops_supervisor.errors import ReadinessTimeout, ValidateFailed
from mailops_supervisor.workflow.orchestrator import ChangeRun, ConfirmationToken, WorkflowPhase


def make_run() -> ChangeRun:
    return ChangeRun(
        domain="example.com",
        vps_ip="45.10.20.30",
        phase=WorkflowPhase.COMPLETED,
        run_id="run-1",
        records=(
            DnsRecord(type="MX", name="example.com", value="mail.example.com", ttl=3600,
                      priority=10, action="create"),
            DnsRecord(type="A", name="mail.example.com", value="45.10.20.30", ttl=300,
                      action="update"),
        ),
        create_count=1,
        update_count=1,
        token=ConfirmationToken(confirm_token="tok-secret", masked_token="tok•••et",
                                expires_in_sec=300, issued_at=0.0),
        records_written=2,
    )


class TestCLI(unittest.TestCase):
    """Test cases for the CLI entry point."""

    def setUp(self):
        """Set up test fixtures."""
        patchers = [
            patch('mailops_supervisor.cli.main.MailOpsSession'),
            patch('mailops_supervisor.cli.main.load_config', return_value=get_default_config()),
            patch('mailops_supervisor.cli.main.setup_logging'),
            patch('mailops_supervisor.cli.main.signal.signal'),
            patch.dict(os.environ, {"CF_API_TOKEN": "env-token-value"}),
        ]
        mocks = [p.start() for p in patchers]
        for p in patchers:
            self.addCleanup(p.stop)

        self.session_cls = mocks[0]
        self.session = self.session_cls.return_value
        self.session.masked_token.return_value = "•" * 16
        self.session.http_addr = "127.0.0.1:8080"

    def _run(self, argv):
        with patch('sys.stdout', new_callable=io.StringIO) as stdout:
            code = main(argv)
        return code, stdout.getvalue()

    def test_no_command_prints_help(self):
        code, output = self._run([])
        self.assertEqual(code, 1)
        self.assertIn("usage", output)

    def test_token_read_from_environment(self):
        """The token comes from the environment and the session is always closed."""
        self.session.restart_service.return_value = ServiceStatus(status="running", version="0.3.1")

        code, output = self._run(['status'])

        self.assertEqual(code, 0)
        self.session.set_token.assert_called_once_with("env-token-value")
        self.session.close.assert_called_once()
        self.assertIn("Version: 0.3.1", output)
        self.assertNotIn("env-token-value", output)

    def test_token_prompted_when_not_in_environment(self):
        """Without the variable the operator is prompted without echo."""
        os.environ.pop("CF_API_TOKEN")
        self.session.restart_service.return_value = ServiceStatus(status="running")

        with patch('mailops_supervisor.cli.main.getpass.getpass', return_value="typed-token") as prompt:
            code, _ = self._run(['status'])

        self.assertEqual(code, 0)
        prompt.assert_called_once()
        self.session.set_token.assert_called_once_with("typed-token")

    def test_apply_with_yes(self):
        """apply --yes approves the preview without prompting."""
        def apply_changes(domain, vps_ip, approve):
            self.assertTrue(approve(make_run()))
            return make_run()

        self.session.apply_changes.side_effect = apply_changes

        with patch('builtins.input') as prompt:
            code, output = self._run(['apply', '--domain', 'example.com',
                                      '--vps-ip', '45.10.20.30', '--yes'])

        self.assertEqual(code, 0)
        prompt.assert_not_called()
        self.assertIn("mail.example.com", output)
        self.assertIn("2 record(s) written", output)
        self.assertNotIn("tok-secret", output)

    def test_preview(self):
        self.session.load_dns_preview.return_value = make_run()

        code, output = self._run(['preview', '--domain', 'example.com', '--vps-ip', '45.10.20.30'])

        self.assertEqual(code, 0)
        self.session.load_dns_preview.assert_called_once_with('example.com', '45.10.20.30')
        self.assertIn("1 to create, 1 to update, 0 to delete", output)

    def test_workflow_failure_returns_error(self):
        """A failed phase is reported with its name."""
        self.session.apply_changes.side_effect = ValidateFailed("token mismatch")

        code, output = self._run(['apply', '--domain', 'example.com',
                                  '--vps-ip', '45.10.20.30', '--yes'])

        self.assertEqual(code, 1)
        self.assertIn("validate failed: token mismatch", output)
        self.session.close.assert_called_once()

    def test_service_error_returns_error(self):
        self.session.restart_service.side_effect = ReadinessTimeout("not ready after 10000ms")

        code, output = self._run(['status'])

        self.assertEqual(code, 1)
        self.assertIn("ReadinessTimeout", output)

    def test_check_reports_failures(self):
        self.session.check_environment.return_value = EnvironmentReport(
            service=CheckResult(True, "running"),
            token=CheckResult(False, "token invalid or insufficient permissions"),
            domain=CheckResult(True, "verified"),
        )

        code, output = self._run(['check', '--domain', 'example.com', '--vps-ip', '45.10.20.30'])

        self.assertEqual(code, 1)
        self.assertIn("✗ Token", output)
        self.assertIn("✓ Service: running", output)


class TestSignalHandlers(unittest.TestCase):
    """Test cases for shutdown on signals."""

    def _handler_for(self, cli, signum):
        with patch('mailops_supervisor.cli.main.signal.signal') as install:
            cli.setup_signal_handlers()
        handlers = {call[0][0]: call[0][1] for call in install.call_args_list}
        return handlers[signum]

    def test_exit_status_follows_signal(self):
        """SIGTERM exits with 143 and SIGINT with 130, closing the session first."""
        for signum, expected in ((signal.SIGTERM, 143), (signal.SIGINT, 130)):
            cli = MailOpsCLI()
            session = cli.session = MagicMock()
            handler = self._handler_for(cli, signum)

            with self.assertRaises(SystemExit) as ctx:
                handler(signum, None)

            self.assertEqual(ctx.exception.code, expected)
            session.close.assert_called_once()
            self.assertIsNone(cli.session)


class TestApprovePrompt(unittest.TestCase):
    """Test cases for the interactive approval prompt."""

    def setUp(self):
        """Set up test fixtures."""
        self.cli = MailOpsCLI()

    def _approve(self, answer):
        with patch('builtins.input', return_value=answer), \
                patch('sys.stdout', new_callable=io.StringIO):
            return self.cli._approve(make_run())

    def test_yes_approves(self):
        self.assertTrue(self._approve("yes"))
        self.assertTrue(self._approve(" Y "))

    def test_anything_else_declines(self):
        self.assertFalse(self._approve("no"))
        self.assertFalse(self._approve(""))


if __name__ == '__main__':
    unittest.main()
