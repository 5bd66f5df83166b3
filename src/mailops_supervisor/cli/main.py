#!/usr/bin/env python3
"""
MailOps Supervisor CLI - Command-line front end for previewing and applying DNS changes.
"""

import os
import sys
import signal
import getpass
import argparse
import logging
from typing import Optional

from ..app.session import MailOpsSession
from ..config.loader import DEFAULT_CONFIG_PATH, load_config, setup_logging
from ..errors import MailOpsError, WorkflowError
from ..events.channel import StepProgress
from ..workflow.orchestrator import ChangeRun


class MailOpsCLI:
    """Command-line interface for MailOps Supervisor."""

    def __init__(self):
        """Initialize CLI."""
        self.config_path = DEFAULT_CONFIG_PATH
        self.verbose = False
        self.assume_yes = False
        self.session: Optional[MailOpsSession] = None
        self.logger = logging.getLogger(__name__)

    def open_session(self) -> MailOpsSession:
        """Load configuration, set up logging and create the session."""
        config = load_config(self.config_path)
        session = MailOpsSession(config, observer=self.on_event)
        setup_logging(config, masker=session.masker, verbose=self.verbose)

        token_env_var = config['service'].get('token_env_var', 'CF_API_TOKEN')
        token = os.environ.get(token_env_var)
        if not token:
            token = getpass.getpass("Cloudflare API token: ")
        session.set_token(token)
        token = None

        self.session = session
        self.setup_signal_handlers()
        return session

    def setup_signal_handlers(self) -> None:
        """Release the session on SIGINT/SIGTERM."""
        def signal_handler(signum, frame):
            self.logger.info(f"Received signal {signum}, shutting down")
            self.close_session()
            sys.exit(128 + signum)

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    def close_session(self) -> None:
        if self.session is not None:
            self.session.close()
            self.session = None

    def on_event(self, event) -> None:
        """Render workflow notifications."""
        if isinstance(event, StepProgress):
            if event.percent is not None:
                print(f"  [{event.percent:>3}%] {event.step} {event.status}")
            else:
                print(f"  ...... {event.step} {event.status}")

    def cmd_status(self, args) -> int:
        """Start the worker and show its status."""
        session = self.open_session()
        status = session.restart_service()

        print("MailOps Service Status")
        print("=" * 40)
        print(f"✓ Service running (PID: {session.supervisor.process_id})")
        print(f"  Address: {session.http_addr}")
        print(f"  Status: {status.status}")
        if status.version:
            print(f"  Version: {status.version}")
        if status.active_runs is not None:
            print(f"  Active runs: {status.active_runs}")
        print(f"  Token: {session.masked_token()}")
        return 0

    def cmd_check(self, args) -> int:
        """Run the environment checks."""
        session = self.open_session()
        report = session.check_environment(args.domain, args.vps_ip)

        print("MailOps Environment Check")
        print("=" * 40)
        for label, result in (("Service", report.service), ("Token", report.token),
                              ("Domain", report.domain)):
            mark = "✓" if result.success else "✗"
            print(f"{mark} {label}: {result.message}")

        return 0 if report.ok else 1

    def cmd_preview(self, args) -> int:
        """Show the DNS changes a run would make."""
        session = self.open_session()
        run = session.load_dns_preview(args.domain, args.vps_ip)
        self._print_preview(run)
        return 0

    def cmd_apply(self, args) -> int:
        """Preview, confirm and apply DNS changes."""
        session = self.open_session()
        print(f"Applying DNS changes for {args.domain} -> {args.vps_ip}")
        run = session.apply_changes(args.domain, args.vps_ip, approve=self._approve)

        print(f"✓ DNS changes applied: {run.records_written} record(s) written")
        return 0

    def _approve(self, run: ChangeRun) -> bool:
        """Present the preview and ask the operator to continue."""
        self._print_preview(run)
        if run.token is not None:
            print(f"Confirmation expires in {run.token.expires_in_sec}s")

        if self.assume_yes:
            return True

        response = input("Apply these DNS changes? (yes/no): ")
        return response.strip().lower() in ['yes', 'y']

    def _print_preview(self, run: ChangeRun) -> None:
        print(f"DNS Preview for {run.domain} (run: {run.run_id})")
        print("-" * 80)
        print(f"{'Action':<8} {'Type':<6} {'Name':<28} {'TTL':<6} {'Prio':<5} {'Value'}")
        print("-" * 80)

        for record in run.records:
            print(f"{record.action:<8} {record.type:<6} {record.name:<28} "
                  f"{record.ttl:<6} {record.priority:<5} {record.value}")

        print("-" * 80)
        print(f"{run.create_count} to create, {run.update_count} to update, "
              f"{run.delete_count} to delete")


def main(argv=None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="MailOps Supervisor - Confirmation-gated DNS changes for a mail stack"
    )

    parser.add_argument(
        '--config',
        default=DEFAULT_CONFIG_PATH,
        help='Configuration file path'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('status', help='Start the service and show its status')

    for name, help_text in (('check', 'Check service, token and domain'),
                            ('preview', 'Preview DNS changes'),
                            ('apply', 'Preview, confirm and apply DNS changes')):
        command_parser = subparsers.add_parser(name, help=help_text)
        command_parser.add_argument('--domain', required=True, help='Mail domain, e.g. example.com')
        command_parser.add_argument('--vps-ip', required=True, help='IP address of the mail server')
        if name == 'apply':
            command_parser.add_argument('--yes', action='store_true',
                                        help='Apply without an interactive prompt')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    cli = MailOpsCLI()
    cli.config_path = args.config
    cli.verbose = args.verbose
    cli.assume_yes = getattr(args, 'yes', False)

    command_handlers = {
        'status': cli.cmd_status,
        'check': cli.cmd_check,
        'preview': cli.cmd_preview,
        'apply': cli.cmd_apply
    }

    handler = command_handlers.get(args.command)
    if not handler:
        print(f"Unknown command: {args.command}")
        return 1

    try:
        return handler(args)
    except WorkflowError as e:
        print(f"✗ {e.phase or 'workflow'} failed: {e}")
        print("Start again from a fresh preview to retry")
        return 1
    except MailOpsError as e:
        print(f"✗ {e.code}: {e}")
        return 1
    except ValueError as e:
        print(f"✗ {e}")
        return 1
    finally:
        cli.close_session()


if __name__ == '__main__':
    sys.exit(main())
