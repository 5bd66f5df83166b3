#!/usr/bin/env python3
"""
MailOps Session - Host-side wiring of vault, supervisor, API client and workflow.

A session is acquired once at application start and released through
close() on every exit route: normal shutdown, restart, error or signal.
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, Any, Callable, Optional

from ..api.client import WorkerApiClient
from ..api.models import ServiceStatus
from ..errors import MailOpsError, ReadinessTimeout
from ..events.channel import Observer
from ..security.masker import LogMasker
from ..supervisor.manager import ProcessSupervisor, resolve_executable
from ..vault.credential import CredentialVault
from ..workflow.orchestrator import ChangeRun, ChangeWorkflow


DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{0,61}[a-zA-Z0-9](?:\.[a-zA-Z]{2,})+$")


def validate_domain(domain: str) -> bool:
    """Check domain format."""
    return bool(domain) and DOMAIN_PATTERN.match(domain) is not None


@dataclass
class CheckResult:
    success: bool
    message: str


@dataclass
class EnvironmentReport:
    """Outcome of the pre-flight environment checks."""

    service: CheckResult
    token: CheckResult
    domain: CheckResult

    @property
    def ok(self) -> bool:
        return self.service.success and self.token.success and self.domain.success


class MailOpsSession:
    """Owns the credential, the worker process and the client talking to it."""

    def __init__(self, config: Dict[str, Any], observer: Optional[Observer] = None,
                 vault: Optional[CredentialVault] = None):
        """Initialize session from a loaded configuration."""
        self.config = config
        self.observer = observer
        self.vault = vault or CredentialVault()
        self.masker = LogMasker(vault=self.vault)
        self.logger = logging.getLogger(__name__)

        self.supervisor: Optional[ProcessSupervisor] = None
        self.client: Optional[WorkerApiClient] = None
        self.closed = False

        service_config = config.get('service', {})
        self.executable_path = resolve_executable(
            service_config.get('executable', 'mailops-service'),
            service_config.get('base_dir')
        )
        self.http_addr = service_config.get('http_addr', '127.0.0.1:8080')

        api_config = config.get('api', {})
        self.request_timeout = float(api_config.get('request_timeout', 30))
        self.ready_timeout_ms = int(api_config.get('ready_timeout_ms', 10000))
        self.poll_interval_ms = int(api_config.get('poll_interval_ms', 500))

        workflow_config = config.get('workflow', {})
        self.profile = workflow_config.get('profile', 'cloudflare')
        self.config_file = workflow_config.get('config_file', '')

    def set_token(self, token: str) -> None:
        """Store the API token in memory, replacing any previous one."""
        if not token or not token.strip():
            raise ValueError("API token must not be empty")
        self.vault.set(token.strip())

    def masked_token(self) -> str:
        return self.vault.masked()

    def is_service_running(self) -> bool:
        return self.supervisor is not None and self.supervisor.is_running()

    def restart_service(self) -> ServiceStatus:
        """Stop any running worker, start a fresh one and wait until it is ready."""
        self._release_service()

        self.supervisor = ProcessSupervisor(
            observer=self.observer,
            config=self.config.get('service', {}),
            masker=self.masker
        )
        self.supervisor.start(self.executable_path, self.http_addr, self.vault)

        self.client = WorkerApiClient.from_listen_address(
            self.http_addr,
            timeout=self.request_timeout,
            masker=self.masker
        )

        try:
            status = self.client.wait_for_ready(self.ready_timeout_ms, self.poll_interval_ms)
        except ReadinessTimeout:
            self.logger.error("Worker did not become ready, stopping it")
            self._release_service()
            raise

        self.logger.info("Service started successfully")
        return status

    def ensure_service(self) -> None:
        """Start the worker unless it is already running."""
        if not self.is_service_running() or self.client is None:
            self.restart_service()

    def check_environment(self, domain: str, vps_ip: str) -> EnvironmentReport:
        """Run the service, token and domain pre-flight checks."""
        try:
            self.ensure_service()
            status = self.client.get_status()
            service_ok = status.is_running
            service = CheckResult(service_ok, "running" if service_ok else f"status: {status.status}")
        except MailOpsError as e:
            service = CheckResult(False, f"not running: {e}")

        if service.success:
            # A dry run only succeeds when the worker can reach the provider with the token
            try:
                self.client.create_run(domain, vps_ip, dry_run=True, profile=self.profile,
                                       config_file=self.config_file)
                token = CheckResult(True, "verified")
            except MailOpsError as e:
                token = CheckResult(False, f"token invalid or insufficient permissions: {e}")
        else:
            token = CheckResult(False, "not checked (service unavailable)")

        if validate_domain(domain):
            domain_result = CheckResult(True, "verified")
        else:
            domain_result = CheckResult(False, "invalid format")

        return EnvironmentReport(service=service, token=token, domain=domain_result)

    def new_workflow(self) -> ChangeWorkflow:
        """Create a workflow bound to the running worker."""
        self.ensure_service()
        return ChangeWorkflow(
            self.client,
            observer=self.observer,
            profile=self.profile,
            config_file=self.config_file,
            is_service_alive=self.is_service_running
        )

    def load_dns_preview(self, domain: str, vps_ip: str) -> ChangeRun:
        """Run the preview phase only."""
        workflow = self.new_workflow()
        return workflow.preview(domain, vps_ip)

    def apply_changes(self, domain: str, vps_ip: str,
                      approve: Callable[[ChangeRun], bool]) -> ChangeRun:
        """Run all four phases, asking the operator to approve the preview."""
        workflow = self.new_workflow()
        return workflow.run_all(domain, vps_ip, approve=approve)

    def _release_service(self) -> None:
        if self.supervisor is not None:
            self.logger.info("Stopping existing service")
            self.supervisor.close()
            self.supervisor = None
        if self.client is not None:
            self.client.close()
            self.client = None

    def close(self) -> None:
        """Stop the worker and destroy the credential. Safe to call repeatedly."""
        if self.closed:
            return
        self.closed = True
        try:
            self._release_service()
        finally:
            self.vault.clear()

    def __enter__(self) -> "MailOpsSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
