#!/usr/bin/env python3
"""
Change Workflow - Drives one DNS change run through preview, confirm,
validate and execute.

Phases run strictly in that order and never repeat. Any failure moves the
workflow to FAILED; retrying means starting a new workflow with a fresh
preview, because the worker's dry run may no longer match provider state.

The workflow does not enforce human review itself. Callers driving the
phases one by one must show the preview and obtain an explicit operator
decision between confirm() and validate(); run_all() takes that decision as
its approve callback.
"""

import time
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Tuple, Type

from ..api.client import WorkerApiClient
from ..api.models import DnsRecord, ExecuteResponse, ValidateResponse
from ..errors import (
    ServiceUnavailable, WorkflowError,
    PreviewFailed, ConfirmFailed, ValidateFailed, ExecuteFailed
)
from ..events.channel import Observer, StepProgress, WorkflowFailed, notify


STEP_PREVIEW = "preview"
STEP_CONFIRM = "confirm"
STEP_VALIDATE = "validate"
STEP_EXECUTE = "execute"

STEP_ORDER = [STEP_PREVIEW, STEP_CONFIRM, STEP_VALIDATE, STEP_EXECUTE]
STEP_PERCENT = {
    STEP_PREVIEW: 25,
    STEP_CONFIRM: 50,
    STEP_VALIDATE: 75,
    STEP_EXECUTE: 100,
}

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"


class WorkflowPhase(Enum):
    IDLE = "Idle"
    PREVIEWING = "Previewing"
    AWAITING_CONFIRM = "AwaitingConfirm"
    VALIDATING = "Validating"
    EXECUTING = "Executing"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass
class ConfirmationToken:
    """Single-use authorization issued by the worker after preview."""

    confirm_token: str = field(repr=False)
    masked_token: str
    expires_in_sec: int
    issued_at: float
    validated: bool = False
    executed: bool = False

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in_sec

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def remaining_seconds(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


@dataclass
class ChangeRun:
    """One workflow instance and everything the worker told us about it."""

    domain: str
    vps_ip: str
    dry_run: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    phase: WorkflowPhase = WorkflowPhase.IDLE
    run_id: Optional[str] = None
    records: Tuple[DnsRecord, ...] = ()
    create_count: int = 0
    update_count: int = 0
    delete_count: int = 0
    token: Optional[ConfirmationToken] = None
    records_written: Optional[int] = None
    failure: Optional[WorkflowError] = None

    def __setattr__(self, name, value):
        if name == "run_id" and getattr(self, "run_id", None) is not None and value != self.run_id:
            raise AttributeError("run_id cannot change once assigned")
        super().__setattr__(name, value)


class ChangeWorkflow:
    """Four-phase, confirmation-gated DNS change workflow."""

    def __init__(self, client: WorkerApiClient, observer: Optional[Observer] = None,
                 profile: str = "cloudflare", config_file: str = "",
                 is_service_alive: Optional[Callable[[], bool]] = None,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize a workflow bound to one API client."""
        self.client = client
        self.observer = observer
        self.profile = profile
        self.config_file = config_file
        self.is_service_alive = is_service_alive
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self.run: Optional[ChangeRun] = None
        self.completed_steps = []

    @property
    def phase(self) -> WorkflowPhase:
        return self.run.phase if self.run else WorkflowPhase.IDLE

    def preview(self, domain: str, vps_ip: str) -> ChangeRun:
        """Create a dry run and fetch the proposed record changes."""
        self._check_step(STEP_PREVIEW)
        self.run = ChangeRun(domain=domain, vps_ip=vps_ip, dry_run=True)
        run = self.run

        self._begin(STEP_PREVIEW, WorkflowPhase.PREVIEWING, PreviewFailed)
        try:
            created = self.client.create_run(domain, vps_ip, dry_run=True, profile=self.profile,
                                             config_file=self.config_file)
        except Exception as e:
            self._fail(PreviewFailed, f"create run failed: {e}", e)

        if not created.run_id:
            self._fail(PreviewFailed, "worker returned no run identifier")
        run.run_id = created.run_id

        try:
            preview = self.client.get_dns_preview(run.run_id)
        except Exception as e:
            self._fail(PreviewFailed, f"preview failed: {e}", e)

        run.records = tuple(preview.records)
        run.create_count = preview.create_count
        run.update_count = preview.update_count
        run.delete_count = preview.delete_count
        run.phase = WorkflowPhase.AWAITING_CONFIRM

        self.logger.info(f"Preview for {domain} (run {run.run_id}): {len(run.records)} record(s), "
                         f"{run.create_count} create, {run.update_count} update, "
                         f"{run.delete_count} delete")
        self._complete(STEP_PREVIEW)
        return run

    def confirm(self) -> ConfirmationToken:
        """Obtain a confirmation token for the previewed run."""
        self._check_step(STEP_CONFIRM)
        run = self.run

        self._begin(STEP_CONFIRM, WorkflowPhase.AWAITING_CONFIRM, ConfirmFailed)
        try:
            response = self.client.confirm(run.run_id)
        except Exception as e:
            self._fail(ConfirmFailed, f"confirm failed: {e}", e)

        if not response.confirm_token:
            self._fail(ConfirmFailed, "worker returned no confirmation token")

        run.token = ConfirmationToken(
            confirm_token=response.confirm_token,
            masked_token=response.masked_token,
            expires_in_sec=response.expires_in_sec,
            issued_at=self.clock()
        )
        self.logger.info(f"Confirmation token issued for run {run.run_id} "
                         f"(expires in {response.expires_in_sec}s)")
        self._complete(STEP_CONFIRM)
        return run.token

    def validate(self) -> ValidateResponse:
        """Have the worker check the confirmation token."""
        self._check_step(STEP_VALIDATE)
        run = self.run
        token = run.token

        self._begin(STEP_VALIDATE, WorkflowPhase.VALIDATING, ValidateFailed)
        if token.is_expired(self.clock()):
            self._fail(ValidateFailed, "confirmation token expired; start a new preview")
        if token.validated:
            self._fail(ValidateFailed, "confirmation token was already validated")

        try:
            response = self.client.validate(run.run_id, token.confirm_token)
        except Exception as e:
            self._fail(ValidateFailed, f"validate failed: {e}", e)

        if not response.valid:
            detail = response.message or response.status or "token rejected"
            self._fail(ValidateFailed, f"confirmation token invalid: {detail}")

        token.validated = True
        self._complete(STEP_VALIDATE)
        return response

    def execute(self) -> ExecuteResponse:
        """Apply the changes using the token validated in the previous phase."""
        self._check_step(STEP_EXECUTE)
        run = self.run
        token = run.token

        self._begin(STEP_EXECUTE, WorkflowPhase.EXECUTING, ExecuteFailed)
        if not token.validated or token.executed:
            self._fail(ExecuteFailed, "confirmation token is not validated for execution")
        if token.is_expired(self.clock()):
            self._fail(ExecuteFailed, "confirmation token expired; start a new preview")

        token.executed = True
        try:
            response = self.client.execute(run.run_id, token.confirm_token)
        except Exception as e:
            self._fail(ExecuteFailed, f"execute failed: {e}", e)

        if not response.success:
            detail = response.message or response.status or "worker reported failure"
            self._fail(ExecuteFailed, f"execution failed: {detail}")

        run.records_written = response.records_written
        run.phase = WorkflowPhase.COMPLETED
        self.logger.info(f"Run {run.run_id} completed: {response.records_written} record(s) written")
        self._complete(STEP_EXECUTE)
        return response

    def run_all(self, domain: str, vps_ip: str,
                approve: Optional[Callable[[ChangeRun], bool]] = None) -> ChangeRun:
        """Drive every phase in order, asking approve() between confirm and validate."""
        self.preview(domain, vps_ip)
        self.confirm()

        if approve is not None and not approve(self.run):
            self._fail(ValidateFailed, "operator declined the change preview")

        self.validate()
        self.execute()
        return self.run

    def _check_step(self, step: str) -> None:
        """Reject out-of-order or repeated phases without touching the worker."""
        if self.phase in (WorkflowPhase.FAILED, WorkflowPhase.COMPLETED):
            raise WorkflowError(f"workflow already {self.phase.value}; start a new workflow")
        expected = STEP_ORDER[len(self.completed_steps)]
        if step != expected:
            raise WorkflowError(f"cannot run '{step}' now; next phase is '{expected}'")

    def _begin(self, step: str, phase: WorkflowPhase, failure: Type[WorkflowError]) -> None:
        self.run.phase = phase
        notify(self.observer, StepProgress(step=step, status=STATUS_RUNNING))
        if self.is_service_alive is not None and not self.is_service_alive():
            self._fail(failure, "worker process is not running",
                       ServiceUnavailable("worker exited during the workflow"))

    def _complete(self, step: str) -> None:
        self.completed_steps.append(step)
        notify(self.observer, StepProgress(step=step, status=STATUS_COMPLETED,
                                           percent=STEP_PERCENT[step]))

    def _fail(self, failure: Type[WorkflowError], message: str,
              cause: Optional[BaseException] = None) -> None:
        if cause is not None and not isinstance(cause, ServiceUnavailable):
            if self.is_service_alive is not None and not self.is_service_alive():
                cause = ServiceUnavailable(f"worker exited during the workflow ({cause})")

        error = failure(message, cause=cause)
        self.run.phase = WorkflowPhase.FAILED
        self.run.failure = error
        self.logger.error(f"Workflow failed in {failure.phase} phase: {message}")
        notify(self.observer, WorkflowFailed(phase=failure.phase, message=message))
        if cause is not None:
            raise error from cause
        raise error
