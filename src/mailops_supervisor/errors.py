#!/usr/bin/env python3
"""
Error taxonomy shared by the vault, supervisor, API client and workflow.
"""

from typing import Optional


class MailOpsError(Exception):
    """Base class for every failure raised by mailops_supervisor."""

    code: str = "MailOpsError"

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message or self.code)


class ConfigError(MailOpsError):
    """Configuration file could not be read or is invalid."""

    code = "ConfigError"


class CredentialMissing(MailOpsError):
    """The vault holds no credential."""

    code = "CredentialMissing"


class AlreadyRunning(MailOpsError):
    """A worker process is already live."""

    code = "AlreadyRunning"


class ExecutableNotFound(MailOpsError):
    """The worker executable path does not resolve."""

    code = "ExecutableNotFound"


class LaunchFailed(MailOpsError):
    """The OS refused to create the worker process."""

    code = "LaunchFailed"


class ServiceUnavailable(MailOpsError):
    """The worker exited while it was needed."""

    code = "ServiceUnavailable"


class TransportError(MailOpsError):
    """Connection, reset or timeout failure talking to the worker."""

    code = "TransportError"


class ProtocolError(MailOpsError):
    """The worker answered with a non-success HTTP status."""

    code = "ProtocolError"

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class DecodeError(MailOpsError):
    """The worker's response body did not match the expected schema."""

    code = "DecodeError"


class ReadinessTimeout(MailOpsError):
    """The worker did not report a running state before the deadline."""

    code = "ReadinessTimeout"


class WorkflowError(MailOpsError):
    """A change workflow was used incorrectly or one of its phases failed."""

    code = "WorkflowError"
    phase: Optional[str] = None

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class PreviewFailed(WorkflowError):
    code = "PreviewFailed"
    phase = "preview"


class ConfirmFailed(WorkflowError):
    code = "ConfirmFailed"
    phase = "confirm"


class ValidateFailed(WorkflowError):
    code = "ValidateFailed"
    phase = "validate"


class ExecuteFailed(WorkflowError):
    code = "ExecuteFailed"
    phase = "execute"
