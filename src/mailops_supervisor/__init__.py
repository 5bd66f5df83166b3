"""
MailOps Supervisor - Confirmation-gated DNS changes for a mail stack.

This package supervises the local DNS worker process, keeps the provider
API token in memory only, and drives the preview, confirm, validate and
execute workflow against the worker's HTTP control API.
"""

__version__ = "1.0.0"
__author__ = "MailOps"

from .vault.credential import CredentialVault
from .supervisor.manager import ProcessSupervisor, ServiceState
from .api.client import WorkerApiClient
from .workflow.orchestrator import ChangeWorkflow, ChangeRun, WorkflowPhase
from .app.session import MailOpsSession

__all__ = [
    "CredentialVault",
    "ProcessSupervisor",
    "ServiceState",
    "WorkerApiClient",
    "ChangeWorkflow",
    "ChangeRun",
    "WorkflowPhase",
    "MailOpsSession"
]
