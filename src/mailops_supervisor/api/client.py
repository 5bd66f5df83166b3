#!/usr/bin/env python3
"""
Worker API Client - Thin HTTP facade over the worker's control API.
"""

import json
import time
import logging
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..errors import DecodeError, ProtocolError, ReadinessTimeout, TransportError, MailOpsError
from ..security.masker import LogMasker
from .models import (
    ServiceStatus, CreateRunRequest, CreateRunResponse, RunParams, DnsPreviewResult,
    RunReference, ConfirmResponse, TokenRequest, ValidateResponse, ExecuteResponse
)


DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL_MS = 500

ModelT = TypeVar("ModelT", bound=BaseModel)


class WorkerApiClient:
    """Issues one request per call against the worker; never retries."""

    def __init__(self, base_url: str, timeout: float = DEFAULT_REQUEST_TIMEOUT,
                 transport: Optional[httpx.BaseTransport] = None,
                 masker: Optional[LogMasker] = None):
        """Initialize client for a worker base URL such as http://127.0.0.1:8080."""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.masker = masker or LogMasker()
        self.logger = logging.getLogger(__name__)
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_listen_address(cls, listen_address: str, **kwargs) -> "WorkerApiClient":
        return cls(f"http://{listen_address}", **kwargs)

    def get_status(self, timeout: Optional[float] = None) -> ServiceStatus:
        """Fetch worker health."""
        return self._request("GET", "/api/status", ServiceStatus, timeout=timeout)

    def create_run(self, domain: str, vps_ip: str, dry_run: bool = True, profile: str = "cloudflare",
                   config_file: str = "", timeout: Optional[float] = None) -> CreateRunResponse:
        """Ask the worker to create a change run."""
        request = CreateRunRequest(
            config_file=config_file,
            params=RunParams(domain=domain, vps_ip=vps_ip, profile=profile, dry_run=dry_run)
        )
        return self._request("POST", "/api/runs", CreateRunResponse, body=request, timeout=timeout)

    def get_dns_preview(self, run_id: str, timeout: Optional[float] = None) -> DnsPreviewResult:
        """Fetch the ordered record changes proposed for a run."""
        return self._request("GET", "/api/dns/preview", DnsPreviewResult,
                             params={"run_id": run_id}, timeout=timeout)

    def confirm(self, run_id: str, timeout: Optional[float] = None) -> ConfirmResponse:
        """Request a confirmation token for a previewed run."""
        return self._request("POST", "/api/dns/confirm", ConfirmResponse,
                             body=RunReference(run_id=run_id), timeout=timeout)

    def validate(self, run_id: str, confirm_token: str, timeout: Optional[float] = None) -> ValidateResponse:
        """Check a confirmation token with the worker."""
        return self._request("POST", "/api/dns/validate", ValidateResponse,
                             body=TokenRequest(run_id=run_id, confirm_token=confirm_token),
                             timeout=timeout)

    def execute(self, run_id: str, confirm_token: str, timeout: Optional[float] = None) -> ExecuteResponse:
        """Apply the previewed changes."""
        return self._request("POST", "/api/dns/execute", ExecuteResponse,
                             body=TokenRequest(run_id=run_id, confirm_token=confirm_token),
                             timeout=timeout)

    def wait_for_ready(self, timeout_ms: int = 10000,
                       poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS) -> ServiceStatus:
        """Poll get_status() until the worker reports running.

        Individual poll failures count as "not ready yet". Raises
        ReadinessTimeout once the deadline passes.
        """
        deadline = time.monotonic() + timeout_ms / 1000.0
        interval = poll_interval_ms / 1000.0
        last_error = None

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                status = self.get_status(timeout=min(self.timeout, remaining))
                if status.is_running:
                    self.logger.info("Worker is ready")
                    return status
                last_error = f"status={status.status}"
            except MailOpsError as e:
                last_error = str(e)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(interval, remaining))

        raise ReadinessTimeout(f"worker not ready after {timeout_ms}ms (last: {last_error})")

    def _request(self, method: str, path: str, response_model: Type[ModelT],
                 body: Optional[BaseModel] = None, params: Optional[Dict[str, Any]] = None,
                 timeout: Optional[float] = None) -> ModelT:
        kwargs: Dict[str, Any] = {}
        if body is not None:
            kwargs['json'] = body.model_dump(mode="json")
        if params is not None:
            kwargs['params'] = params
        if timeout is not None:
            kwargs['timeout'] = timeout

        self.logger.debug(f"{method} {path}")
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {path} timed out: {e}") from e
        except httpx.DecodingError as e:
            raise DecodeError(f"{method} {path} returned an undecodable body: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            excerpt = self.masker.mask_in_string(response.text[:200])
            raise ProtocolError(
                f"{method} {path} returned HTTP {response.status_code}: {excerpt}",
                status_code=response.status_code
            )

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"{method} {path} returned invalid JSON: {e}") from e

        try:
            return response_model.model_validate(payload)
        except ValidationError as e:
            raise DecodeError(
                f"{method} {path} returned unexpected payload: {e.error_count()} error(s)"
            ) from e

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "WorkerApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
