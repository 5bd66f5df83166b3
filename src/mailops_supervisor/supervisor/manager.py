#!/usr/bin/env python3
"""
Process Supervisor - Starts, watches and stops the single DNS worker process.
"""

import os
import sys
import signal
import logging
import threading
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any

import psutil

from ..errors import AlreadyRunning, CredentialMissing, ExecutableNotFound, LaunchFailed
from ..events.channel import (
    LogLine, StatusChanged, Observer, notify, STREAM_STDOUT, STREAM_STDERR
)
from ..security.masker import LogMasker
from ..vault.credential import CredentialVault


DEFAULT_GRACE_PERIOD = 5.0
DEFAULT_TOKEN_ENV_VAR = "CF_API_TOKEN"
DEFAULT_ADDR_ENV_VAR = "MAILOPS_HTTP_ADDR"
DEFAULT_ADDR_FLAG = "--http-addr"


class ServiceState(Enum):
    """Lifecycle of the supervised worker."""

    NOT_STARTED = "NotStarted"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    FAILED = "Failed"


@dataclass
class ServiceProcessHandle:
    """A launched worker process."""

    pid: int
    listen_address: str
    process: subprocess.Popen = field(repr=False)
    threads: List[threading.Thread] = field(default_factory=list, repr=False)
    exit_code: Optional[int] = None


def resolve_executable(path: str, base_dir: Optional[str] = None) -> str:
    """Resolve a worker path relative to the host application directory."""
    expanded = os.path.expanduser(path)
    if os.path.isabs(expanded):
        return expanded
    if base_dir is None:
        base_dir = os.path.dirname(os.path.abspath(sys.argv[0] or "."))
    return os.path.abspath(os.path.join(base_dir, expanded))


class ProcessSupervisor:
    """Owns exactly one worker process at a time."""

    def __init__(self, observer: Optional[Observer] = None, config: Optional[Dict[str, Any]] = None,
                 masker: Optional[LogMasker] = None):
        """Initialize supervisor from the 'service' configuration section."""
        config = config or {}
        self.config = config
        self.observer = observer
        self.masker = masker or LogMasker()
        self.logger = logging.getLogger(__name__)
        self.worker_logger = logging.getLogger("mailops_supervisor.worker")

        self.grace_period = float(config.get('grace_period', DEFAULT_GRACE_PERIOD))
        self.token_env_var = config.get('token_env_var', DEFAULT_TOKEN_ENV_VAR)
        self.addr_env_var = config.get('addr_env_var', DEFAULT_ADDR_ENV_VAR)
        self.addr_flag = config.get('addr_flag', DEFAULT_ADDR_FLAG)
        self.require_credential = config.get('require_credential', True)

        self.state = ServiceState.NOT_STARTED
        self.handle: Optional[ServiceProcessHandle] = None
        self.closed = False

        self.lock = threading.RLock()
        self._stopping = False

    @property
    def process_id(self) -> Optional[int]:
        handle = self.handle
        return handle.pid if handle else None

    @property
    def listen_address(self) -> Optional[str]:
        handle = self.handle
        return handle.listen_address if handle else None

    def is_running(self) -> bool:
        """True iff a handle exists and its process has not exited."""
        handle = self.handle
        return handle is not None and handle.process.poll() is None

    def start(self, executable_path: str, listen_address: str, vault: CredentialVault) -> ServiceProcessHandle:
        """Launch the worker with the credential injected through its environment."""
        with self.lock:
            if self.closed:
                raise LaunchFailed("supervisor has been closed")
            if self.is_running():
                raise AlreadyRunning(f"worker already running (PID: {self.handle.pid})")

            if not os.path.isfile(executable_path):
                raise ExecutableNotFound(f"worker executable not found: {executable_path}")

            secret = vault.read_for_process_environment()
            if secret is None and self.require_credential:
                raise CredentialMissing("no API token has been set")

            # Drop any exited handle before creating a new one
            self._release_handle()

            env = os.environ.copy()
            if secret is not None:
                env[self.token_env_var] = secret
            env[self.addr_env_var] = listen_address
            secret = None

            self._set_state(ServiceState.STARTING)

            try:
                process = subprocess.Popen(
                    [executable_path, f"{self.addr_flag}={listen_address}"],
                    env=env,
                    cwd=os.path.dirname(executable_path) or None,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    bufsize=1,
                    **self._platform_popen_kwargs()
                )
            except OSError as e:
                self._set_state(ServiceState.FAILED)
                raise LaunchFailed(f"failed to launch worker: {e}") from e
            finally:
                env = None

            handle = ServiceProcessHandle(
                pid=process.pid,
                listen_address=listen_address,
                process=process
            )
            self.handle = handle
            self._stopping = False

            readers = [
                threading.Thread(target=self._forward_stream, args=(process.stdout, STREAM_STDOUT),
                                 name=f"worker-{process.pid}-stdout", daemon=True),
                threading.Thread(target=self._forward_stream, args=(process.stderr, STREAM_STDERR),
                                 name=f"worker-{process.pid}-stderr", daemon=True),
            ]
            waiter = threading.Thread(target=self._watch_exit, args=(handle, readers),
                                      name=f"worker-{process.pid}-waiter", daemon=True)
            handle.threads = readers + [waiter]
            for thread in handle.threads:
                thread.start()

            self.logger.info(f"Worker started (PID: {process.pid}, address: {listen_address})")
            self._set_state(ServiceState.RUNNING)
            return handle

    def _platform_popen_kwargs(self) -> Dict[str, Any]:
        """Detach the worker from any console and from the host's signal group."""
        if os.name == "nt":
            return {
                'creationflags': subprocess.CREATE_NO_WINDOW | subprocess.CREATE_NEW_PROCESS_GROUP
            }
        return {'start_new_session': True}

    def stop(self) -> bool:
        """Stop the worker gracefully, escalating to a forced tree kill after the grace period."""
        with self.lock:
            handle = self.handle
            if handle is None or handle.process.poll() is not None:
                if handle is not None and self.state not in (ServiceState.STOPPED, ServiceState.FAILED):
                    self._set_state(ServiceState.STOPPED)
                return True

            self._stopping = True
            self._set_state(ServiceState.STOPPING)

        process = handle.process
        descendants = self._collect_descendants(handle.pid)

        self.logger.info(f"Stopping worker (PID: {handle.pid})")
        self._request_graceful_shutdown(process)

        try:
            process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            self.logger.warning(f"Graceful shutdown timed out after {self.grace_period}s, "
                                f"forcing termination of PID {handle.pid}")
            self._kill_tree(process, descendants)
        else:
            self._kill_leftovers(handle, descendants)

        handle.exit_code = process.returncode
        self._join_threads(handle)

        with self.lock:
            self._stopping = False
            self._set_state(ServiceState.STOPPED)

        self.logger.info(f"Worker stopped (exit code: {handle.exit_code})")
        return True

    def restart(self, executable_path: str, listen_address: str, vault: CredentialVault) -> ServiceProcessHandle:
        """Stop any running worker and launch a fresh one."""
        self.stop()
        return self.start(executable_path, listen_address, vault)

    def _request_graceful_shutdown(self, process: subprocess.Popen) -> None:
        try:
            if os.name == "nt":
                process.send_signal(signal.CTRL_BREAK_EVENT)
            else:
                process.terminate()
        except OSError as e:
            self.logger.debug(f"Graceful shutdown request failed: {e}")

    def _collect_descendants(self, pid: int) -> List[psutil.Process]:
        try:
            return psutil.Process(pid).children(recursive=True)
        except psutil.Error:
            return []

    def _kill_tree(self, process: subprocess.Popen, descendants: List[psutil.Process]) -> None:
        """Force-kill the worker and every descendant seen before or now."""
        known = {p.pid: p for p in descendants}
        for child in self._collect_descendants(process.pid):
            known.setdefault(child.pid, child)

        for child in known.values():
            try:
                child.kill()
            except psutil.Error:
                pass

        try:
            process.kill()
        except OSError:
            pass

        self._kill_process_group(process.pid)
        process.wait()
        psutil.wait_procs(list(known.values()), timeout=self.grace_period)

    def _kill_leftovers(self, handle: ServiceProcessHandle, descendants: List[psutil.Process]) -> None:
        """Kill helpers that outlived the worker; they would hold its output pipes open."""
        self._kill_process_group(handle.pid)

        survivors = []
        for child in descendants:
            try:
                child.kill()
                survivors.append(child)
            except psutil.Error:
                pass

        if survivors:
            self.logger.warning(f"Killed {len(survivors)} leftover process(es) of worker PID {handle.pid}")
            psutil.wait_procs(survivors, timeout=self.grace_period)

    def _kill_process_group(self, pgid: int) -> None:
        # The worker leads its own session, so its process group outlives it
        if os.name == "nt":
            return
        try:
            os.killpg(pgid, signal.SIGKILL)
        except OSError:
            pass

    def _join_threads(self, handle: ServiceProcessHandle) -> None:
        for thread in handle.threads:
            if thread is threading.current_thread():
                continue
            thread.join(timeout=2)
            if thread.is_alive():
                self.logger.warning(f"Thread {thread.name} still running after worker exit")

    def _forward_stream(self, stream, stream_name: str) -> None:
        """Forward worker output line by line, masked, in emission order."""
        if stream is None:
            return
        try:
            for raw_line in iter(stream.readline, ''):
                line = raw_line.rstrip("\r\n")
                if not line:
                    continue
                masked = self.masker.mask_in_string(line)
                if stream_name == STREAM_STDERR:
                    self.worker_logger.warning(masked)
                else:
                    self.worker_logger.info(masked)
                notify(self.observer, LogLine(stream=stream_name, text=masked))
        except (OSError, ValueError) as e:
            self.logger.debug(f"Stopped reading worker {stream_name}: {e}")
        finally:
            # Only the reader closes its pipe, after EOF
            try:
                stream.close()
            except OSError:
                pass

    def _watch_exit(self, handle: ServiceProcessHandle, readers: List[threading.Thread]) -> None:
        """Detect the worker exiting on its own."""
        exit_code = handle.process.wait()

        with self.lock:
            if self._stopping or self.handle is not handle:
                return
        handle.exit_code = exit_code

        self._kill_leftovers(handle, [])
        for reader in readers:
            reader.join(timeout=2)

        with self.lock:
            if self._stopping or self.handle is not handle:
                return
            self.logger.warning(f"Worker exited unexpectedly (PID: {handle.pid}, exit code: {exit_code})")

        notify(self.observer, LogLine(stream=STREAM_STDERR, text=f"service exited (code {exit_code})"))
        self._set_state(ServiceState.STOPPED)

    def _release_handle(self) -> None:
        self.handle = None

    def _set_state(self, state: ServiceState) -> None:
        with self.lock:
            if self.state == state:
                return
            previous = self.state
            self.state = state
        self.logger.debug(f"Supervisor state: {previous.value} -> {state.value}")
        notify(self.observer, StatusChanged(state=state))

    def close(self) -> None:
        """Stop the worker and release resources. Safe to call repeatedly."""
        if self.closed:
            return
        try:
            self.stop()
        finally:
            with self.lock:
                self._release_handle()
                self.closed = True

    def __enter__(self) -> "ProcessSupervisor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
