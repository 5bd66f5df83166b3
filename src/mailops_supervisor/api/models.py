#!/usr/bin/env python3
"""
Request and response schemas of the worker's HTTP control surface.

One model per endpoint. Unknown fields sent by the worker are ignored;
missing or mistyped required fields fail at decode time.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class _WorkerModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ServiceStatus(_WorkerModel):
    """GET /api/status"""

    status: str
    version: Optional[str] = None
    start_time: Optional[datetime] = None
    active_runs: Optional[int] = None
    http_addr: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status == "running"


class RunParams(_WorkerModel):
    domain: str
    vps_ip: str
    profile: str = "cloudflare"
    dry_run: bool = True


class CreateRunRequest(_WorkerModel):
    """POST /api/runs"""

    config_file: str = ""
    params: RunParams


class CreateRunResponse(_WorkerModel):
    run_id: str = Field(validation_alias=AliasChoices("run_id", "id"))
    status: str = ""


class DnsRecord(_WorkerModel):
    """One proposed DNS mutation."""

    type: str
    name: str
    value: str
    ttl: int = 0
    priority: int = 0
    action: Literal["create", "update", "delete"]


class DnsPreviewResult(_WorkerModel):
    """GET /api/dns/preview?run_id="""

    domain: Optional[str] = None
    records: List[DnsRecord] = Field(default_factory=list)
    create_count: int = 0
    update_count: int = 0
    delete_count: int = 0
    total: int = 0

    @model_validator(mode="before")
    @classmethod
    def _fill_counts(cls, data):
        # Counts are derived from the records when the worker leaves them out
        if not isinstance(data, dict):
            return data
        records = data.get("records") or []
        actions = [r.get("action") if isinstance(r, dict) else getattr(r, "action", None)
                   for r in records]
        data = dict(data)
        for action in ("create", "update", "delete"):
            data.setdefault(f"{action}_count", actions.count(action))
        data.setdefault("total", len(records))
        return data


class RunReference(_WorkerModel):
    run_id: str


class ConfirmResponse(_WorkerModel):
    """POST /api/dns/confirm"""

    confirm_token: str = Field(
        min_length=1,
        validation_alias=AliasChoices("confirm_token", "confirm_id"),
    )
    masked_token: str = ""
    expires_in_sec: int = Field(ge=0)
    status: Optional[str] = None


class TokenRequest(_WorkerModel):
    """Body of POST /api/dns/validate and /api/dns/execute."""

    run_id: str
    confirm_token: str


class ValidateResponse(_WorkerModel):
    valid: bool
    status: str = ""
    message: str = ""


class ExecuteResponse(_WorkerModel):
    success: bool
    status: str = ""
    message: str = ""
    records_written: int = 0
