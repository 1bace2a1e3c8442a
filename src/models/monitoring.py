"""Pydantic models for recurring site monitoring and scan diffs."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

import pydantic

from src.utils import serialization


class MonitoredSite(pydantic.BaseModel):
    """A site a user asked to have re-scanned periodically."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    id: str
    url: str
    email: str
    last_scan_id: str | None = None
    last_checked_at: datetime | None = None
    created_at: datetime


class ScanDiff(pydantic.BaseModel):
    """Regressions between two scans of the same site.

    Only new risk is represented; improvements never appear here.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    has_changes: bool
    new_external_hosts: list[str] = pydantic.Field(default_factory=list)
    new_risk_flags: list[str] = pydantic.Field(default_factory=list)
    new_cookies: list[str] = pydantic.Field(default_factory=list)


SiteOutcomeStatus = Literal["ok", "error", "timeout"]


class SiteOutcome(pydantic.BaseModel):
    """Result of processing one monitored site in a monitoring run."""

    url: str
    email: str
    status: SiteOutcomeStatus
    detail: str = ""
