"""Pydantic records for the webhook diagnostic pipeline."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class StepStatus(StrEnum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    WARNING = "warning"


class DiagnosticStep(StrEnum):
    CHECK_CONFIGURATION = "check_configuration"
    VALIDATE_ORDER_DATA = "validate_order_data"
    TEST_CONNECTIVITY = "test_connectivity"
    BUILD_PAYLOAD = "build_payload"
    TEST_DELIVERY = "test_delivery"


class StageOutcome(BaseModel):
    """Result of one diagnostic stage before it is recorded as a step."""

    status: StepStatus
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class DebugStep(BaseModel):
    step: str
    status: StepStatus
    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class DebugSession(BaseModel):
    id: str
    order_id: int
    started_at: datetime
    steps: list[DebugStep] = Field(default_factory=list)


class DebugStepLogRecord(BaseModel):
    """Row shape of the persisted per-step debug log."""

    order_id: int | None = None
    debug_session_id: str
    step_name: str
    step_status: str
    step_data: dict[str, Any] | None = None
    error_details: str | None = None
    execution_time_ms: int | None = None
    created_at: datetime | None = None


class PayloadArchiveRecord(BaseModel):
    order_id: int | None = None
    debug_session_id: str
    webhook_url: str
    payload_raw: str
    payload_size_bytes: int
    request_headers: dict[str, str] = Field(default_factory=dict)
    response_status: int | None = None
    response_headers: dict[str, str] | None = None
    response_body: str | None = None
    network_error: str | None = None
    response_time_ms: int | None = None


class DiagnosticIssue(BaseModel):
    category: str  # configuration, network, data
    steps: list[str] = Field(default_factory=list)
    recommendation: str


class DiagnosticResult(BaseModel):
    success: bool
    debug_session_id: str
    order_id: int
    total_steps: int
    completed_steps: int
    failed_steps: int
    warning_steps: int
    total_time_ms: int
    failure_points: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    issues: list[DiagnosticIssue] = Field(default_factory=list)
    steps: list[DebugStep] = Field(default_factory=list)


class DebugHistoryEntry(BaseModel):
    debug_session_id: str
    order_id: int | None = None
    total_steps: int = 0
    failed_steps: int = 0
    warning_steps: int = 0
    completed_steps: int = 0
    total_execution_time_ms: int = 0
    last_attempt: datetime | None = None
    failure_summary: str | None = None
