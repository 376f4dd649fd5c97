"""WebhookDiagnostics: staged investigation of why outbound delivery fails for an order.

Stages (each recorded as a step, started -> completed/failed/warning):
1. check_configuration  - enabled, URL parseable, timeout in range
2. validate_order_data  - required fields and well-formed items
3. test_connectivity    - HEAD probe with a short timeout
4. build_payload        - diagnostic payload, required ids, size ceiling
5. test_delivery        - signed POST with X-Webhook-Test, only if 1-4 all completed

Stages 1-4 are independent: a failure in one never stops the others.
"""

import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from app.core.config import Settings
from app.domain.diagnostics import (
    aggregate_debug_logs,
    aggregate_result,
    classify_connectivity_error,
    is_valid_webhook_url,
    validate_configuration,
    validate_order_data,
    validate_payload,
)
from app.domain.payload import build_headers, build_payload, serialize_payload
from app.repositories.protocols import Repositories
from app.schemas.diagnostics import (
    DebugHistoryEntry,
    DebugSession,
    DebugStep,
    DebugStepLogRecord,
    DiagnosticResult,
    DiagnosticStep,
    PayloadArchiveRecord,
    StageOutcome,
    StepStatus,
)
from app.schemas.orders import OrderRecord
from app.schemas.webhooks import WebhookEventType, ZapierSettings
from app.services.debug_sessions import DebugSessionStore
from app.services.zapier_dispatcher import post_payload
from app.services.zapier_settings import ZapierSettingsService

logger = structlog.get_logger(__name__)

PRECONDITION_STAGES = (
    DiagnosticStep.CHECK_CONFIGURATION,
    DiagnosticStep.VALIDATE_ORDER_DATA,
    DiagnosticStep.TEST_CONNECTIVITY,
    DiagnosticStep.BUILD_PAYLOAD,
)


class WebhookDiagnostics:
    def __init__(
        self,
        repositories: Repositories,
        settings_service: ZapierSettingsService,
        http_client: httpx.AsyncClient,
        session_store: DebugSessionStore,
        config: Settings,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repos = repositories
        self.settings_service = settings_service
        self.http_client = http_client
        self.sessions = session_store
        self.config = config
        self.clock = clock or (lambda: datetime.now(UTC))

    async def run(self, order_id: int) -> DiagnosticResult:
        session = DebugSession(id=str(uuid.uuid4()), order_id=order_id, started_at=self.clock())
        started = time.perf_counter()
        await self.sessions.save(session)
        logger.info("webhook_diagnosis_started", debug_session_id=session.id, order_id=order_id)

        outcomes: dict[str, StageOutcome] = {}
        # Filled by stages 1 and 2; left unset when the read fails
        loaded: dict[str, Any] = {}
        built: dict[str, Any] = {}

        outcomes[DiagnosticStep.CHECK_CONFIGURATION] = await self._stage(
            session, DiagnosticStep.CHECK_CONFIGURATION, lambda: self._check_configuration(loaded)
        )
        outcomes[DiagnosticStep.VALIDATE_ORDER_DATA] = await self._stage(
            session, DiagnosticStep.VALIDATE_ORDER_DATA, lambda: self._validate_order(order_id, loaded)
        )
        settings: ZapierSettings | None = loaded.get("settings")
        order: OrderRecord | None = loaded.get("order")

        outcomes[DiagnosticStep.TEST_CONNECTIVITY] = await self._stage(
            session,
            DiagnosticStep.TEST_CONNECTIVITY,
            lambda: self._test_connectivity(settings.webhook_url if settings else ""),
        )
        outcomes[DiagnosticStep.BUILD_PAYLOAD] = await self._stage(
            session, DiagnosticStep.BUILD_PAYLOAD, lambda: self._build_payload(session, order, settings, built)
        )

        blocked = [s.value for s in PRECONDITION_STAGES if outcomes[s].status != StepStatus.COMPLETED]
        if blocked:
            outcomes[DiagnosticStep.TEST_DELIVERY] = await self._stage(
                session, DiagnosticStep.TEST_DELIVERY, lambda: self._skip_delivery(blocked)
            )
        else:
            outcomes[DiagnosticStep.TEST_DELIVERY] = await self._stage(
                session,
                DiagnosticStep.TEST_DELIVERY,
                lambda: self._test_delivery(session, settings, built["payload"], built["body"]),
            )

        total_ms = int((time.perf_counter() - started) * 1000)
        result = aggregate_result(session.id, order_id, session.steps, outcomes, total_ms)
        logger.info(
            "webhook_diagnosis_completed",
            debug_session_id=session.id,
            order_id=order_id,
            success=result.success,
            failed_steps=result.failed_steps,
            total_time_ms=total_ms,
        )
        return result

    async def _stage(
        self,
        session: DebugSession,
        step_name: DiagnosticStep,
        fn: Callable[[], Awaitable[StageOutcome]],
    ) -> StageOutcome:
        step = DebugStep(step=step_name.value, status=StepStatus.STARTED, started_at=self.clock())
        session.steps.append(step)
        await self.sessions.save(session)
        started = time.perf_counter()

        try:
            outcome = await fn()
        except Exception as e:
            logger.warning(
                "diagnostic_stage_error",
                debug_session_id=session.id,
                step=step_name.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            outcome = StageOutcome(status=StepStatus.FAILED, error=str(e) or type(e).__name__)

        step.status = outcome.status
        step.data = outcome.data
        step.error = outcome.error
        step.finished_at = self.clock()
        step.duration_ms = int((time.perf_counter() - started) * 1000)
        await self.sessions.save(session)
        await self._persist_step(session, step)
        return outcome

    async def _persist_step(self, session: DebugSession, step: DebugStep) -> None:
        try:
            await self.repos.debug_logs.add_step(DebugStepLogRecord(
                order_id=session.order_id,
                debug_session_id=session.id,
                step_name=step.step,
                step_status=step.status.value,
                step_data=step.data,
                error_details=step.error,
                execution_time_ms=step.duration_ms,
            ))
        except Exception as e:
            logger.warning("debug_step_persist_failed", debug_session_id=session.id, step=step.step, error=str(e))

    # ── Stages ──────────────────────────────────────────────────────

    async def _check_configuration(self, loaded: dict[str, Any]) -> StageOutcome:
        try:
            loaded["settings"] = await self.settings_service.get()
        except Exception as e:
            logger.warning("diagnostic_settings_read_failed", error=str(e), error_type=type(e).__name__)
            return StageOutcome(status=StepStatus.FAILED, error=f"Configuration check failed: {e}")
        return validate_configuration(loaded["settings"])

    async def _validate_order(self, order_id: int, loaded: dict[str, Any]) -> StageOutcome:
        try:
            loaded["order"] = await self.repos.orders.get(order_id)
        except Exception as e:
            logger.warning("diagnostic_order_read_failed", order_id=order_id, error=str(e))
            return StageOutcome(status=StepStatus.FAILED, error=f"Order data validation failed: {e}")
        return validate_order_data(loaded["order"])

    async def _test_connectivity(self, url: str) -> StageOutcome:
        if not is_valid_webhook_url(url):
            return StageOutcome(status=StepStatus.FAILED, error="No valid webhook URL provided")

        started = time.perf_counter()
        try:
            response = await self.http_client.head(
                url,
                headers={"User-Agent": self.config.webhook_test_user_agent},
                timeout=self.config.webhook_probe_timeout,
            )
        except Exception as e:
            return StageOutcome(
                status=StepStatus.FAILED,
                data={"error_type": classify_connectivity_error(e), "url": url},
                error=str(e) or type(e).__name__,
            )
        return StageOutcome(status=StepStatus.COMPLETED, data={
            "url": url,
            "status": response.status_code,
            "response_time_ms": int((time.perf_counter() - started) * 1000),
            "headers": dict(response.headers),
        })

    async def _build_payload(
        self,
        session: DebugSession,
        order: OrderRecord | None,
        settings: ZapierSettings | None,
        built: dict[str, Any],
    ) -> StageOutcome:
        if order is None:
            return StageOutcome(status=StepStatus.FAILED, error="Failed to fetch order data for payload")
        if settings is None:
            return StageOutcome(status=StepStatus.FAILED, error="Webhook settings unavailable for payload")

        customer = None
        if settings.include_customer_data and order.customer_id is not None:
            customer = await self.repos.customers.get(order.customer_id)

        payload = build_payload(
            order,
            settings,
            event_type=WebhookEventType.PAYMENT_LINK_CREATED,
            metadata={
                "source": "webhook_diagnostic_test",
                "created_via": "diagnostic",
                "test_mode": True,
                "debug_session_id": session.id,
            },
            customer=customer,
            now=self.clock(),
        )
        body = serialize_payload(payload)
        built["payload"] = payload
        built["body"] = body
        return validate_payload(payload, body, self.config.webhook_max_payload_bytes)

    async def _skip_delivery(self, blocked: list[str]) -> StageOutcome:
        return StageOutcome(
            status=StepStatus.WARNING,
            data={"skipped": True, "blocked_by": blocked},
            error=f"Skipped end-to-end delivery: {', '.join(blocked)} did not complete",
        )

    async def _test_delivery(
        self,
        session: DebugSession,
        settings: ZapierSettings,
        payload: dict[str, Any],
        body: bytes,
    ) -> StageOutcome:
        headers = build_headers(
            body,
            self.config.webhook_test_user_agent,
            secret=settings.webhook_secret or None,
            test_mode=True,
        )
        result, response = await post_payload(
            self.http_client,
            settings.webhook_url,
            body,
            headers,
            timeout=settings.webhook_timeout,
            body_limit=self.config.webhook_response_body_limit,
        )

        try:
            await self.repos.debug_logs.add_payload_archive(PayloadArchiveRecord(
                order_id=session.order_id,
                debug_session_id=session.id,
                webhook_url=settings.webhook_url,
                payload_raw=body.decode("utf-8"),
                payload_size_bytes=len(body),
                request_headers=headers,
                response_status=result.status_code if response is not None else None,
                response_headers=dict(response.headers) if response is not None else None,
                response_body=result.response_body,
                network_error=result.error if response is None else None,
                response_time_ms=result.response_time_ms,
            ))
        except Exception as e:
            logger.warning("payload_archive_failed", debug_session_id=session.id, error=str(e))

        data = {
            "status": result.status_code,
            "response_time_ms": result.response_time_ms,
            "response_body": result.response_body,
            "payload_size_bytes": len(body),
            "event_type": payload.get("event_type"),
        }
        if result.success:
            return StageOutcome(status=StepStatus.COMPLETED, data=data)
        return StageOutcome(status=StepStatus.FAILED, data=data, error=result.error)

    # ── History / sessions ──────────────────────────────────────────

    async def history(self, order_id: int, limit: int = 10) -> list[DebugHistoryEntry]:
        """Past diagnostic sessions for an order. Degrades gracefully, never raises.

        1. Pre-aggregated failure-analysis view, if it exists and has rows
        2. Client-side aggregation of raw debug step logs
        3. Empty list when even the raw table is absent
        """
        try:
            rows = await self.repos.debug_logs.failure_analysis(order_id, limit)
        except Exception as e:
            logger.warning("failure_analysis_probe_failed", order_id=order_id, error=str(e))
            rows = None
        if rows:
            return rows

        if rows is None:
            logger.info("failure_analysis_view_missing", order_id=order_id)

        try:
            raw = await self.repos.debug_logs.raw_steps(order_id)
        except Exception as e:
            logger.warning("debug_log_probe_failed", order_id=order_id, error=str(e))
            return []
        if raw is None:
            logger.info("debug_log_table_missing", order_id=order_id)
            return []
        return aggregate_debug_logs(raw, limit)

    async def get_session(self, session_id: str) -> DebugSession | None:
        return await self.sessions.get(session_id)
