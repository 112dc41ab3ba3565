"""
Event Ingestor - the fast webhook path.

Validates an inbound call event, writes the raw CallEvent row and publishes
an analysis job. Nothing slow happens here: no AI calls, no outbound HTTP.
Every outcome is reported as a WebhookAck; the sender always gets HTTP 200
so that provider retries cannot flood the system.
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings
from app.db.session import Database
from app.models.call_event import AnalysisStatus
from app.models.tenant import Tenant
from app.repositories.call_event_repository import CallEventRepository
from app.schemas.queue import JobPayload
from app.schemas.webhook import CallEndedEvent, WebhookAck, WebhookEnvelope
from app.services.job_dispatcher import JobDispatcher
from app.services.tenant_resolver import TenantResolver
from app.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("vapi", "botpress")
SUMMARY_FALLBACK_CHARS = 200


@dataclass
class IngestResult:
    call_event_id: Optional[str]
    tenant_id: str
    inserted: bool = False
    queued: bool = False
    job_id: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None


class EventIngestor:
    def __init__(
        self,
        database: Database,
        dispatcher: JobDispatcher,
        resolver: TenantResolver,
        settings: Settings,
    ):
        self.database = database
        self.dispatcher = dispatcher
        self.resolver = resolver
        self.settings = settings

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """HMAC-SHA256 of the raw body, hex encoded. No secret configured = accept."""
        secret = self.settings.VAPI_WEBHOOK_SECRET
        if not secret:
            return True
        if not signature:
            return False
        expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    def parse_event(self, raw: Any) -> tuple[Optional[CallEndedEvent], Optional[WebhookAck]]:
        """
        Validate a decoded body. Returns (event, None) for an accepted event,
        or (None, ack) describing why it was dropped.
        """
        if not isinstance(raw, dict):
            logger.warning("[Webhook] Payload is not a JSON object")
            return None, WebhookAck(error="Invalid payload")

        try:
            envelope = WebhookEnvelope.model_validate(raw)
        except ValidationError:
            logger.warning("[Webhook] Payload has no event type")
            return None, WebhookAck(error="Invalid payload")

        logger.info("[Webhook] Received event: %s", envelope.type)
        if envelope.type.lower() not in self.settings.accepted_event_types:
            return None, WebhookAck(message="Event type ignored")

        if not raw.get("call"):
            logger.warning("[Webhook] Missing call data in %s event", envelope.type)
            return None, WebhookAck(error="Missing call data")

        try:
            return CallEndedEvent.model_validate(raw), None
        except ValidationError as exc:
            logger.warning("[Webhook] Invalid call data: %s", exc.errors(include_url=False))
            return None, WebhookAck(error="Invalid call data")

    def _row_values(self, event: CallEndedEvent, tenant: Tenant, provider: str) -> dict[str, Any]:
        call = event.call
        customer = call.customer
        return {
            "id": call.id,
            "tenant_id": tenant.id,
            "provider": provider,
            "assistant_id": call.assistant_id,
            "caller_number": (customer.number if customer else None) or "Unknown",
            "customer_name": customer.name if customer else None,
            "customer_email": customer.email if customer else None,
            "duration_seconds": call.duration,
            "status": call.status,
            "transcript": call.transcript,
            "summary": call.summary or call.transcript[:SUMMARY_FALLBACK_CHARS],
            "recording_url": call.recording.url if call.recording else None,
            "started_at": call.created_at,
            "ended_reason": call.ended_reason,
            "raw_metadata": {
                "eventType": event.type,
                "endedReason": call.ended_reason,
                "receivedAt": utc_now_iso(),
            },
            "analysis_status": AnalysisStatus.PENDING,
        }

    async def ingest(
        self,
        raw_payload: Union[CallEndedEvent, dict[str, Any]],
        tenant: Tenant,
        provider: str = "vapi",
    ) -> IngestResult:
        """
        Persist one call event for `tenant` and publish its analysis job.

        Redelivery of an id this tenant already holds is a no-op insert; a job
        is still published while the row is pending so that it gets processed
        eventually. Never raises for payload, storage or queue problems.
        """
        if isinstance(raw_payload, CallEndedEvent):
            event = raw_payload
        else:
            event, rejection = self.parse_event(raw_payload)
            if event is None:
                return IngestResult(
                    call_event_id=None,
                    tenant_id=tenant.id,
                    error=rejection.error,
                    message=rejection.message,
                )

        call_id = event.call.id
        result = IngestResult(call_event_id=call_id, tenant_id=tenant.id)

        try:
            async with self.database.session() as session:
                repo = CallEventRepository(session)
                result.inserted = await repo.insert_if_absent(self._row_values(event, tenant, provider))
                existing = None if result.inserted else await repo.get_by_id(tenant.id, call_id)
        except (SQLAlchemyError, OSError) as exc:
            logger.error("[Webhook] Database insert failed for call %s (tenant %s)", call_id, tenant.id, exc_info=True)
            result.error = "Database error"
            result.message = str(exc.__class__.__name__)
            return result

        if result.inserted:
            logger.info("[Webhook] Call saved: %s (tenant %s)", call_id, tenant.id)
        elif existing is None:
            # the id is held by another tenant; never touch it
            logger.warning("[Webhook] Call id %s already belongs to another tenant; not queued", call_id)
            result.error = "Duplicate call id"
            return result
        elif existing.analysis_status != AnalysisStatus.PENDING:
            logger.info("[Webhook] Duplicate delivery of call %s (analysis %s)", call_id, existing.analysis_status)
            result.message = "Call already processed"
            return result
        else:
            logger.info("[Webhook] Duplicate delivery of call %s; analysis still pending", call_id)

        payload = JobPayload(
            call_event_id=call_id,
            tenant_id=tenant.id,
            assistant_id=event.call.assistant_id,
        )
        try:
            result.job_id = await self.dispatcher.enqueue(payload)
            result.queued = True
            logger.info("[Webhook] AI processing job %s queued for call %s", result.job_id, call_id)
        except Exception:  # noqa: BLE001
            # the row is durable; backfill_pending_jobs will pick it up
            logger.exception("[Webhook] Failed to queue AI processing job for call %s", call_id)

        return result

    async def handle_webhook(
        self,
        provider: str,
        body: bytes,
        host_header: Optional[str] = None,
        explicit_tenant_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> WebhookAck:
        """Full webhook flow. Always returns an ack, never raises."""
        started = time.perf_counter()
        provider = (provider or "").lower()

        try:
            if provider == "botpress":
                return WebhookAck(message="Botpress webhook not implemented yet")
            if provider not in SUPPORTED_PROVIDERS:
                logger.warning("[Webhook] Unknown provider: %s", provider)
                return WebhookAck(received=False, error="Unknown provider")

            if not self.verify_signature(body, signature):
                logger.warning("[Webhook] Rejected %s webhook with invalid signature", provider)
                return WebhookAck(received=False, error="Invalid signature")

            try:
                raw = json.loads(body or b"null")
            except ValueError:
                logger.warning("[Webhook] Body is not valid JSON")
                return WebhookAck(error="Invalid JSON")

            event, rejection = self.parse_event(raw)
            if event is None:
                return rejection

            match = await self.resolver.resolve_for_event(
                event.call.assistant_id,
                host_header=host_header,
                explicit_tenant_id=explicit_tenant_id,
            )
            if match.tenant is None:
                logger.error("[Webhook] Unknown assistant ID: %s", event.call.assistant_id)
                return WebhookAck(error="Unknown assistant", assistant_id=event.call.assistant_id)
            if match.conflict:
                logger.error(
                    "[Webhook] Assistant %s belongs to %s but the request named %s; dropped",
                    event.call.assistant_id,
                    match.tenant.id,
                    match.hinted_tenant_id,
                )
                return WebhookAck(error="Tenant mismatch", assistant_id=event.call.assistant_id)

            tenant = match.tenant

            logger.info("[Webhook] Call for business: %s (%s)", tenant.name, tenant.id)
            result = await self.ingest(event, tenant, provider=provider)

            if result.error:
                return WebhookAck(
                    call_id=result.call_event_id,
                    business_id=tenant.id,
                    processing_queued=False,
                    error=result.error,
                    message=result.message,
                )

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            if elapsed_ms > self.settings.INGEST_LATENCY_BUDGET_MS:
                logger.warning("[Webhook] Ingestion took %dms (budget %dms)", elapsed_ms, self.settings.INGEST_LATENCY_BUDGET_MS)
            else:
                logger.info("[Webhook] Completed in %dms", elapsed_ms)

            return WebhookAck(
                call_id=result.call_event_id,
                business_id=tenant.id,
                processing_queued=result.queued,
                duration=f"{elapsed_ms}ms",
                message=result.message,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("[Webhook] Unexpected error")
            return WebhookAck(error="Internal error", message=str(exc) or exc.__class__.__name__)
