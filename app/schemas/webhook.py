"""
Inbound webhook payloads and the acknowledgment returned to the sender.

Payloads are validated at the boundary: the envelope only needs a string
`type`; accepted event types are then re-validated as CallEndedEvent,
which requires a well-formed `call` block. Anything else is acknowledged
and dropped.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator

from app.schemas.base import CamelModel


class VapiCustomer(CamelModel):
    number: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class VapiRecording(CamelModel):
    url: Optional[str] = None


class VapiCall(CamelModel):
    """The `call` block of a Vapi end-of-call event."""

    id: str = Field(..., min_length=1, max_length=128)
    assistant_id: str = Field(..., alias="assistantId", min_length=1, max_length=128)
    transcript: str = ""
    duration: float = Field(0, ge=0)
    customer: Optional[VapiCustomer] = None
    recording: Optional[VapiRecording] = None
    summary: Optional[str] = None
    status: str = "completed"
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    ended_reason: Optional[str] = Field(None, alias="endedReason")

    @field_validator("id", "assistant_id")
    @classmethod
    def strip_identifiers(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("identifier must not be blank")
        return v

    @field_validator("transcript", mode="before")
    @classmethod
    def none_transcript_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("duration", mode="before")
    @classmethod
    def none_duration_is_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("status", mode="before")
    @classmethod
    def default_status(cls, v: Any) -> Any:
        return v or "completed"


class WebhookEnvelope(CamelModel):
    """Minimal shape every provider event must have."""

    type: str = Field(..., min_length=1)


class CallEndedEvent(CamelModel):
    """An accepted end-of-call event."""

    type: str
    call: VapiCall


class WebhookAck(CamelModel):
    """
    Body of every webhook response. The HTTP status is always 200;
    the outcome is distinguished only by these fields.
    """

    received: bool = True
    call_id: Optional[str] = Field(None, alias="callId")
    business_id: Optional[str] = Field(None, alias="businessId")
    assistant_id: Optional[str] = Field(None, alias="assistantId")
    processing_queued: Optional[bool] = Field(None, alias="processingQueued")
    duration: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
