"""
Schemas package.

Import all schemas here for easy access.
"""

from app.schemas.tenant import TenantRead
from app.schemas.webhook import (
    CallEndedEvent,
    VapiCall,
    VapiCustomer,
    VapiRecording,
    WebhookAck,
    WebhookEnvelope,
)
from app.schemas.queue import JobPayload, QueueStats
from app.schemas.analysis import CallAnalysis
from app.schemas.dashboard import (
    CallEventPage,
    CallEventRead,
    CallVolume,
    CallVolumePoint,
    DashboardStats,
    OpportunityRead,
    SentimentBreakdown,
)

__all__ = [
    # Tenant
    "TenantRead",
    # Webhook
    "CallEndedEvent", "VapiCall", "VapiCustomer", "VapiRecording", "WebhookAck", "WebhookEnvelope",
    # Queue
    "JobPayload", "QueueStats",
    # Analysis
    "CallAnalysis",
    # Dashboard
    "CallEventPage", "CallEventRead", "CallVolume", "CallVolumePoint",
    "DashboardStats", "OpportunityRead", "SentimentBreakdown",
]
