"""
Read-only dashboard schemas.

Analysis fields are None while analysis_status is "pending"; a "failed"
status means retries were exhausted and processing_error says why.
"""

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.base import TenantScopedRead


class CallEventRead(TenantScopedRead):
    provider: str
    assistant_id: Optional[str] = None
    caller_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    duration_seconds: float
    status: str
    transcript: str
    summary: Optional[str] = None
    recording_url: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_reason: Optional[str] = None

    analysis_status: str
    sentiment_score: Optional[float] = None
    sentiment_label: Optional[str] = None
    products_mentioned: Optional[List[str]] = None
    issues_identified: Optional[List[str]] = None
    opportunity_value: Optional[int] = None
    analysis_summary: Optional[str] = None
    processed_at: Optional[datetime] = None
    processing_version: Optional[str] = None
    processing_error: Optional[str] = None


class CallEventPage(BaseModel):
    items: List[CallEventRead]
    total: int
    limit: int
    offset: int


class DashboardStats(BaseModel):
    total_calls: int = 0
    analyzed_calls: int = 0
    pending_calls: int = 0
    failed_calls: int = 0
    average_sentiment: Optional[float] = None
    average_duration_seconds: Optional[float] = None
    average_opportunity_value: Optional[float] = None


class SentimentBreakdown(BaseModel):
    positive: int = 0
    neutral: int = 0
    negative: int = 0
    pending: int = 0


class OpportunityRead(BaseModel):
    call_id: str
    caller_number: Optional[str] = None
    customer_name: Optional[str] = None
    opportunity_value: int
    sentiment_label: Optional[str] = None
    products_mentioned: List[str] = Field(default_factory=list)
    analysis_summary: Optional[str] = None
    created_at: datetime


class CallVolumePoint(BaseModel):
    day: date
    calls: int


class CallVolume(BaseModel):
    days: int
    points: List[CallVolumePoint]
    by_status: Dict[str, int] = Field(default_factory=dict)
