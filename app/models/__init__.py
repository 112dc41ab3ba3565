"""
Models package.

Import all models here so they are registered with SQLAlchemy.
This file also makes it easy to import models from one place.
"""

from app.models.tenant import Tenant
from app.models.call_event import AnalysisStatus, CallEvent
from app.models.analysis_job import AnalysisJob, JobStatus

# Export all models
__all__ = [
    "Tenant",
    "CallEvent",
    "AnalysisStatus",
    "AnalysisJob",
    "JobStatus",
]
