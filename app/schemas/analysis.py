"""
Structured result of analyzing one call transcript.
"""

from typing import List, Literal

from pydantic import BaseModel, Field

SentimentLabel = Literal["positive", "neutral", "negative"]


class CallAnalysis(BaseModel):
    sentiment_score: float = Field(..., ge=-1.0, le=1.0)
    sentiment_label: SentimentLabel
    products_mentioned: List[str] = Field(default_factory=list)
    issues_identified: List[str] = Field(default_factory=list)
    opportunity_value: int = Field(..., ge=0, le=100)
    summary: str = ""
