"""
Call analyzers: transcript -> structured CallAnalysis.

OpenAICallAnalyzer talks to an OpenAI-compatible chat-completions endpoint
and forces a JSON response. HeuristicCallAnalyzer is a deterministic,
offline stand-in used when MOCK_AI is set or no API key is configured.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol

import httpx

from app.core.config import Settings
from app.errors import AnalysisError
from app.schemas.analysis import CallAnalysis

logger = logging.getLogger(__name__)

POSITIVE_THRESHOLD = 0.3
NEGATIVE_THRESHOLD = -0.3

SYSTEM_PROMPT = (
    "You are an expert business analyst specializing in customer call analysis. "
    "Analyze call transcripts and provide structured insights about sentiment, products, issues, and opportunity value. "
    "Always respond with valid JSON only, no additional text."
)

BUSINESS_CONTEXTS = {
    "tax": "Tax preparation and accounting services. Common services: Individual Tax Return, Business Tax Return, "
    "ITIN Application, Tax Consultation, Bookkeeping. Common issues: Missing documents, pricing questions, deadline concerns.",
    "dental": "Dental practice. Common services: Cleaning, Exam, X-rays, Fillings, Crowns, Root Canal, Whitening. "
    "Common issues: Insurance coverage, pricing, pain/urgency, appointment availability.",
    "restaurant": "Restaurant. Common needs: Reservations, catering, menu questions, dietary restrictions. "
    "Common issues: Wait times, food quality, allergies.",
    "legal": "Legal services. Common services: Consultation, Document review, Representation, Contract drafting. "
    "Common issues: Cost concerns, case complexity, urgency.",
    "medical": "Medical practice. Common services: Checkup, Sick visit, Lab tests, Prescriptions. "
    "Common issues: Insurance, symptoms, appointment availability, follow-up.",
    "general": "General business services. Identify products/services mentioned and customer concerns.",
}


def business_context(business_type: Optional[str]) -> str:
    return BUSINESS_CONTEXTS.get((business_type or "general").lower(), BUSINESS_CONTEXTS["general"])


def build_analysis_prompt(transcript: str, business_type: str = "general") -> str:
    return f"""
Analyze this customer call transcript and extract the following information:

**Business Type**: {business_type}
**Business Context**: {business_context(business_type)}

**Transcript**:
{transcript}

**Instructions**:
1. **Sentiment**: Determine overall sentiment on a scale from -1.0 (very negative) to 1.0 (very positive)
2. **Products/Services**: List specific products or services mentioned by name
3. **Issues**: Identify any problems, concerns, or pain points the customer mentioned
4. **Opportunity Value**: Rate lead quality from 0-100 based on buying intent, urgency, budget signals
5. **Summary**: Write a 1-2 sentence summary of the call

**Output Format** (JSON):
{{
  "sentiment_score": <number between -1.0 and 1.0>,
  "sentiment_label": "<positive|neutral|negative>",
  "products_mentioned": ["product1", "product2"],
  "issues_identified": ["issue1", "issue2"],
  "opportunity_value": <number between 0 and 100>,
  "summary": "<brief call summary>"
}}

**Important**:
- Return ONLY valid JSON, no markdown code blocks
- Use empty arrays [] if no products/issues found
- sentiment_label must be one of: positive, neutral, negative
- sentiment_score: positive (0.3 to 1.0), neutral (-0.3 to 0.3), negative (-1.0 to -0.3)
"""


def label_for_score(score: float) -> str:
    if score > POSITIVE_THRESHOLD:
        return "positive"
    if score < NEGATIVE_THRESHOLD:
        return "negative"
    return "neutral"


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def normalize_analysis(raw: dict[str, Any]) -> CallAnalysis:
    """Coerce a loosely-shaped model response into a valid CallAnalysis."""
    score = max(-1.0, min(1.0, _to_float(raw.get("sentiment_score"))))

    label = raw.get("sentiment_label")
    if label not in ("positive", "neutral", "negative"):
        label = label_for_score(score)

    opportunity = max(0, min(100, _to_int(raw.get("opportunity_value"))))

    return CallAnalysis(
        sentiment_score=score,
        sentiment_label=label,
        products_mentioned=_string_list(raw.get("products_mentioned")),
        issues_identified=_string_list(raw.get("issues_identified")),
        opportunity_value=opportunity,
        summary=raw.get("summary") or "Call analysis completed",
    )


def default_analysis() -> CallAnalysis:
    """Placeholder used by batch runs when a single call cannot be analyzed."""
    return CallAnalysis(
        sentiment_score=0.0,
        sentiment_label="neutral",
        products_mentioned=[],
        issues_identified=[],
        opportunity_value=50,
        summary="Analysis unavailable",
    )


class CallAnalyzer(Protocol):
    async def analyze(self, transcript: str, business_type: str = "general") -> CallAnalysis:
        ...


class OpenAICallAnalyzer:
    """Chat-completions analyzer with a forced JSON response."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.endpoint = f"{base_url.rstrip('/')}/chat/completions"
        self.timeout = timeout
        self._client = client

    def _build_request_body(self, transcript: str, business_type: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "temperature": 0.3,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_analysis_prompt(transcript, business_type)},
            ],
            "response_format": {"type": "json_object"},
        }

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._client is not None:
            return await self._client.post(self.endpoint, json=body, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.endpoint, json=body, headers=headers)

    @staticmethod
    def _parse_content(payload: dict[str, Any]) -> dict[str, Any]:
        choices = payload.get("choices") or []
        if not choices:
            raise AnalysisError("Empty response from model", {"payload_keys": sorted(payload.keys())})
        content = (choices[0].get("message") or {}).get("content")
        if not content:
            raise AnalysisError("Empty response from model")
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise AnalysisError("Model response was not valid JSON", {"content": content[:500]}) from exc
        if not isinstance(parsed, dict):
            raise AnalysisError("Model response was not a JSON object")
        return parsed

    async def analyze(self, transcript: str, business_type: str = "general") -> CallAnalysis:
        try:
            response = await self._post(self._build_request_body(transcript, business_type))
        except httpx.HTTPError as exc:
            raise AnalysisError(f"Analysis request failed: {exc}") from exc

        if response.status_code >= 400:
            raise AnalysisError(
                f"Analysis request returned HTTP {response.status_code}",
                {"status_code": response.status_code, "body": response.text[:500]},
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise AnalysisError("Analysis response was not JSON") from exc

        return normalize_analysis(self._parse_content(payload))


POSITIVE_WORDS = (
    "thank", "thanks", "great", "perfect", "excellent", "happy", "wonderful",
    "appreciate", "awesome", "love", "sounds good",
)
NEGATIVE_WORDS = (
    "angry", "upset", "terrible", "bad", "frustrated", "disappointed", "cancel",
    "complaint", "problem", "wrong", "never",
)
INTENT_WORDS = (
    "book", "schedule", "appointment", "price", "quote", "buy", "sign up",
    "today", "asap", "urgent", "how much",
)
ISSUE_PATTERNS = {
    "pricing concern": r"\b(expensive|too much|price|cost)\b",
    "availability": r"\b(no availability|fully booked|wait(ing)? time)\b",
    "missing documents": r"\b(missing|forgot|lost) (document|form|paperwork)s?\b",
    "insurance coverage": r"\binsurance\b",
}


class HeuristicCallAnalyzer:
    """Keyword scoring; deterministic and network-free."""

    def __init__(self, products: Optional[Iterable[str]] = None):
        self.products = list(products or [])

    async def analyze(self, transcript: str, business_type: str = "general") -> CallAnalysis:
        text = (transcript or "").lower()

        positive = sum(text.count(word) for word in POSITIVE_WORDS)
        negative = sum(text.count(word) for word in NEGATIVE_WORDS)
        total = positive + negative
        score = 0.0 if total == 0 else round((positive - negative) / total, 3)

        intent = sum(1 for word in INTENT_WORDS if word in text)
        opportunity = min(100, 20 + intent * 15 + max(0, positive - negative) * 5)

        products = [name for name in self._candidate_products(business_type) if name.lower() in text]
        issues = [label for label, pattern in ISSUE_PATTERNS.items() if re.search(pattern, text)]

        words = (transcript or "").split()
        summary = " ".join(words[:30]) + ("..." if len(words) > 30 else "")

        return normalize_analysis(
            {
                "sentiment_score": score,
                "products_mentioned": products,
                "issues_identified": issues,
                "opportunity_value": opportunity,
                "summary": summary,
            }
        )

    def _candidate_products(self, business_type: str) -> list[str]:
        if self.products:
            return self.products
        context = business_context(business_type)
        match = re.search(r"Common (?:services|needs): ([^.]+)\.", context)
        if not match:
            return []
        return [item.strip() for item in match.group(1).split(",") if item.strip()]


@dataclass
class BatchItem:
    id: str
    transcript: str
    business_type: str = "general"


@dataclass
class BatchResult:
    id: str
    analysis: CallAnalysis
    error: Optional[str] = None


async def batch_analyze(
    analyzer: CallAnalyzer,
    calls: list[BatchItem],
    concurrency: int = 5,
    pause_seconds: float = 1.0,
) -> list[BatchResult]:
    """
    Analyze calls in batches of `concurrency`, pausing between batches.

    Per-call failures degrade to default_analysis() with the error recorded.
    """
    results: list[BatchResult] = []

    async def _one(item: BatchItem) -> BatchResult:
        try:
            return BatchResult(id=item.id, analysis=await analyzer.analyze(item.transcript, item.business_type))
        except AnalysisError as exc:
            logger.error("Error analyzing call %s: %s", item.id, exc)
            return BatchResult(id=item.id, analysis=default_analysis(), error=str(exc))

    for start in range(0, len(calls), concurrency):
        batch = calls[start:start + concurrency]
        results.extend(await asyncio.gather(*(_one(item) for item in batch)))
        if start + concurrency < len(calls) and pause_seconds > 0:
            await asyncio.sleep(pause_seconds)

    return results


def get_call_analyzer(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> CallAnalyzer:
    if settings.MOCK_AI or not settings.OPENAI_API_KEY:
        logger.info("Using heuristic call analyzer (MOCK_AI=%s)", settings.MOCK_AI)
        return HeuristicCallAnalyzer()
    return OpenAICallAnalyzer(
        api_key=settings.OPENAI_API_KEY,
        model=settings.OPENAI_MODEL,
        base_url=settings.OPENAI_BASE_URL,
        timeout=settings.AI_REQUEST_TIMEOUT_SECONDS,
        client=client,
    )
