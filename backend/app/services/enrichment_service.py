"""
Enrichment Service - AI classification and reply drafting

Design:
1. AsyncOpenAI client pointed at OpenRouter (OpenAI-compatible)
2. classify -> draft_reply, one item at a time; the batch scheduler bounds concurrency
3. Email uses a single combined triage call (review? + product + classification + reply)
4. No inline retries; every call is bounded by AI_TIMEOUT_SECONDS
"""
import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.exceptions import ConfigurationError
from app.models.review import Sentiment, Severity
from app.services.categories import DEFAULT_CATEGORY, normalize_category

logger = logging.getLogger(__name__)

_async_client: Optional[AsyncOpenAI] = None


def get_async_client() -> AsyncOpenAI:
    """Get or create the shared async OpenRouter client"""
    global _async_client
    if _async_client is None:
        if not settings.OPENROUTER_API_KEY:
            raise ConfigurationError("OPENROUTER_API_KEY is not configured", provider="AI")
        _async_client = AsyncOpenAI(
            api_key=settings.OPENROUTER_API_KEY,
            base_url=settings.OPENROUTER_API_BASE,
            timeout=settings.AI_TIMEOUT_SECONDS,
            max_retries=0,
            default_headers={"X-Title": settings.APP_NAME},
        )
    return _async_client


# ==============================================================================
# 💬 Prompts
# ==============================================================================

_CATEGORY_GUIDE = """- "Product Quality" - issues with build, materials, durability, craftsmanship
- "Product Performance" - doesn't work as expected, functionality issues
- "Shipping & Delivery" - late delivery, damaged in transit, wrong item sent
- "Packaging" - poor packaging, damaged box, missing components
- "Customer Service" - support experience, response time, helpfulness
- "Value & Pricing" - too expensive, not worth the price, pricing concerns
- "Sizing & Fit" - wrong size, doesn't fit as described
- "Color & Appearance" - color mismatch, looks different than photos
- "Setup & Instructions" - difficult to assemble, poor instructions
- "Compatibility" - doesn't work with other products/systems
- "Safety Concern" - potential hazard, safety issue
- "Praise & Satisfaction" - for positive reviews expressing general satisfaction"""

CLASSIFY_SYSTEM_PROMPT = f"""You are an AI assistant analyzing customer reviews and complaints for an e-commerce business.
Provide a comprehensive, detailed analysis of each review.

Sentiment options: positive, negative, neutral
Severity options: low (minor issue or praise), medium (moderate concern), high (serious problem), critical (urgent issue requiring immediate attention)

Category MUST be one of these standardized values (choose the closest match):
{_CATEGORY_GUIDE}

Provide detailed analysis with:
- sentiment: overall sentiment (positive/negative/neutral)
- severity: severity level (low/medium/high/critical)
- category: MUST be one of the standardized categories listed above
- reasoning: brief explanation of the analysis
- specificIssues: array of specific problems mentioned
- positiveAspects: array of positive things mentioned, if any
- keyPhrases: 3-5 important quotes from the review (actual customer words)
- customerEmotion: emotional tone (e.g., "frustrated", "disappointed", "satisfied", "delighted")
- urgencyLevel: how quickly this needs attention
- recommendedActions: 3-4 specific, actionable steps tailored to THIS review

Respond ONLY with valid JSON format."""

CLASSIFY_USER_PROMPT = """Analyze this review from {author} on {marketplace}:

"{text}"

Provide your detailed analysis in JSON format with all fields: sentiment, severity, category, reasoning, specificIssues, positiveAspects, keyPhrases, customerEmotion, urgencyLevel, recommendedActions."""

REPLY_SYSTEM_PROMPT = """You are a professional customer service representative writing responses to customer reviews and complaints.
Your tone should be:
- Empathetic and understanding
- Professional and courteous
- Solution-oriented
- Personalized to the customer and their specific concern

For positive reviews: Express gratitude and encourage continued engagement
For negative reviews: Acknowledge the issue, apologize sincerely, and offer a concrete solution or next step
For neutral reviews: Thank them for feedback and address any concerns mentioned"""

REPLY_USER_PROMPT = """Write a professional response to this {sentiment} review (severity: {severity}) from {author} on {marketplace}:

"{text}"

Write a response that addresses their concern directly and professionally. Keep it concise (2-4 sentences)."""

TRIAGE_SYSTEM_PROMPT = f"""You are an AI assistant that triages incoming customer emails for a review management system.

1. Decide whether the email is a customer review, complaint, or product feedback.
   Reviews and complaints mention product quality, shipping or service experiences, express
   satisfaction or dissatisfaction with a purchase, or request refunds, replacements or support.
   NOT reviews: newsletters, marketing, order confirmations, shipping notifications,
   password resets, spam.
2. If it is a review, identify the product: productName (string or null) and productId
   (lowercase, hyphenated, max 30 characters, e.g. "kitchen-mixer-pro"; use a general
   category such as "shipping-issue" or "order-inquiry" when no product is named).
3. If it is a review, classify it: sentiment (positive/negative/neutral), severity
   (low/medium/high/critical), category (one of the standardized values below), reasoning.
4. If it is a review, draft a professional, empathetic reply of 2-4 sentences.

Standardized categories:
{_CATEGORY_GUIDE}

Respond ONLY with valid JSON with the fields: isReviewOrComplaint (boolean), confidence (0-100),
reasoning, productName, productId, sentiment, severity, category, reply."""

TRIAGE_USER_PROMPT = """Triage this email from {author}:

Subject: "{subject}"
Body: "{body}"
"""


# ==============================================================================
# Parsing helpers
# ==============================================================================

def parse_json_safely(text: Optional[str]) -> Optional[Any]:
    """
    Parse JSON from LLM output, handling markdown fences and surrounding prose.
    """
    if not text:
        return None

    # 1. Direct
    try:
        return json.loads(text)
    except ValueError:
        pass

    # 2. ```json ... ``` block
    match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    if match:
        try:
            return json.loads(match.group(1))
        except ValueError:
            pass

    # 3. First { to last }
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(text[start:end + 1])
        except ValueError:
            pass

    return None


def slugify_product_id(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    slug = re.sub(r"[^a-z0-9-]", "-", str(value).lower())[:30]
    return slug or None


def _coerce_sentiment(value: Any) -> str:
    try:
        return Sentiment(str(value).strip().lower()).value
    except ValueError:
        return Sentiment.NEUTRAL.value


def _coerce_severity(value: Any) -> str:
    try:
        return Severity(str(value).strip().lower()).value
    except ValueError:
        return Severity.MEDIUM.value


def _is_true(value: Any) -> bool:
    # Models sometimes quote booleans; only an explicit true counts
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def _as_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    if value in (None, ""):
        return []
    return [str(value)]


# ==============================================================================
# Result models
# ==============================================================================

class Classification(BaseModel):
    sentiment: str = Sentiment.NEUTRAL.value
    category: str = DEFAULT_CATEGORY
    severity: str = Severity.MEDIUM.value
    reasoning: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Classification":
        """Build from model JSON; enum fields fall back, category is normalized."""
        raw_category = payload.get("category")
        details = {
            "specificIssues": _as_list(payload.get("specificIssues")),
            "positiveAspects": _as_list(payload.get("positiveAspects")),
            "keyPhrases": _as_list(payload.get("keyPhrases")),
            "customerEmotion": payload.get("customerEmotion") or "neutral",
            "urgencyLevel": payload.get("urgencyLevel") or "moderate",
            "recommendedActions": _as_list(payload.get("recommendedActions")),
        }
        if raw_category and normalize_category(raw_category) != raw_category:
            details["rawCategory"] = raw_category
        return cls(
            sentiment=_coerce_sentiment(payload.get("sentiment")),
            category=normalize_category(raw_category),
            severity=_coerce_severity(payload.get("severity")),
            reasoning=str(payload.get("reasoning") or ""),
            details=details,
        )

    def analysis_details(self) -> Dict[str, Any]:
        return {"reasoning": self.reasoning, **self.details}


class EmailTriage(BaseModel):
    is_review: bool = False
    confidence: int = 0
    reasoning: str = ""
    product_name: Optional[str] = None
    product_id: Optional[str] = None
    classification: Optional[Classification] = None
    reply: Optional[str] = None


class EnrichmentResult(BaseModel):
    """Classification is required; the reply may be missing (reply_error says why)."""
    classification: Classification
    reply: Optional[str] = None
    reply_error: Optional[str] = None

    def analysis_details(self) -> Dict[str, Any]:
        details = self.classification.analysis_details()
        if self.reply_error:
            details["replyError"] = self.reply_error
        return details


class EnrichmentParseError(ValueError):
    """Model output could not be parsed as JSON."""


# ==============================================================================
# 🤖 Service
# ==============================================================================

class EnrichmentService:
    """
    Wraps the AI model behind classify / draft_reply / triage_email.

    Every method raises on failure; the caller decides whether that fails
    the item.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self.model = model or settings.AI_MODEL
        self.timeout = timeout or settings.AI_TIMEOUT_SECONDS

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = get_async_client()
        return self._client

    async def _complete(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        response = await asyncio.wait_for(
            self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            ),
            timeout=self.timeout,
        )
        return (response.choices[0].message.content or "").strip()

    async def _complete_json(self, system: str, user: str, temperature: float, max_tokens: int) -> Dict[str, Any]:
        content = await self._complete(system, user, temperature, max_tokens)
        parsed = parse_json_safely(content)
        if not isinstance(parsed, dict):
            raise EnrichmentParseError(f"No JSON object in model response: {content[:120]!r}")
        return parsed

    async def classify(self, text: str, author: str, marketplace: str) -> Classification:
        payload = await self._complete_json(
            CLASSIFY_SYSTEM_PROMPT,
            CLASSIFY_USER_PROMPT.format(author=author or "Customer", marketplace=marketplace, text=text),
            temperature=0.3,
            max_tokens=500,
        )
        return Classification.from_payload(payload)

    async def draft_reply(
        self,
        text: str,
        author: str,
        marketplace: str,
        sentiment: str,
        severity: str,
    ) -> str:
        reply = await self._complete(
            REPLY_SYSTEM_PROMPT,
            REPLY_USER_PROMPT.format(
                sentiment=sentiment,
                severity=severity,
                author=author or "Customer",
                marketplace=marketplace,
                text=text,
            ),
            temperature=0.7,
            max_tokens=300,
        )
        if not reply:
            raise EnrichmentParseError("Empty reply from model")
        return reply

    async def enrich(self, text: str, author: str, marketplace: str) -> EnrichmentResult:
        """
        classify, then draft a reply using the classification.

        A failed classification raises. A failed reply is recorded on the
        result instead, so the classification already paid for is kept.
        """
        classification = await self.classify(text, author, marketplace)
        try:
            reply = await self.draft_reply(
                text, author, marketplace, classification.sentiment, classification.severity
            )
        except Exception as e:
            logger.warning(f"[AI] ⚠️ Reply drafting failed, keeping classification: {e}")
            return EnrichmentResult(classification=classification, reply_error=str(e) or type(e).__name__)
        return EnrichmentResult(classification=classification, reply=reply)

    async def triage_email(self, subject: str, body: str, author: str) -> EmailTriage:
        """Single round trip: is it a review, which product, classification and reply."""
        payload = await self._complete_json(
            TRIAGE_SYSTEM_PROMPT,
            TRIAGE_USER_PROMPT.format(author=author or "Customer", subject=subject or "", body=body[:1000]),
            temperature=0.3,
            max_tokens=700,
        )
        is_review = _is_true(payload.get("isReviewOrComplaint"))
        try:
            confidence = int(payload.get("confidence") or 0)
        except (TypeError, ValueError):
            confidence = 0

        triage = EmailTriage(
            is_review=is_review,
            confidence=confidence,
            reasoning=str(payload.get("reasoning") or ""),
        )
        if not is_review:
            return triage

        triage.product_name = payload.get("productName") or None
        triage.product_id = slugify_product_id(payload.get("productId"))
        triage.classification = Classification.from_payload(payload)
        reply = payload.get("reply")
        triage.reply = reply.strip() if isinstance(reply, str) and reply.strip() else None
        return triage
