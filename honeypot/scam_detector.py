"""
SCAM DETECTOR - Two-stage detection: fast patterns, then a semantic classifier

PIPELINE ORDER:
1. Pattern stage (always, synchronous) - composite extractor score
2. Short-circuit when pattern confidence >= 0.7
3. Semantic stage (LLM classifier) for everything else
4. Blend: pattern x 0.3 + semantic x 0.7

If the semantic stage is unreachable or returns garbage, the pattern
result is returned untouched. Detection never fails the request.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

import pydantic
from pydantic import BaseModel, Field, field_validator

from .errors import ClassifierUnavailable, ProviderError
from .intelligence_extractor import IntelligenceExtractor, intelligence_extractor
from .models import Message, ScamType
from .providers import TextProvider, complete_with_timeout

logger = logging.getLogger(__name__)


class DetectionMethod(str, Enum):
    PATTERN = "pattern"
    AI = "ai"
    COMBINED = "combined"
    FALLBACK = "fallback"


@dataclass
class DetectionResult:
    """Per-message verdict. Folded into the session, never stored on its own."""
    is_scam: bool
    confidence: float
    scam_type: ScamType
    indicators: List[str] = field(default_factory=list)
    reasoning: str = ""
    method: DetectionMethod = DetectionMethod.PATTERN

    def to_dict(self) -> dict:
        return {
            "isScam": self.is_scam,
            "confidence": round(self.confidence, 3),
            "scamType": self.scam_type.value,
            "indicators": list(self.indicators),
            "reasoning": self.reasoning,
            "method": self.method.value,
        }


SCAM_DETECTION_PROMPT = """You are a scam detection AI. Analyze the following message and conversation context.

Your task is to:
1. Determine if this message shows signs of fraud/scam intent
2. Identify the type of scam (UPI fraud, bank fraud, phishing, lottery scam, etc.)
3. Rate your confidence from 0.0 to 1.0

Common scam indicators:
- Urgency ("act now", "limited time", "immediately")
- Money requests or payment demands
- Suspicious links or shortened URLs
- Claims of winning prizes/lottery
- Requests for OTP, PIN, or passwords
- Threats about account blocking
- Too-good-to-be-true offers
- Unknown senders asking for personal info

Respond in this exact JSON format:
{
  "isScam": true/false,
  "confidence": 0.0-1.0,
  "scamType": "upi_fraud|bank_fraud|phishing|lottery|fake_offer|other|none",
  "indicators": ["list", "of", "detected", "indicators"],
  "reasoning": "Brief explanation of your analysis"
}"""


class ClassifierVerdict(BaseModel):
    """Structured output expected back from the semantic classifier"""
    isScam: bool
    confidence: float = 0.5
    scamType: ScamType = ScamType.OTHER
    indicators: List[str] = Field(default_factory=list)
    reasoning: str = "AI analysis"

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        if value is None:
            return 0.5
        if not isinstance(value, (int, float, str)):
            raise ValueError(f"confidence must be a number, got {type(value).__name__}")
        return min(1.0, max(0.0, float(value)))

    @field_validator("scamType", mode="before")
    @classmethod
    def _known_scam_type(cls, value):
        if isinstance(value, str) and value.strip().lower() in ScamType._value2member_map_:
            return value.strip().lower()
        return ScamType.OTHER

    @field_validator("indicators", mode="before")
    @classmethod
    def _indicator_list(cls, value):
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"indicators must be a list, got {type(value).__name__}")
        return [str(v) for v in value]


def parse_verdict(raw: str) -> ClassifierVerdict:
    """Parse classifier output, tolerating markdown code fences"""
    text = (raw or "").strip()
    if "```" in text:
        text = text.split("```")[1]
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()
    if not text.startswith("{") and "{" in text and "}" in text:
        text = text[text.index("{"):text.rindex("}") + 1]

    try:
        return ClassifierVerdict.model_validate(json.loads(text))
    except (ValueError, TypeError, pydantic.ValidationError) as e:
        raise ClassifierUnavailable(f"unparseable verdict: {e}") from e


class SemanticClassifier:
    """
    LLM-backed classifier. Sees the full prior conversation plus the message.

    Raises ClassifierUnavailable when there is no provider, the call fails
    or times out, or the verdict can't be parsed.
    """

    def __init__(self, provider: Optional[TextProvider], timeout: float = 8.0):
        self.provider = provider
        self.timeout = timeout

    async def classify(self, text: str, history: Sequence[Message]) -> DetectionResult:
        if self.provider is None:
            raise ClassifierUnavailable("no classifier provider configured")

        prompt = f'Current message to analyze:\n"{text}"\n\nRespond with JSON only:'
        try:
            raw = await complete_with_timeout(
                self.provider, self.timeout, SCAM_DETECTION_PROMPT, history, prompt
            )
        except ProviderError as e:
            raise ClassifierUnavailable(str(e)) from e

        verdict = parse_verdict(raw)
        return DetectionResult(
            is_scam=verdict.isScam,
            confidence=verdict.confidence,
            scam_type=verdict.scamType,
            indicators=verdict.indicators,
            reasoning=verdict.reasoning,
            method=DetectionMethod.AI,
        )


class ScamDetector:
    """
    Dual-stage scam detector.

    Pattern stage always runs first. The semantic stage is only consulted
    when the pattern stage is not already confident.
    """

    SCAM_THRESHOLD = 0.1
    SHORT_CIRCUIT_CONFIDENCE = 0.7
    MIN_KEYWORD_CATEGORIES = 2
    OTHER_SCORE_THRESHOLD = 30
    PATTERN_WEIGHT = 0.3
    SEMANTIC_WEIGHT = 0.7

    LOTTERY_MARKERS = frozenset({"lottery", "won", "winner", "prize", "jackpot"})
    BANK_FRAUD_MARKERS = frozenset({"kyc", "blocked", "suspended", "verify", "account"})

    def __init__(
        self,
        classifier: Optional[SemanticClassifier] = None,
        extractor: IntelligenceExtractor = intelligence_extractor
    ):
        self.classifier = classifier or SemanticClassifier(None)
        self.extractor = extractor

    def pattern_detection(self, text: str) -> DetectionResult:
        """Stage 1: quick pattern check, no AI needed"""
        scored = self.extractor.get_scam_score(text)
        intel = scored.intelligence
        keywords = {kw.lower() for kw in intel.suspicious_keywords}

        # Type precedence: URL > UPI > prize keywords > account keywords > score
        if intel.phishing_links:
            scam_type = ScamType.PHISHING
        elif intel.upi_ids:
            scam_type = ScamType.UPI_FRAUD
        elif keywords & self.LOTTERY_MARKERS:
            scam_type = ScamType.LOTTERY
        elif keywords & self.BANK_FRAUD_MARKERS:
            scam_type = ScamType.BANK_FRAUD
        elif scored.score > self.OTHER_SCORE_THRESHOLD:
            scam_type = ScamType.OTHER
        else:
            scam_type = ScamType.NONE

        confidence = min(scored.score / 100, 1.0)
        is_scam = (
            confidence > self.SCAM_THRESHOLD or
            len(scored.categories) >= self.MIN_KEYWORD_CATEGORIES
        )

        found = ", ".join(scored.breakdown) if scored.breakdown else "nothing"
        return DetectionResult(
            is_scam=is_scam,
            confidence=confidence,
            scam_type=scam_type,
            indicators=sorted(intel.suspicious_keywords),
            reasoning=f"Pattern matching found: {found}",
            method=DetectionMethod.PATTERN,
        )

    async def analyze(self, text: str, history: Sequence[Message] = ()) -> DetectionResult:
        """Main detection entry point - pattern first, semantic for uncertain cases"""
        pattern_result = self.pattern_detection(text)

        if pattern_result.confidence >= self.SHORT_CIRCUIT_CONFIDENCE:
            logger.info(
                f"Scam detected via pattern: confidence={pattern_result.confidence:.2f}, "
                f"type={pattern_result.scam_type.value}"
            )
            return pattern_result

        try:
            ai_result = await self.classifier.classify(text, history)
        except ClassifierUnavailable as e:
            logger.warning(f"Semantic stage unavailable, using pattern result: {e}")
            return pattern_result

        combined_confidence = (
            pattern_result.confidence * self.PATTERN_WEIGHT +
            ai_result.confidence * self.SEMANTIC_WEIGHT
        )

        indicators: List[str] = []
        for indicator in pattern_result.indicators + ai_result.indicators:
            if indicator not in indicators:
                indicators.append(indicator)

        result = DetectionResult(
            is_scam=(
                combined_confidence > self.SCAM_THRESHOLD or
                ai_result.is_scam or
                pattern_result.is_scam
            ),
            confidence=combined_confidence,
            scam_type=ai_result.scam_type if ai_result.is_scam else pattern_result.scam_type,
            indicators=indicators,
            reasoning=ai_result.reasoning,
            method=DetectionMethod.COMBINED,
        )

        logger.info(
            f"Scam analysis done: isScam={result.is_scam}, "
            f"confidence={result.confidence:.2f}, type={result.scam_type.value}"
        )
        return result

    def is_definitely_safe(self, text: str) -> bool:
        """Quick check: pattern confidence below the scam threshold"""
        return self.pattern_detection(text).confidence < self.SCAM_THRESHOLD
