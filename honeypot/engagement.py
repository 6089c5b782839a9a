"""
ENGAGEMENT CONTROLLER - One engagement step per inbound message

PIPELINE ORDER (all under the session's lock):
Validate → Seed history (first turn) → Extract + merge intelligence →
Detect → Stopping policy → Reply (engaged only) → Persist → Result

The final-result report is dispatched as a tracked background task the
moment a scam session completes, so the response never waits on it.
"""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, Set

from .agent_controller import AgentController, build_agent_notes
from .callback_client import ReportClient
from .errors import InternalError, PersistenceError, ValidationError
from .evidence_store import EvidenceStore
from .intelligence_extractor import IntelligenceExtractor, intelligence_extractor
from .models import (
    EngagementMetrics,
    EngagementResult,
    FinalResultPayload,
    Message,
    ScamType,
    Sender,
)
from .scam_detector import DetectionMethod, DetectionResult, ScamDetector
from .session_store import Session, SessionStore, StoppingPolicy

logger = logging.getLogger(__name__)

MONITORING_NOTES = "No scam detected. Monitoring only."
DISENGAGED_NOTES = "Intelligence target reached or conversation complete. Agent disengaged."

# Score above which a message counts as a scam when the detector itself faults
FALLBACK_SCORE_THRESHOLD = 50
FALLBACK_CONFIDENCE = 0.5


def build_report_payload(session: Session) -> FinalResultPayload:
    return FinalResultPayload(
        sessionId=session.session_id,
        scamDetected=session.scam_detected,
        totalMessagesExchanged=session.message_count,
        extractedIntelligence=session.extracted_intelligence.to_model(),
        agentNotes=build_agent_notes(session),
    )


class EngagementController:

    def __init__(
        self,
        store: SessionStore,
        detector: ScamDetector,
        orchestrator: AgentController,
        policy: Optional[StoppingPolicy] = None,
        evidence_store: Optional[EvidenceStore] = None,
        report_client: Optional[ReportClient] = None,
        extractor: IntelligenceExtractor = intelligence_extractor,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        enable_pacing: bool = True
    ):
        self.store = store
        self.detector = detector
        self.orchestrator = orchestrator
        self.policy = policy or StoppingPolicy()
        self.evidence_store = evidence_store
        self.report_client = report_client
        self.extractor = extractor
        self.sleep = sleep
        self.enable_pacing = enable_pacing
        self._bg: Set[asyncio.Task] = set()

    async def handle(
        self,
        session_id: str,
        message: Optional[Message],
        prior_history: Sequence[Message] = ()
    ) -> EngagementResult:
        """
        Process one inbound message for a session.

        Raises ValidationError for a blank session id or message text, and
        InternalError for anything unexpected. Provider, classifier,
        persistence and report failures never reach the caller.
        """
        if not session_id or not session_id.strip():
            raise ValidationError("Invalid request: 'sessionId' field is required")
        if message is None or not message.text or not message.text.strip():
            raise ValidationError("Invalid request: 'message' field with 'text' is required")

        try:
            async with self.store.lock(session_id):
                return await self._step(session_id, message, prior_history)
        except Exception as e:
            logger.exception(f"[{session_id}] Engagement step failed: {e}")
            raise InternalError() from e

    async def _step(
        self,
        session_id: str,
        message: Message,
        prior_history: Sequence[Message]
    ) -> EngagementResult:
        session = self.store.get_or_create(session_id)

        if not session.conversation_history and prior_history:
            session.seed_history(prior_history)
            for earlier in prior_history:
                if earlier.sender == Sender.SCAMMER:
                    session.merge_intelligence(self.extractor.extract(earlier.text))

        # Evidence counts even when the message itself is not flagged
        session.merge_intelligence(self.extractor.extract(message.text))

        if session.is_complete:
            session.append_message(message)
            logger.info(f"[{session_id}] Session already complete, message logged only")
            await self._persist(session)
            return self._build_result(session, None)

        detection = await self._detect(message.text, session.conversation_history)
        if detection.is_scam:
            session.record_detection(detection.scam_type)

        reason = self.policy.evaluate(session)
        completed_now = False
        if reason:
            completed_now = session.mark_complete()
            logger.info(f"[{session_id}] Engagement complete: {reason}")

        reply_text = None
        if session.scam_detected and not session.is_complete:
            reply = await self.orchestrator.generate_response(session, message)
            session.append_message(message)
            session.append_message(Message(
                sender=Sender.AGENT,
                text=reply.text,
                timestamp=int(time.time() * 1000),
            ))
            reply_text = reply.text
            if self.enable_pacing:
                delay = self.orchestrator.typing_delay(reply)
                logger.debug(f"[{session_id}] Typing delay {delay:.2f}s")
                await self.sleep(delay)
        else:
            session.append_message(message)

        if completed_now and session.scam_detected:
            self._dispatch_report(session)

        await self._persist(session)
        return self._build_result(session, reply_text)

    async def _detect(self, text: str, history: Sequence[Message]) -> DetectionResult:
        try:
            return await self.detector.analyze(text, history)
        except Exception as e:
            logger.error(f"Detector failed, falling back to raw score: {e}")

        scored = self.extractor.get_scam_score(text)
        return DetectionResult(
            is_scam=scored.score > FALLBACK_SCORE_THRESHOLD,
            confidence=FALLBACK_CONFIDENCE,
            scam_type=ScamType.OTHER,
            indicators=sorted(scored.intelligence.suspicious_keywords),
            reasoning="Detector unavailable, raw score only",
            method=DetectionMethod.FALLBACK,
        )

    def _dispatch_report(self, session: Session):
        """Fire-and-forget final report. reportSent flips once and stays."""
        if self.report_client is None:
            logger.warning(f"[{session.session_id}] No report endpoint configured, skipping report")
            return
        if not session.mark_report_sent():
            return

        payload = build_report_payload(session)
        task = asyncio.create_task(self.report_client.report(session.session_id, payload))
        self._bg.add(task)
        task.add_done_callback(self._bg.discard)
        logger.info(f"🚀 Report dispatched (non-blocking) for session {session.session_id}")

    async def _persist(self, session: Session):
        if self.evidence_store is None:
            return
        try:
            await self.evidence_store.persist(session)
        except PersistenceError as e:
            logger.error(f"[{session.session_id}] {e}")

    def _build_result(self, session: Session, reply: Optional[str]) -> EngagementResult:
        if not session.scam_detected:
            notes = MONITORING_NOTES
        elif session.is_complete:
            notes = f"{DISENGAGED_NOTES} {build_agent_notes(session)}"
        else:
            notes = build_agent_notes(session)

        return EngagementResult(
            scamDetected=session.scam_detected,
            reply=reply,
            engagementMetrics=EngagementMetrics(
                durationSeconds=session.engagement_duration(),
                totalMessages=session.message_count,
            ),
            extractedIntelligence=session.extracted_intelligence.to_model(),
            notes=notes,
        )

    async def wait_for_background(self):
        """Await outstanding report tasks (shutdown and tests)"""
        if self._bg:
            await asyncio.gather(*list(self._bg), return_exceptions=True)
