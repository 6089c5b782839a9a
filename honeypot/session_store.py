"""
SESSION STORE - Per-conversation state machine and autonomous stopping policy

State Flow:
    FRESH -> ENGAGED -> COMPLETE (terminal)

- FRESH -> ENGAGED: first positive detection. Binds scamDetected and scamType, once.
- ENGAGED -> COMPLETE: the first piece of actionable intelligence anywhere in the
  session, or the message-count ceiling. No reply is ever generated afterwards.

isComplete and reportSent only ever go from False to True.

Mutation of one session is serialized by a per-session asyncio.Lock held by
the store. Different sessions never share a lock.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .intelligence_extractor import IntelligenceRecord
from .models import Message, ScamType
from .personas import Persona

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    FRESH = "FRESH"
    ENGAGED = "ENGAGED"
    COMPLETE = "COMPLETE"


@dataclass
class Session:
    session_id: str
    scam_detected: bool = False
    scam_type: Optional[ScamType] = None
    persona: Optional[Persona] = None
    conversation_history: List[Message] = field(default_factory=list)
    extracted_intelligence: IntelligenceRecord = field(default_factory=IntelligenceRecord)
    start_time: float = field(default_factory=time.time)
    message_count: int = 0
    is_complete: bool = False
    report_sent: bool = False

    @property
    def phase(self) -> SessionPhase:
        if self.is_complete:
            return SessionPhase.COMPLETE
        if self.scam_detected:
            return SessionPhase.ENGAGED
        return SessionPhase.FRESH

    def append_message(self, message: Message):
        self.conversation_history.append(message)
        self.message_count += 1

    def seed_history(self, messages: Iterable[Message]):
        """Adopt caller-supplied history on a session's first turn only"""
        if self.conversation_history:
            return
        for message in messages:
            self.append_message(message)

    def merge_intelligence(self, record: IntelligenceRecord):
        self.extracted_intelligence = self.extracted_intelligence.merge(record)

    def record_detection(self, scam_type: ScamType) -> bool:
        """
        FRESH -> ENGAGED. The only place scamDetected/scamType are written.
        Returns False (and changes nothing) if a type is already bound.
        """
        if self.scam_detected:
            return False
        self.scam_detected = True
        self.scam_type = ScamType.OTHER if scam_type == ScamType.NONE else scam_type
        logger.info(f"[{self.session_id}] Stage: FRESH -> ENGAGED ({self.scam_type.value})")
        return True

    def bind_persona(self, persona: Persona) -> Persona:
        """Bind once; an already bound persona always wins"""
        if self.persona is None:
            self.persona = persona
            logger.info(f"[{self.session_id}] Persona bound: {persona.name}")
        return self.persona

    def mark_complete(self) -> bool:
        if self.is_complete:
            return False
        previous = self.phase
        self.is_complete = True
        logger.info(f"[{self.session_id}] Stage: {previous.value} -> COMPLETE")
        return True

    def mark_report_sent(self) -> bool:
        if self.report_sent:
            return False
        self.report_sent = True
        return True

    def engagement_duration(self) -> int:
        return int(time.time() - self.start_time)

    def to_dict(self) -> Dict:
        """Read-only debug snapshot"""
        return {
            "sessionId": self.session_id,
            "state": self.phase.value,
            "scamDetected": self.scam_detected,
            "scamType": self.scam_type.value if self.scam_type else None,
            "persona": self.persona.name if self.persona else None,
            "messageCount": self.message_count,
            "engagementDuration": self.engagement_duration(),
            "extractedIntelligence": self.extracted_intelligence.to_model().model_dump(),
            "isComplete": self.is_complete,
            "reportSent": self.report_sent,
            "conversationHistory": [m.model_dump(mode="json") for m in self.conversation_history],
        }


class StoppingPolicy:
    """
    Decides when engagement must cease.

    An engaged session stops the instant ANY actionable intel (bank account,
    UPI id, phone number, suspicious link) is in its cumulative record.
    Any session stops at the message ceiling.
    """

    def __init__(self, max_messages: int = 20):
        self.max_messages = max_messages

    def evaluate(self, session: Session) -> Optional[str]:
        """Reason to complete, or None to keep going"""
        if session.is_complete:
            return None
        if session.scam_detected and session.extracted_intelligence.has_actionable_intel():
            return "Actionable intelligence extracted"
        if session.message_count >= self.max_messages:
            return "Max messages reached"
        return None


class SessionStore(ABC):
    """Owner of all sessions. Backing is pluggable; mutate only under lock(session_id)."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    def get_or_create(self, session_id: str) -> Session:
        ...

    @abstractmethod
    def lock(self, session_id: str) -> asyncio.Lock:
        ...

    @abstractmethod
    def all_sessions(self) -> List[Session]:
        ...


class InMemorySessionStore(SessionStore):
    """Dict-backed store with one lock per session id"""

    def __init__(self):
        self.sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        if session_id not in self.sessions:
            self.sessions[session_id] = Session(session_id=session_id)
            logger.info(f"New session created: {session_id}")
        return self.sessions[session_id]

    def lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def all_sessions(self) -> List[Session]:
        return list(self.sessions.values())
