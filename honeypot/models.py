from enum import Enum
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Sender(str, Enum):
    SCAMMER = "scammer"
    AGENT = "agent"


class ScamType(str, Enum):
    UPI_FRAUD = "upi_fraud"
    BANK_FRAUD = "bank_fraud"
    PHISHING = "phishing"
    LOTTERY = "lottery"
    FAKE_OFFER = "fake_offer"
    OTHER = "other"
    NONE = "none"


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: Sender  # scammer or agent ("user" accepted for the honeypot side)
    text: str  # Message content
    timestamp: Union[int, str, None] = None  # Epoch ms or ISO string

    @field_validator("sender", mode="before")
    @classmethod
    def _normalize_sender(cls, value):
        if isinstance(value, str) and value.strip().lower() == "user":
            return Sender.AGENT
        if isinstance(value, str):
            return value.strip().lower()
        return value


class Metadata(BaseModel):
    channel: Optional[str] = None  # SMS / WhatsApp / Email / Chat
    language: Optional[str] = None  # Language used
    locale: Optional[str] = None  # Country or region


class IncomingRequest(BaseModel):
    sessionId: str = ""  # Unique session identifier
    message: Optional[Message] = None  # The latest incoming message (Required)
    conversationHistory: List[Message] = Field(default_factory=list)  # Previous messages
    metadata: Optional[Metadata] = None  # Channel, language, locale info (Optional)


class ExtractedIntelligence(BaseModel):
    bankAccounts: List[str] = Field(default_factory=list)
    upiIds: List[str] = Field(default_factory=list)
    phishingLinks: List[str] = Field(default_factory=list)
    phoneNumbers: List[str] = Field(default_factory=list)
    suspiciousKeywords: List[str] = Field(default_factory=list)


class EngagementMetrics(BaseModel):
    durationSeconds: int = 0
    totalMessages: int = 0


class EngagementResult(BaseModel):
    status: str = "success"
    scamDetected: bool = False
    reply: Optional[str] = None  # None means: send no agent message
    engagementMetrics: EngagementMetrics = Field(default_factory=EngagementMetrics)
    extractedIntelligence: ExtractedIntelligence = Field(default_factory=ExtractedIntelligence)
    notes: str = ""


class FinalResultPayload(BaseModel):
    sessionId: str
    scamDetected: bool
    totalMessagesExchanged: int
    extractedIntelligence: ExtractedIntelligence
    agentNotes: str
