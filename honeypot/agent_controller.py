"""
AGENT CONTROLLER - Persona-bound reply generation with provider fallback

CHAIN:
1. Primary provider (Gemini)
2. Secondary provider (Groq)
3. Template bank keyed by scam type (always succeeds)

Each provider call has its own timeout. Any provider failure falls through
to the next tier, so a non-empty reply is always produced.

POST-PROCESSING (generated text only):
- Strip quotes and speaker prefixes
- Cut overlong output to two sentences
- Discard output that breaks character (template instead)
- Humanize (abbreviations, casing, punctuation, rare typos)
"""

import re
import random
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import ProviderError
from .humanizer import Humanizer, calculate_typing_delay
from .models import Message, ScamType
from .personas import Persona, build_system_directive, select_persona
from .providers import TextProvider, complete_with_timeout

logger = logging.getLogger(__name__)


# Backup replies for when no provider is usable - written to look like real texts
FALLBACK_RESPONSES: Dict[ScamType, List[str]] = {
    ScamType.BANK_FRAUD: [
        "Wait what? blocked? I just used it yesterday 😟 what happened?",
        "Oh god… how do I stop it from getting blocked?",
        "Can you tell me what I need to do exactly?",
        "is this for real?? i rely on that account for everything",
        "shud i go to the branch? or can u help me here",
        "KYC? I thought it was already done last year",
        "Do I need to go to bank or is this online?",
        "OTP? I just got some message… where do I enter it?",
        "ok i see a code.. shud i share it with u?",
    ],
    ScamType.UPI_FRAUD: [
        "Why payment? I thought verification was free?",
        "which app shud i use? GPay or PhonePe?",
        "Can you send UPI again properly? it failed last time",
        "im confused.. do i pay u or u pay me?",
        "ok wait let me check balance first..",
        "whats the steps? guide me pls",
    ],
    ScamType.PHISHING: [
        "What is this link for? looks kinda weird",
        "It's asking for details… is this safe?",
        "Should I open it now? im using mobile data",
        "it says warning.. are u sure its correct link?",
        "ok clicking it.. wait its loading slow",
        "do i need to login there?",
    ],
    ScamType.LOTTERY: [
        "OMG really?? ive never won anythng before! How do i claim it",
        "This is amazng!! wat do i need to do?",
        "Wow is this real?? tell me more pls!",
        "i cant believe it!! whats the next step",
        "omg omg this is so exciting!! how do i get my prize",
    ],
    ScamType.FAKE_OFFER: [
        "sounds gud.. is there any hidden charge?",
        "can u send the product details first?",
        "wat is the last price? i can pay half now",
        "is this offer still valid today?",
        "how do i know its genuine? any reviews?",
    ],
    ScamType.OTHER: [
        "im a bit busy right now but tell me more",
        "i dont understand.. can u explain simply",
        "who is this exactly?",
        "is this urgent? shud i call u?",
        "ok.. what next?",
    ],
}


class CharacterGuard:
    """
    Catches provider output that gives the game away.
    Providers are never trusted blindly.
    """

    BROKEN_CHARACTER_PHRASES = [
        # Disclosing automation
        "as an ai", "i am an ai", "i'm an ai", "language model", "i'm a bot", "i am a bot",
        "chatbot", "virtual assistant", "ai assistant", "automated system",
        # Refusals / assistant-speak
        "i cannot", "i can't assist", "i'm not able", "i am not able", "i'm sorry, but",
        "how can i help you", "how can i assist",
        # Naming the trap
        "this is a scam", "honeypot", "scam detection", "fraud detection", "scam-baiting",
    ]

    SPEAKER_PREFIX = re.compile(r"^(?:agent|bot|response|reply|me)\s*:", re.IGNORECASE)

    @classmethod
    def violations(cls, text: str) -> List[str]:
        lowered = text.lower()
        return [p for p in cls.BROKEN_CHARACTER_PHRASES if p in lowered]

    @classmethod
    def breaks_character(cls, text: str) -> bool:
        return bool(cls.violations(text))

    @classmethod
    def clean_output(cls, text: str) -> str:
        """Strip wrapping quotes and speaker prefixes"""
        clean = (text or "").strip()
        if len(clean) >= 2 and clean[0] == clean[-1] and clean[0] in "\"'":
            clean = clean[1:-1].strip()
        clean = cls.SPEAKER_PREFIX.sub("", clean).strip()
        return clean


@dataclass
class AgentReply:
    text: str
    provider: str  # provider name or "template"
    persona: str


class AgentController:
    """
    Response orchestrator.

    - Binds a persona to the session on first use and never changes it
    - Walks the provider chain in order, each call under its own timeout
    - Falls back to the template bank when every provider fails
    """

    MAX_REPLY_CHARS = 200
    MAX_SENTENCES = 2

    def __init__(
        self,
        providers: Sequence[TextProvider] = (),
        rng: Optional[random.Random] = None,
        provider_timeout: float = 8.0,
        humanizer: Optional[Humanizer] = None
    ):
        self.providers = list(providers)
        self.rng = rng or random.Random()
        self.provider_timeout = provider_timeout
        self.humanizer = humanizer or Humanizer(self.rng)

    def bind_persona(self, session) -> Persona:
        if session.persona is not None:
            return session.persona
        return session.bind_persona(select_persona(session.scam_type, self.rng))

    async def generate_response(self, session, inbound: Message) -> AgentReply:
        """Produce an in-character reply. Never raises for provider trouble."""
        persona = self.bind_persona(session)
        scam_type = session.scam_type or ScamType.OTHER
        directive = build_system_directive(persona)

        reply, provider_name = await self._call_providers(
            directive, session.conversation_history, inbound.text
        )

        if reply is None:
            logger.error(f"[{session.session_id}] All AI providers failed. Using static fallback.")
            return AgentReply(self.get_fallback_response(scam_type), "template", persona.name)

        reply = self._enforce_length_limit(reply)

        if CharacterGuard.breaks_character(reply):
            logger.warning(
                f"[{session.session_id}] {provider_name} broke character "
                f"({CharacterGuard.violations(reply)}). Using template."
            )
            return AgentReply(self.get_fallback_response(scam_type), "template", persona.name)

        reply = self.humanizer.humanize(reply)

        logger.info(f"[{session.session_id}] Response generated: provider={provider_name}, length={len(reply)}")
        return AgentReply(reply, provider_name, persona.name)

    async def _call_providers(
        self,
        directive: str,
        history: Sequence[Message],
        latest_text: str
    ) -> Tuple[Optional[str], Optional[str]]:
        """First provider to return usable text wins"""
        for provider in self.providers:
            try:
                raw = await complete_with_timeout(
                    provider, self.provider_timeout, directive, history, latest_text
                )
            except ProviderError as e:
                logger.warning(f"{provider.name} failed, switching to next tier: {e}")
                continue

            cleaned = CharacterGuard.clean_output(raw)
            if cleaned:
                return cleaned, provider.name
            logger.warning(f"{provider.name} returned nothing usable, switching to next tier")
        return None, None

    def get_fallback_response(self, scam_type: Optional[ScamType]) -> str:
        responses = FALLBACK_RESPONSES.get(scam_type) or FALLBACK_RESPONSES[ScamType.OTHER]
        return self.rng.choice(responses)

    def _enforce_length_limit(self, text: str) -> str:
        """
        Overlong replies keep only their first two sentences.
        Splits on sentence-ending punctuation.
        """
        text = text.strip()
        if len(text) <= self.MAX_REPLY_CHARS:
            return text

        sentences = re.split(r"(?<=[.!?।])\s+", text)
        if len(sentences) <= self.MAX_SENTENCES:
            return text

        truncated = " ".join(sentences[:self.MAX_SENTENCES])
        logger.info(f"Truncated response from {len(sentences)} to {self.MAX_SENTENCES} sentences")
        return truncated

    def typing_delay(self, reply: AgentReply) -> float:
        return calculate_typing_delay(reply.text, reply.persona, self.rng)


def build_agent_notes(session) -> str:
    """Short summary of the engagement so far"""
    notes = []

    if session.scam_type:
        notes.append(f"Scam type: {session.scam_type.value}")
    if session.persona:
        notes.append(f"Used {session.persona.name} persona")

    intel = session.extracted_intelligence
    if intel.upi_ids:
        notes.append(f"Got {len(intel.upi_ids)} UPI ID(s)")
    if intel.phone_numbers:
        notes.append(f"Got {len(intel.phone_numbers)} phone(s)")
    if intel.phishing_links:
        notes.append(f"Found {len(intel.phishing_links)} suspicious link(s)")
    if intel.bank_accounts:
        notes.append(f"Found {len(intel.bank_accounts)} bank account(s)")

    notes.append(f"{session.message_count} messages total")
    return ". ".join(notes) + "."
