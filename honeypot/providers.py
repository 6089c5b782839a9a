"""
TEXT-GENERATION PROVIDERS

Every provider implements one call:
    complete(system_directive, history, latest_text) -> str

Any failure (auth, network, empty or malformed output) surfaces as ProviderError.
Clients are built once at startup and passed in. Nothing here is module state.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Tuple

import google.generativeai as genai
from groq import AsyncGroq

from .errors import ProviderError
from .models import Message, Sender

logger = logging.getLogger(__name__)


class TextProvider(ABC):
    """Interchangeable text-generation backend"""

    name: str = "provider"

    @abstractmethod
    async def complete(
        self,
        system_directive: str,
        history: Sequence[Message],
        latest_text: str
    ) -> str:
        ...


async def complete_with_timeout(
    provider: TextProvider,
    timeout: float,
    system_directive: str,
    history: Sequence[Message],
    latest_text: str
) -> str:
    """Run one provider call under its own timeout. A timeout is a ProviderError."""
    try:
        return await asyncio.wait_for(
            provider.complete(system_directive, history, latest_text),
            timeout=timeout
        )
    except asyncio.TimeoutError as e:
        raise ProviderError(provider.name, f"timed out after {timeout}s", e) from e


class GeminiProvider(TextProvider):
    """Google Gemini chat. History roles: user / model."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.0-flash",
        temperature: float = 0.9,
        max_output_tokens: int = 150
    ):
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self.generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }

    @staticmethod
    def build_history(history: Sequence[Message]) -> List[Dict]:
        turns: List[Dict] = []
        for msg in history:
            if not msg.text:
                continue
            role = "model" if msg.sender == Sender.AGENT else "user"
            # Consecutive turns from the same side are folded together
            if turns and turns[-1]["role"] == role:
                turns[-1]["parts"].append(msg.text)
            else:
                turns.append({"role": role, "parts": [msg.text]})
        return turns

    @classmethod
    def build_turns(cls, history: Sequence[Message], latest_text: str) -> Tuple[List[Dict], str]:
        """Split into (chat history, outgoing message) so user and model alternate.

        A trailing user turn would sit next to the outgoing user message,
        so its parts are sent together with latest_text instead.
        """
        turns = cls.build_history(history)
        if turns and turns[-1]["role"] == "user":
            pending = turns.pop()["parts"]
            return turns, "\n".join(pending + [latest_text])
        return turns, latest_text

    async def complete(
        self,
        system_directive: str,
        history: Sequence[Message],
        latest_text: str
    ) -> str:
        try:
            model = genai.GenerativeModel(
                self.model_name,
                system_instruction=system_directive,
                generation_config=self.generation_config,
            )
            turns, message = self.build_turns(history, latest_text)
            chat = model.start_chat(history=turns)
            response = await chat.send_message_async(message)
            text = response.text
        except Exception as e:
            raise ProviderError(self.name, str(e), e) from e

        if not text or not text.strip():
            raise ProviderError(self.name, "empty response")
        return text


class GroqProvider(TextProvider):
    """Groq chat completions. History roles: system / user / assistant."""

    name = "groq"

    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.3-70b-versatile",
        temperature: float = 0.9,
        max_tokens: int = 150
    ):
        self.client = AsyncGroq(api_key=api_key)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @staticmethod
    def build_messages(
        system_directive: str,
        history: Sequence[Message],
        latest_text: str
    ) -> List[Dict]:
        messages = [{"role": "system", "content": system_directive}]
        for msg in history:
            role = "assistant" if msg.sender == Sender.AGENT else "user"
            messages.append({"role": role, "content": msg.text})
        messages.append({"role": "user", "content": latest_text})
        return messages

    async def complete(
        self,
        system_directive: str,
        history: Sequence[Message],
        latest_text: str
    ) -> str:
        try:
            response = await self.client.chat.completions.create(
                messages=self.build_messages(system_directive, history, latest_text),
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            text = response.choices[0].message.content
        except Exception as e:
            raise ProviderError(self.name, str(e), e) from e

        if not text or not text.strip():
            raise ProviderError(self.name, "empty response")
        return text
