"""
Shared fixtures: scripted text providers and seeded randomness.
"""

import asyncio
import random
from typing import List, Optional, Sequence, Union

import pytest

from honeypot.errors import ProviderError
from honeypot.models import Message
from honeypot.providers import TextProvider


class ScriptedProvider(TextProvider):
    """Returns canned outputs in order. An Exception in the script is raised instead."""

    def __init__(self, name: str, outputs: Sequence[Union[str, Exception]], delay: float = 0.0):
        self.name = name
        self.outputs: List[Union[str, Exception]] = list(outputs)
        self.delay = delay
        self.calls: List[dict] = []

    async def complete(self, system_directive: str, history: Sequence[Message], latest_text: str) -> str:
        self.calls.append({
            "system_directive": system_directive,
            "history": list(history),
            "latest_text": latest_text,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        output = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(output, Exception):
            raise output
        return output


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def make_provider():
    def _make(name: str = "fake", outputs: Optional[Sequence[Union[str, Exception]]] = None, delay: float = 0.0):
        return ScriptedProvider(name, outputs or ["ok"], delay=delay)
    return _make


@pytest.fixture
def failing_provider(make_provider):
    return make_provider("broken", [ProviderError("broken", "auth error")])
