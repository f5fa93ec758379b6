"""
Inference collaborator.

The extraction gateway and the consolidator only need "send instructions and
a prompt, get text back". ``InferenceClient`` is that contract; the default
implementation calls the Anthropic Messages API and enforces a hard timeout.

Usage:
    from curator.llm import AnthropicInferenceClient

    client = AnthropicInferenceClient(model="claude-sonnet-4-5", timeout=60)
    text = await client.complete(system_prompt, user_prompt)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

import anthropic

from curator.memory.models import InferenceError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"
DEFAULT_MAX_TOKENS = 2048
DEFAULT_TIMEOUT_SECONDS = 60.0


@runtime_checkable
class InferenceClient(Protocol):
    async def complete(self, system: str, prompt: str) -> str:
        """Return the raw text of a single completion. Raise InferenceError on failure."""
        ...


class AnthropicInferenceClient:
    """InferenceClient backed by ``anthropic.AsyncAnthropic``."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        # Created lazily so constructing a pipeline never requires an API key
        if self._client is None:
            self._client = anthropic.AsyncAnthropic()
        return self._client

    async def complete(self, system: str, prompt: str) -> str:
        try:
            response = await asyncio.wait_for(
                self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    system=system,
                    messages=[{"role": "user", "content": prompt}],
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise InferenceError(f"inference call timed out after {self.timeout}s") from e
        except anthropic.APIError as e:
            raise InferenceError(f"inference call failed: {e}") from e

        texts = [block.text for block in response.content if getattr(block, "type", None) == "text"]
        if not texts:
            raise InferenceError("inference response contained no text")
        return "\n".join(texts)
