"""
Completion client: one Messages API call per user submission.

No client-side retry (the SDK's own retries are disabled too). Every failure
mode collapses into a CompletionResult carrying a human-readable error.
"""

import logging
from dataclasses import dataclass

import anthropic

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    text: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.text is not None

    @classmethod
    def success(cls, text: str) -> "CompletionResult":
        return cls(text=text)

    @classmethod
    def failure(cls, error: str) -> "CompletionResult":
        return cls(error=error)


class CompletionClient:
    """Thin wrapper around anthropic.AsyncAnthropic.

    The SDK client is built lazily and rebuilt when the API key changes, so a
    key entered at runtime (set_api_key over the WebSocket) takes effect on
    the next request. Tests pass ``sdk_client`` to avoid the network.
    """

    def __init__(self, api_key: str | None, model: str, max_tokens: int = 1024,
                 timeout: float = 60.0, sdk_client=None):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._sdk = sdk_client

    def set_api_key(self, key: str) -> None:
        if key != self.api_key:
            self.api_key = key
            self._sdk = None

    def _client(self):
        if self._sdk is None:
            self._sdk = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                max_retries=0,
                timeout=self.timeout,
            )
        return self._sdk

    async def complete(self, prompt: str) -> CompletionResult:
        if self._sdk is None and not self.api_key:
            return CompletionResult.failure(
                "ANTHROPIC_API_KEY is not set. Add it to backend/.env or send set_api_key."
            )

        logger.info("Requesting completion (%d chars, model=%s)", len(prompt), self.model)
        try:
            message = await self._client().messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as e:
            logger.error("Completion service returned %s: %s", e.status_code, e)
            return CompletionResult.failure(
                f"Completion service returned status {e.status_code}"
            )
        except anthropic.APIConnectionError as e:
            logger.error("Completion request failed: %s", e)
            return CompletionResult.failure("Could not reach the completion service")
        except anthropic.AnthropicError as e:
            logger.error("Completion request failed: %s", e)
            return CompletionResult.failure(str(e) or "Completion request failed")

        text = _first_text(message)
        if text is None:
            logger.error("Completion response had no text block")
            return CompletionResult.failure("Malformed response from completion service")

        logger.info("Received completion (%d chars)", len(text))
        return CompletionResult.success(text)


def _first_text(message) -> str | None:
    """Return the text of the first text content block, or None."""
    for block in getattr(message, "content", None) or []:
        if getattr(block, "type", None) == "text":
            return block.text
    return None
