import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Union

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic

from ..config import settings
from ..core.errors import GenerationError

logger = logging.getLogger("wiki.llm")


class LLMError(GenerationError):
    """Upstream text-generation failure."""


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class UsageDelta:
    # Messages API reports input tokens in message_start and the cumulative
    # output count in message_delta; either may be absent.
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


StreamEvent = Union[TextDelta, UsageDelta]


def estimate_cost(
    input_tokens: int,
    output_tokens: int,
    input_cost_per_million: Optional[float] = None,
    output_cost_per_million: Optional[float] = None,
) -> float:
    if input_cost_per_million is None:
        input_cost_per_million = settings.input_cost_per_million
    if output_cost_per_million is None:
        output_cost_per_million = settings.output_cost_per_million
    return (
        input_tokens * input_cost_per_million / 1_000_000
        + output_tokens * output_cost_per_million / 1_000_000
    )


class AnthropicStreamingClient:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: AsyncAnthropic | None = None,
    ):
        if api_key is None and settings.anthropic_api_key is not None:
            api_key = settings.anthropic_api_key.get_secret_value()
        self.model = model or settings.generation_model
        self.timeout = timeout or settings.llm_timeout_seconds
        # The pipeline never retries inline; batch callers wrap it instead.
        self._client = client or AsyncAnthropic(
            api_key=api_key,
            base_url=base_url or settings.anthropic_base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def stream(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yields TextDelta for every text chunk and UsageDelta whenever the
        stream reports token counts. Raises LLMError on HTTP failures and on
        upstream ``error`` events.
        """
        if not self._client.api_key and not self._client.auth_token:
            raise LLMError("Anthropic API key is not configured")

        try:
            async with self._client.messages.stream(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_message}],
            ) as stream:
                async for event in stream:
                    mapped = _to_stream_event(event)
                    if mapped is not None:
                        yield mapped
        except APIStatusError as exc:
            if exc.status_code >= 400:
                logger.error(
                    "Generation request rejected: status=%d body=%s",
                    exc.status_code,
                    str(exc.body)[:500],
                )
                raise LLMError(f"Generation failed: HTTP {exc.status_code}") from exc
            logger.error("Generation stream reported an error: %s", exc.message)
            raise LLMError(f"Upstream error: {exc.message}") from exc
        except APIConnectionError as exc:
            logger.error("Generation stream failed: %s", exc)
            raise LLMError(
                f"Generation stream failed: {type(exc).__name__}"
            ) from exc


def _to_stream_event(event: Any) -> Optional[StreamEvent]:
    # The SDK also emits accumulated "text" events; only raw deltas are
    # forwarded so no text is reported twice.
    kind = getattr(event, "type", None)

    if kind == "content_block_delta":
        delta = event.delta
        if getattr(delta, "type", None) == "text_delta" and delta.text:
            return TextDelta(delta.text)
        return None

    if kind == "message_start":
        usage = event.message.usage
        return UsageDelta(
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )

    if kind == "message_delta":
        usage = event.usage
        return UsageDelta(
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=usage.output_tokens,
        )

    return None
