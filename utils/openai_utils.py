import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from openai import AsyncOpenAI
from openai.types.chat import ChatCompletion, ChatCompletionMessageParam

__all__ = ["safe_chat_completion", "completion_text"]


async def safe_chat_completion(
    client: AsyncOpenAI | None,
    *,
    model: str,
    messages: Iterable[dict[str, Any]],
    logger: logging.Logger | None = None,
    retry_attempts: int = 3,
    retry_backoff: float = 1.0,
    **kwargs,
) -> ChatCompletion:
    """Invoke the chat completion endpoint with retries and exponential back-off.

    Parameters
    ----------
    client:
        An initialised ``openai.AsyncOpenAI`` client.
    model:
        The model name to call (e.g. ``"gpt-4o-mini"``).
    messages:
        The messages for the chat completion endpoint.
    logger:
        Optional logger for diagnostics; if omitted a module-level logger is used.
    retry_attempts:
        How many attempts to make before giving up.
    retry_backoff:
        Base back-off in seconds; the delay grows as ``backoff * 2**(attempt-1)``.
    **kwargs:
        Forwarded to ``client.chat.completions.create`` (temperature, max_tokens...).

    Raises
    ------
    RuntimeError
        If no client is configured.
    Exception
        The last encountered exception once every attempt has failed.
    """
    if client is None:
        raise RuntimeError("OpenAI client is not initialised.")
    if not isinstance(client, AsyncOpenAI):
        raise TypeError("safe_chat_completion requires an AsyncOpenAI client.")

    logger = logger or logging.getLogger(__name__)
    typed_messages: list[ChatCompletionMessageParam] = list(messages)  # type: ignore[arg-type]
    last_exc: Exception | None = None
    loop = asyncio.get_running_loop()

    for attempt in range(1, retry_attempts + 1):
        try:
            start_ts = loop.time()
            completion = await client.chat.completions.create(
                model=model,
                messages=typed_messages,
                **kwargs,
            )
            logger.debug(
                "OpenAI completions.create call succeeded | model=%s | latency=%.2fs",
                model,
                loop.time() - start_ts,
            )
            return completion
        except Exception as exc:  # noqa: BLE001
            last_exc = exc
            logger.warning("OpenAI call failed (attempt %s/%s): %s", attempt, retry_attempts, exc)
            if attempt < retry_attempts:
                await asyncio.sleep(retry_backoff * (2 ** (attempt - 1)))

    assert last_exc is not None  # for type checkers
    raise last_exc


def completion_text(completion: ChatCompletion) -> str:
    """Return the stripped text of the first choice, or an empty string."""
    if not completion.choices:
        return ""
    content = completion.choices[0].message.content
    return content.strip() if content else ""
