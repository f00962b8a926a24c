"""
Streaming relay: provider token stream -> ordered client events.

Emits {"type": "chunk"} events as tokens arrive, then exactly one terminal
event, either {"type": "complete"} or {"type": "error"}. Nothing follows the
terminal event. When the consumer goes away (the generator is closed) or the
cancel event is set, the relay stops pulling and closes the upstream stream.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional

from utils.exceptions import QuickStudyError

logger = logging.getLogger(__name__)


def error_event(exc: Exception, **extra: Any) -> Dict[str, Any]:
    """Build a structured error event from an exception."""
    if isinstance(exc, QuickStudyError):
        event = {
            "type": "error",
            "error": exc.error_code,
            "message": exc.message,
            "status_code": exc.status_code,
        }
    else:
        event = {
            "type": "error",
            "error": "INTERNAL_ERROR",
            "message": str(exc) or exc.__class__.__name__,
            "status_code": 500,
        }
    event.update(extra)
    return event


async def relay_stream(
    tokens: AsyncIterator[str],
    chunk_timeout: float,
    cancel_event: Optional[asyncio.Event] = None,
    **extra: Any,
) -> AsyncIterator[Dict[str, Any]]:
    """
    Relay provider tokens as events.

    Args:
        tokens: async iterator of text deltas from the completion provider
        chunk_timeout: maximum wait for each next token, in seconds
        cancel_event: cooperative cancel flag checked between chunks
        extra: fields copied onto every event (e.g. operation)
    """
    parts = []
    chunk_count = 0
    try:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Stream cancelled after {chunk_count} chunk(s)")
                return

            try:
                token = await asyncio.wait_for(tokens.__anext__(), timeout=chunk_timeout)
            except StopAsyncIteration:
                break
            except asyncio.TimeoutError:
                logger.error(f"Stream stalled: no token within {chunk_timeout:.0f}s")
                yield {
                    "type": "error",
                    "error": "UPSTREAM_TIMEOUT",
                    "message": f"No response from the model within {chunk_timeout:.0f}s",
                    "status_code": 504,
                    **extra,
                }
                return
            except Exception as e:
                logger.error(f"Stream error after {chunk_count} chunk(s): {e}")
                yield error_event(e, **extra)
                return

            if not token:
                continue
            parts.append(token)
            chunk_count += 1
            yield {"type": "chunk", "content": token, **extra}

        full_content = "".join(parts)
        logger.info(f"Stream complete: {chunk_count} chunk(s), {len(full_content)} chars")
        yield {"type": "complete", "full_content": full_content, "chunk_count": chunk_count, **extra}
    finally:
        aclose = getattr(tokens, "aclose", None)
        if aclose is not None:
            await aclose()
