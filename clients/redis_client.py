"""
Chat transcript cache for Quick Study sources.

One Redis list per (session, source) holds the recent chat turns as JSON.
The cache is optional: with no REDIS_URL, or when the server cannot be
reached, every call reports a miss and chat falls back to the history sent
with the request.
"""

import json
import asyncio
import logging
from typing import Dict, List, Optional

from utils.config import get_settings

logger = logging.getLogger(__name__)

CHAT_KEY_PREFIX = "quickstudy:chat"

_connection = None
_disabled = False
_connect_lock = asyncio.Lock()


async def _open_connection(url: str):
    import redis.asyncio as aioredis
    connection = aioredis.from_url(url, decode_responses=True)
    await connection.ping()
    return connection


async def _get_redis():
    """Shared connection, opened on first use. None while the cache is disabled."""
    global _connection, _disabled
    if _disabled or _connection is not None:
        return _connection

    async with _connect_lock:
        # Another caller may have connected or given up while we waited
        if _disabled or _connection is not None:
            return _connection

        url = get_settings().redis_url
        if not url:
            logger.info("REDIS_URL not set, chat transcripts are not cached")
            _disabled = True
            return None
        try:
            _connection = await _open_connection(url)
            logger.info(f"Chat transcript cache connected: {url}")
        except Exception as e:
            logger.warning(f"Chat transcript cache unavailable, continuing without it: {e}")
            _disabled = True
            _connection = None
        return _connection


def reset_connection() -> None:
    """Forget the shared connection so the next call reconnects."""
    global _connection, _disabled
    _connection = None
    _disabled = False


def _chat_key(session_id: str, source_id: str) -> str:
    return f"{CHAT_KEY_PREFIX}:{session_id}:{source_id}"


async def get_chat_history(session_id: str, source_id: str, limit: Optional[int] = None) -> Optional[List[Dict]]:
    """Most recent turns for a source, oldest first. None on a miss or any cache error."""
    try:
        r = await _get_redis()
        if r is None:
            return None
        window = limit or get_settings().max_cached_messages
        stored = await r.lrange(_chat_key(session_id, source_id), -window, -1)
        return [json.loads(turn) for turn in stored] or None
    except Exception as e:
        logger.warning(f"Could not read chat transcript for source {source_id}: {e}")
        return None


async def push_messages(session_id: str, source_id: str, messages: List[Dict]) -> bool:
    """Append turns, keep only the newest window and refresh the TTL."""
    try:
        r = await _get_redis()
        if r is None:
            return False
        settings = get_settings()
        key = _chat_key(session_id, source_id)
        async with r.pipeline(transaction=True) as pipe:
            pipe.rpush(key, *(json.dumps(m, default=str) for m in messages))
            pipe.ltrim(key, -settings.max_cached_messages, -1)
            pipe.expire(key, settings.chat_history_ttl_seconds)
            await pipe.execute()
        return True
    except Exception as e:
        logger.warning(f"Could not cache chat turns for source {source_id}: {e}")
        return False


async def clear_chat(session_id: str, source_id: str) -> bool:
    """Drop the cached transcript for a source. False when nothing could be cleared."""
    try:
        r = await _get_redis()
        if r is None:
            return False
        removed = await r.delete(_chat_key(session_id, source_id))
        return bool(removed)
    except Exception as e:
        logger.warning(f"Could not clear chat transcript for source {source_id}: {e}")
        return False
