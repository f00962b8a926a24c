"""
Completion provider clients.

CompletionProvider is the interface the pipeline depends on: a blocking
`complete` and a token-streaming `complete_stream`. LLMCompletionProvider
dispatches to OpenAI, Groq or Anthropic based on utils.model_config, with a
bounded wait on every call and one retry for transient failures.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import anthropic
import groq
import openai

from utils.config import Settings, get_settings
from utils.exceptions import QuickStudyError, UpstreamError, ValidationError
from utils.model_config import ModelConfig, ModelProvider

logger = logging.getLogger(__name__)

Messages = List[Dict[str, str]]

# Network blips, rate limits and 5xx responses are worth one more try
TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    groq.APIConnectionError,
    groq.RateLimitError,
    groq.InternalServerError,
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
    ConnectionError,
)


@dataclass
class CompletionConfig:
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    json_mode: bool = False
    timeout: float = 60.0


class CompletionProvider(ABC):
    """Text/JSON generation service used by every generator."""

    @abstractmethod
    async def complete(self, messages: Messages, config: CompletionConfig) -> str:
        ...

    @abstractmethod
    def complete_stream(self, messages: Messages, config: CompletionConfig) -> AsyncIterator[str]:
        ...


class LLMCompletionProvider(CompletionProvider):
    """Provider-dispatching implementation backed by the vendor SDKs."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._clients: Dict[str, Any] = {}

    # ================================================================
    # Public API
    # ================================================================

    async def complete(self, messages: Messages, config: CompletionConfig) -> str:
        model_config = self._resolve(config)
        attempts = self.settings.upstream_retries + 1

        for attempt in range(attempts):
            try:
                return await asyncio.wait_for(
                    self._call_model(messages, model_config, config),
                    timeout=config.timeout,
                )
            except asyncio.TimeoutError:
                logger.error(f"{model_config['model']} call timed out after {config.timeout:.0f}s")
                raise UpstreamError(
                    f"Model call timed out after {config.timeout:.0f}s",
                    error_code="UPSTREAM_TIMEOUT",
                    context={"model": model_config["model"]},
                )
            except TRANSIENT_ERRORS as e:
                if attempt < attempts - 1:
                    backoff = self.settings.retry_backoff_seconds * (2 ** attempt)
                    logger.warning(
                        f"{model_config['provider'].value} transient error (attempt {attempt + 1}/{attempts}). "
                        f"Retrying in {backoff}s: {e}"
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise UpstreamError(
                    f"Model call failed after {attempts} attempt(s): {e}",
                    context={"model": model_config["model"]},
                ) from e
            except QuickStudyError:
                raise
            except Exception as e:
                logger.error(f"{model_config['provider'].value} API error: {e}")
                raise UpstreamError(
                    f"Model call failed: {e}",
                    context={"model": model_config["model"]},
                ) from e

        raise UpstreamError("Model call failed", context={"model": model_config["model"]})

    async def complete_stream(self, messages: Messages, config: CompletionConfig) -> AsyncIterator[str]:
        model_config = self._resolve(config)
        provider = model_config["provider"]

        try:
            if provider == ModelProvider.ANTHROPIC:
                async for token in self._stream_claude(messages, model_config, config):
                    yield token
            elif provider == ModelProvider.OPENAI:
                async for token in self._stream_openai_compatible("openai", messages, model_config, config):
                    yield token
            elif provider == ModelProvider.GROQ:
                async for token in self._stream_openai_compatible("groq", messages, model_config, config):
                    yield token
            else:
                raise ValidationError(f"Unknown provider: {provider}", error_code="INVALID_MODEL")
        except QuickStudyError:
            raise
        except Exception as e:
            logger.error(f"_stream {provider.value} error: {e}")
            raise UpstreamError(
                f"Streaming call failed: {e}",
                context={"model": model_config["model"]},
            ) from e

    # ================================================================
    # Dispatch
    # ================================================================

    def _resolve(self, config: CompletionConfig) -> Dict[str, Any]:
        try:
            return ModelConfig.get_config(config.model or self.settings.default_model)
        except ValueError as e:
            raise ValidationError(str(e), error_code="INVALID_MODEL", context={"model": config.model})

    def _client(self, name: str) -> Any:
        if name not in self._clients:
            if name == "openai":
                self._clients[name] = openai.AsyncOpenAI(api_key=self.settings.openai_api_key or None)
            elif name == "groq":
                self._clients[name] = groq.AsyncGroq(api_key=self.settings.groq_api_key or None)
            else:
                self._clients[name] = anthropic.AsyncAnthropic(api_key=self.settings.anthropic_api_key or None)
        return self._clients[name]

    def _params(self, messages: Messages, model_config: Dict[str, Any], config: CompletionConfig) -> Dict[str, Any]:
        return {
            "model": model_config["model"],
            "messages": messages,
            "max_tokens": config.max_tokens or model_config["max_tokens"],
            "temperature": config.temperature if config.temperature is not None else model_config.get("temperature", 0.7),
        }

    async def _call_model(self, messages: Messages, model_config: Dict[str, Any], config: CompletionConfig) -> str:
        """Call appropriate model based on configuration"""
        provider = model_config["provider"]

        if provider == ModelProvider.ANTHROPIC:
            return await self._call_claude(messages, model_config, config)
        elif provider == ModelProvider.OPENAI:
            return await self._call_openai_compatible("openai", messages, model_config, config)
        elif provider == ModelProvider.GROQ:
            return await self._call_openai_compatible("groq", messages, model_config, config)
        else:
            raise ValidationError(f"Unknown provider: {provider}", error_code="INVALID_MODEL")

    async def _call_openai_compatible(
        self,
        name: str,
        messages: Messages,
        model_config: Dict[str, Any],
        config: CompletionConfig
    ) -> str:
        """OpenAI and Groq share the chat completions shape."""
        params = self._params(messages, model_config, config)
        if config.json_mode:
            params["response_format"] = {"type": "json_object"}

        response = await self._client(name).chat.completions.create(**params)
        choice = response.choices[0]
        if choice.finish_reason == "length":
            logger.warning(f"{name} response truncated at max_tokens={params['max_tokens']}")
        return choice.message.content or ""

    async def _call_claude(self, messages: Messages, model_config: Dict[str, Any], config: CompletionConfig) -> str:
        system, chat = self._split_system(messages, config.json_mode)
        response = await self._client("anthropic").messages.create(
            model=model_config["model"],
            max_tokens=config.max_tokens or model_config["max_tokens"],
            temperature=config.temperature if config.temperature is not None else model_config.get("temperature", 0.7),
            system=system,
            messages=chat,
        )

        # Concatenate only text blocks
        content = ""
        for block in response.content:
            if hasattr(block, "text"):
                content += block.text
        return content

    # ── Streaming helpers (one per provider shape) ──

    async def _stream_openai_compatible(
        self,
        name: str,
        messages: Messages,
        model_config: Dict[str, Any],
        config: CompletionConfig
    ) -> AsyncIterator[str]:
        params = self._params(messages, model_config, config)
        stream = await self._client(name).chat.completions.create(**params, stream=True)
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        finally:
            await stream.close()

    async def _stream_claude(
        self,
        messages: Messages,
        model_config: Dict[str, Any],
        config: CompletionConfig
    ) -> AsyncIterator[str]:
        system, chat = self._split_system(messages, json_mode=False)
        kwargs: Dict[str, Any] = {
            "model": model_config["model"],
            "max_tokens": config.max_tokens or model_config["max_tokens"],
            "system": system,
            "messages": chat,
        }
        async with self._client("anthropic").messages.stream(**kwargs) as stream:
            async for text in stream.text_stream:
                yield text

    @staticmethod
    def _split_system(messages: Messages, json_mode: bool):
        """Anthropic takes system instructions separately from the turns."""
        system_parts = [m["content"] for m in messages if m["role"] == "system"]
        if json_mode:
            system_parts.append("Respond with ONLY a valid JSON object. No markdown code blocks, no extra text.")
        chat = [{"role": m["role"], "content": m["content"]} for m in messages if m["role"] != "system"]
        return "\n\n".join(system_parts), chat
