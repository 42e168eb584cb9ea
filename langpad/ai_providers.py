from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from openai import AsyncOpenAI, OpenAIError
from openai import AuthenticationError as _OpenAIAuthenticationError

from .config import Settings
from .errors import AuthenticationError, ProviderError

ChunkCallback = Callable[[str], None]


@dataclass
class CompletionResult:
    content: str


class AIProvider:
    name: str = "base"

    async def create_chat_completion(self, params: Dict[str, Any], on_chunk: Optional[ChunkCallback] = None) -> CompletionResult:  # pragma: no cover - abstract
        raise NotImplementedError

    async def list_models(self) -> List[str]:  # pragma: no cover - abstract
        raise NotImplementedError


class OpenAIProvider(AIProvider):
    """Chat completions through ``openai.AsyncOpenAI``.

    Streaming requests deliver every text fragment to ``on_chunk`` and return
    the concatenated text once the stream ends.
    """
    name = "openai"

    def __init__(self, api_key: Optional[str] = None, timeout_s: int = 60, retries: int = 2,
                 client: Optional[AsyncOpenAI] = None) -> None:
        if client is None and not api_key:
            raise ProviderError("OpenAI not available: missing API key")
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout_s, max_retries=retries)

    async def create_chat_completion(self, params: Dict[str, Any], on_chunk: Optional[ChunkCallback] = None) -> CompletionResult:
        try:
            if params.get("stream") and on_chunk:
                stream = await self.client.chat.completions.create(**{**params, "stream": True})
                content_buf: List[str] = []
                async for ev in stream:
                    delta = ev.choices[0].delta.content if ev.choices else None
                    if delta:
                        content_buf.append(delta)
                        on_chunk(delta)
                return CompletionResult(content="".join(content_buf))

            resp = await self.client.chat.completions.create(**{**params, "stream": False})
            content = resp.choices[0].message.content if resp and resp.choices else ""
            return CompletionResult(content=content or "")
        except _OpenAIAuthenticationError as e:
            raise AuthenticationError(str(e)) from e
        except OpenAIError as e:
            logger.error("Error creating chat completion: {}", e)
            raise ProviderError(str(e)) from e

    async def list_models(self) -> List[str]:
        try:
            return [model.id async for model in self.client.models.list()]
        except _OpenAIAuthenticationError as e:
            raise AuthenticationError(str(e)) from e
        except OpenAIError as e:
            raise ProviderError(str(e)) from e


async def validate_key(api_key: str, timeout_s: int = 60, retries: int = 2) -> List[str]:
    """List the model ids available to ``api_key``; raises AuthenticationError if it is rejected."""
    if not api_key:
        raise AuthenticationError("API key is required.")
    provider = OpenAIProvider(api_key=api_key, timeout_s=timeout_s, retries=retries)
    return await provider.list_models()


def select_provider(settings: Settings, api_key: Optional[str] = None) -> Optional[AIProvider]:
    """Build the completion client for ``api_key`` (or the configured key), if any."""
    key = api_key or settings.api_key
    if not key:
        return None
    return OpenAIProvider(api_key=key, timeout_s=settings.timeout_s, retries=settings.retries)
