"""OpenAI chat-completions transport (the upstream provider call)."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import TYPE_CHECKING, Any

from rockid.errors import ConfigurationError, UpstreamError
from rockid.providers._errors import wrap_transport_error
from rockid.providers.models import RawResponse

if TYPE_CHECKING:
    from collections.abc import Callable

    from rockid.providers.models import IdentificationRequest, Message

logger = logging.getLogger(__name__)

#: Interchangeable vision-capable model identifiers, in preference order.
DEFAULT_MODELS: tuple[str, ...] = (
    "gpt-4o",
    "gpt-4-vision-preview",
    "gpt-4-turbo-vision",
)


class OpenAITransport:
    """Chat-completions transport with a model preference list.

    Each `send` is one dispatcher attempt. Within it, models are tried in
    order and the first response that is not a "model deprecated" error is
    returned. The SDK's own retries are disabled; the dispatcher owns them.
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        models: tuple[str, ...] = DEFAULT_MODELS,
        max_tokens: int = 2000,
        temperature: float = 0.5,
        image_url: Callable[[bytes], str] | None = None,
        client: Any = None,
    ) -> None:
        """Initialize with an API key.

        Args:
            api_key: Bearer token for the provider.
            models: Model identifiers in preference order.
            max_tokens: Output token limit per call.
            temperature: Sampling temperature.
            image_url: Maps image bytes to a URL the provider can dereference;
                defaults to an inline ``data:`` URL.
            client: Pre-built ``AsyncOpenAI``-compatible client (tests).
        """
        if not models:
            raise ConfigurationError("At least one model identifier is required")
        self.api_key = api_key
        self.models = tuple(models)
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._image_url = image_url or _data_url
        self._client: Any = client

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    def build_body(self, request: IdentificationRequest, *, model: str) -> dict[str, Any]:
        """Return the JSON body for *model*."""
        return {
            "model": model,
            "messages": [self._to_chat_message(m) for m in request.messages],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": 1,
            "presence_penalty": 0.5,
            "frequency_penalty": 0.5,
            "stream": False,
        }

    def _to_chat_message(self, message: Message) -> dict[str, Any]:
        if message.image is None:
            return {"role": message.role, "content": message.text}
        content: list[dict[str, Any]] = []
        if message.text:
            content.append({"type": "text", "text": message.text})
        content.append(
            {"type": "image_url", "image_url": {"url": self._image_url(message.image)}}
        )
        return {"role": message.role, "content": content}

    async def send(
        self, request: IdentificationRequest, *, timeout: float
    ) -> RawResponse:
        """Try each model in order; return the first non-deprecation answer."""
        client = self._get_client()
        response: RawResponse | None = None
        for model in self.models:
            logger.debug("Trying model %s", model)
            response = await self._send_one(
                client, self.build_body(request, model=model), model, timeout
            )
            if not is_model_deprecated(response):
                return response
            logger.info("Model %s is deprecated, trying the next one", model)
        if response is None:  # pragma: no cover - models is non-empty
            raise RuntimeError("no model attempted")
        return response

    async def _send_one(
        self, client: Any, body: dict[str, Any], model: str, timeout: float
    ) -> RawResponse:
        from openai import APIStatusError

        try:
            raw = await client.chat.completions.with_raw_response.create(
                **body, timeout=timeout
            )
        except asyncio.CancelledError:
            raise
        except APIStatusError as e:
            return RawResponse(
                status_code=e.status_code, text=e.response.text, model=model
            )
        except Exception as e:
            raise wrap_transport_error(
                e, transport=self.name, message="OpenAI request failed"
            ) from e
        http = raw.http_response
        return RawResponse(status_code=http.status_code, text=http.text, model=model)

    def content(self, response: RawResponse) -> str:
        """Return ``choices[0].message.content`` or raise `UpstreamError`."""
        text = extract_content(response)
        if text is None:
            raise UpstreamError(
                "No content in API response",
                status_code=response.status_code,
                retryable=False,
                suggestions=(
                    "Try with a clearer image",
                    "Make sure the rock is clearly visible",
                ),
            )
        return text

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def is_model_deprecated(response: RawResponse) -> bool:
    """Return True when *response* is specifically a model-deprecation error."""
    if response.ok:
        return False
    try:
        body = json.loads(response.text)
    except ValueError:
        return False
    error = body.get("error") if isinstance(body, dict) else None
    message = error.get("message") if isinstance(error, dict) else None
    return isinstance(message, str) and "deprecated" in message.lower()


def extract_content(response: RawResponse) -> str | None:
    """Return ``choices[0].message.content`` from a chat-completions body, if any."""
    try:
        body = json.loads(response.text)
        content = body["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) and content else None


def _data_url(image: bytes) -> str:
    encoded = base64.standard_b64encode(image).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"
