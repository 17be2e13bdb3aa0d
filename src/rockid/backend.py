"""Backend proxy handler: validate, verify, call upstream, normalize, reply.

The handler is framework-agnostic. A hosting web app passes the decoded form
fields of each POST to `BackendHandler.handle` and writes the returned
`ProxyReply`. While a call is in flight its decoded images are held in an
`ImageStore`; the hosting app serves ``GET /tmp/<name>`` from
`ImageStore.get` so the provider can fetch them.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from rockid.encoding import content_name, percent_decode
from rockid.errors import (
    AuthError,
    ConfigurationError,
    DispatchError,
    MissingRequiredFieldsError,
    ParseError,
    RockIdError,
    UpstreamError,
)
from rockid.integrity import require_valid
from rockid.normalize import RecordShape, normalize
from rockid.prompts import SYSTEM_PROMPT, USER_PROMPT
from rockid.providers.models import IdentificationRequest, Message

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from rockid.config import Config
    from rockid.connectivity import ConnectivityMonitor
    from rockid.dispatch import RequestDispatcher
    from rockid.integrity import IntegrityCheck

logger = logging.getLogger(__name__)

#: Largest accepted encoded image field, in characters.
MAX_ENCODED_IMAGE_CHARS = 20 * 1024 * 1024
_RAW_PREVIEW_CHARS = 200


@dataclass(frozen=True)
class ProxyReply:
    """HTTP status plus JSON (or pass-through text) body."""

    status_code: int
    body: str
    content_type: str = "application/json"

    @classmethod
    def error(
        cls, status_code: int, message: str, suggestions: tuple[str, ...] = (), **extra: Any
    ) -> ProxyReply:
        payload: dict[str, Any] = {"error": message, "suggestions": list(suggestions)}
        payload.update(extra)
        return cls(status_code, json.dumps(payload, ensure_ascii=False))


def public_url(base_url: str, name: str) -> str:
    """URL the provider dereferences for a stored image."""
    return f"{base_url.rstrip('/')}/tmp/{name}"


class ImageStore:
    """Content-addressed image storage scoped to in-flight requests.

    Images are held only while at least one request that uploaded them is
    running; identical uploads share one entry.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._images: dict[str, bytes] = {}
        self._refs: Counter[str] = Counter()

    def get(self, name: str) -> bytes | None:
        with self._lock:
            return self._images.get(name)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._images

    def __len__(self) -> int:
        with self._lock:
            return len(self._images)

    @contextmanager
    def hold(self, images: tuple[bytes, ...]) -> Iterator[tuple[str, ...]]:
        """Store *images* for the duration of the block; yield their names."""
        names = tuple(content_name(data) for data in images)
        with self._lock:
            for name, data in zip(names, images):
                self._images[name] = data
                self._refs[name] += 1
        try:
            yield names
        finally:
            with self._lock:
                for name in names:
                    self._refs[name] -= 1
                    if self._refs[name] <= 0:
                        del self._refs[name]
                        self._images.pop(name, None)


class BackendHandler:
    """Serve identification requests on behalf of clients."""

    def __init__(
        self,
        *,
        integrity: IntegrityCheck,
        dispatcher: RequestDispatcher,
        store: ImageStore | None = None,
        system_prompt: str = SYSTEM_PROMPT,
        max_image_chars: int = MAX_ENCODED_IMAGE_CHARS,
    ) -> None:
        """Initialize the handler.

        Args:
            integrity: Verifies the ``hash`` form field.
            dispatcher: Dispatcher wrapping the upstream provider transport.
            store: Image store shared with the route that serves ``/tmp``.
            system_prompt: Prepended to every upstream request.
            max_image_chars: Oversize guard for each encoded image field.
        """
        self.integrity = integrity
        self.dispatcher = dispatcher
        self.store = store if store is not None else ImageStore()
        self.system_prompt = system_prompt
        self.max_image_chars = max_image_chars

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        store: ImageStore | None = None,
        monitor: ConnectivityMonitor | None = None,
    ) -> BackendHandler:
        """Build a handler whose upstream is the configured provider."""
        from rockid.dispatch import RequestDispatcher
        from rockid.identify import create_transport
        from rockid.integrity import SharedValueDigest

        if not config.shared_secret:
            raise ConfigurationError(
                "Shared secret required to verify client requests",
                hint="Set ROCKID_SHARED_SECRET or pass Config(shared_secret=...).",
            )
        if not config.public_base_url and not config.use_mock:
            raise ConfigurationError(
                "Public base URL required to expose stored images",
                hint="Set ROCKID_PUBLIC_BASE_URL or pass Config(public_base_url=...).",
            )
        base_url = config.public_base_url or "http://localhost"
        transport = create_transport(
            config,
            mode="upstream",
            image_url=lambda data: public_url(base_url, content_name(data)),
        )
        dispatcher = RequestDispatcher(
            transport,
            monitor=monitor,
            policy=config.retry,
            timeout_s=config.timeout_s,
        )
        return cls(
            integrity=SharedValueDigest(config.shared_secret),
            dispatcher=dispatcher,
            store=store,
        )

    async def handle(self, form: Mapping[str, str]) -> ProxyReply:
        """Process one client POST and return the reply to send."""
        messages_field = form.get("messages")
        if not messages_field:
            logger.warning("Request without messages field")
            return ProxyReply.error(
                400,
                "No messages parameter provided",
                ("Please include a messages parameter in your request",),
            )
        try:
            require_valid(self.integrity, messages_field, form.get("hash"))
        except AuthError as e:
            logger.warning("Rejected request: integrity check failed")
            return ProxyReply.error(401, e.message, e.suggestions)

        try:
            wire = json.loads(messages_field)
        except ValueError:
            wire = None
        if not isinstance(wire, list):
            return ProxyReply.error(
                400,
                "Failed to decode JSON messages",
                ("Ensure your messages are properly formatted as JSON",),
            )

        oversized = self._oversized(wire)
        if oversized is not None:
            logger.warning("Rejected image of %.2f MB", oversized / 1024 / 1024)
            return ProxyReply.error(
                413,
                "Image too large for processing",
                (
                    "Please resize your image to under 10MB",
                    "Try taking a photo with lower resolution",
                    "Crop the image to focus on just the rock",
                ),
            )

        try:
            request = self.build_request(wire)
        except ConfigurationError as e:
            return ProxyReply.error(400, e.message, e.suggestions)

        with self.store.hold(request.images) as names:
            logger.debug("Holding %d image(s): %s", len(names), ", ".join(names))
            return await self._identify(request)

    def _oversized(self, wire: list[Any]) -> int | None:
        for item in wire:
            image = item.get("image") if isinstance(item, dict) else None
            if isinstance(image, str) and len(image) > self.max_image_chars:
                return len(image)
        return None

    def build_request(self, wire: list[Any]) -> IdentificationRequest:
        """Map wire messages to an upstream request headed by the system prompt.

        Raises:
            ConfigurationError: No wire message carries usable content.
        """
        messages = [Message(role="system", text=self.system_prompt)]
        for index, item in enumerate(wire):
            if not isinstance(item, dict):
                logger.debug("Skipping message %d: not an object", index)
                continue
            role = item.get("role") if item.get("role") in ("system", "user") else "user"
            text = item.get("message") or item.get("content") or ""
            text = text if isinstance(text, str) else ""
            image = item.get("image")
            if isinstance(image, str) and image:
                messages.append(
                    Message(role=role, text=text or USER_PROMPT, image=percent_decode(image))
                )
            elif text:
                messages.append(Message(role=role, text=text))
            else:
                logger.debug("Skipping message %d: no recognizable content", index)
        if len(messages) == 1:
            raise ConfigurationError(
                "No usable messages in request",
                suggestions=("Include an image or text message",),
            )
        return IdentificationRequest(messages=tuple(messages))

    async def _identify(self, request: IdentificationRequest) -> ProxyReply:
        transport = self.dispatcher.transport
        try:
            response = await self.dispatcher.send(request)
            text = transport.content(response)
            record = normalize(text)
        except asyncio.CancelledError:
            raise
        except MissingRequiredFieldsError as e:
            return ProxyReply.error(
                200,
                e.message,
                e.suggestions,
                rawResponse=_preview(e.raw_text),
            )
        except (DispatchError, UpstreamError, AuthError) as e:
            logger.warning("Upstream call failed: %s", e.message)
            return ProxyReply.error(502, f"API error: {e.message}", e.suggestions)
        except RockIdError as e:
            logger.error("Request failed: %s", e.message)
            return ProxyReply.error(500, e.message, e.suggestions)

        if record.shape is RecordShape.ERROR_BLOCK:
            return ProxyReply.error(200, record.error_message or "", record.suggestions)
        if record.shape is RecordShape.STRUCTURED:
            return ProxyReply(200, record.text)
        if record.shape is RecordShape.FLAT_KEY_VALUE:
            return ProxyReply(200, record.text, content_type="text/plain; charset=utf-8")
        if record.parse_error is not None:
            # The client runs the same repairs; hand it the candidate as-is.
            return ProxyReply(200, record.text)
        return ProxyReply.error(
            200,
            "No valid JSON structure found in the response",
            ParseError.default_suggestions,
            rawResponse=_preview(record.text),
        )


def _preview(text: str) -> str:
    if len(text) <= _RAW_PREVIEW_CHARS:
        return text
    return text[:_RAW_PREVIEW_CHARS] + "..."
