"""End-to-end identification: dispatch -> normalize -> build."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from rockid.builder import RecordBuilder
from rockid.dispatch import RequestDispatcher
from rockid.errors import ConfigurationError
from rockid.normalize import normalize
from rockid.prompts import SYSTEM_PROMPT, USER_PROMPT
from rockid.providers.models import IdentificationRequest

if TYPE_CHECKING:
    from collections.abc import Callable

    from rockid.config import Config, Mode
    from rockid.connectivity import ConnectivityMonitor
    from rockid.providers.base import Transport
    from rockid.records import IdentificationResult

logger = logging.getLogger(__name__)

_builder = RecordBuilder()


async def identify(
    image: bytes,
    *,
    config: Config,
    monitor: ConnectivityMonitor | None = None,
    transport: Transport | None = None,
) -> IdentificationResult:
    """Identify the rock in *image*.

    Args:
        image: Encoded photo (JPEG).
        config: Mode, credentials and retry policy.
        monitor: Shared connectivity monitor; calls fail fast with
            `NoConnectionError` while it reports offline.
        transport: Pre-built transport; when given, the caller owns it.

    Returns:
        The validated `IdentificationResult`.

    Raises:
        RockIdError: A subclass describing the failing stage, always with
            user-facing ``suggestions``.

    Example:
        config = Config(mode="backend")
        result = await identify(photo_bytes, config=config)
        print(result.name, result.confidence)
    """
    if not image:
        raise ConfigurationError("Failed to process image", hint="image is empty")
    request = IdentificationRequest.for_image(
        image, system_prompt=SYSTEM_PROMPT, user_prompt=USER_PROMPT
    )
    owned = transport is None
    transport = transport or create_transport(config)
    dispatcher = RequestDispatcher(
        transport,
        monitor=monitor,
        policy=config.retry,
        timeout_s=config.timeout_s,
    )
    try:
        response = await dispatcher.send(request)
        text = transport.content(response)
    finally:
        if owned:
            try:
                await transport.aclose()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Cleanup should never mask the primary failure.
                logger.warning("Transport cleanup failed: %s", exc)

    record = normalize(text)
    logger.debug(
        "Normalized %s answer (repairs: %s)",
        record.shape.value,
        ", ".join(record.applied_repairs) or "none",
    )
    return _builder.build(record)


def create_transport(
    config: Config,
    *,
    mode: Mode | None = None,
    image_url: Callable[[bytes], str] | None = None,
) -> Transport:
    """Return the transport *config* selects (``mode`` overrides ``config.mode``)."""
    if config.use_mock:
        from rockid.providers.mock import MockTransport

        return MockTransport()

    mode = mode or config.mode
    if mode == "upstream":
        from rockid.providers.openai import OpenAITransport

        if not config.api_key:
            raise ConfigurationError(
                "api_key required for upstream mode",
                hint="Set OPENAI_API_KEY or pass Config(api_key=...).",
            )
        kwargs: dict[str, Any] = {}
        if image_url is not None:
            kwargs["image_url"] = image_url
        return OpenAITransport(
            config.api_key,
            models=config.models,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            **kwargs,
        )

    from rockid.integrity import SharedValueDigest
    from rockid.providers.proxy import BackendTransport

    if not config.backend_url or not config.shared_secret:
        raise ConfigurationError(
            "backend_url and shared_secret required for backend mode",
            hint="Set ROCKID_BACKEND_URL and ROCKID_SHARED_SECRET.",
        )
    return BackendTransport(config.backend_url, SharedValueDigest(config.shared_secret))
