"""Backend proxy handler: request validation, image hold, reply mapping."""

from __future__ import annotations

import asyncio
import json

import pytest

from rockid.backend import BackendHandler, ImageStore, ProxyReply, public_url
from rockid.config import Config
from rockid.dispatch import RequestDispatcher
from rockid.encoding import content_name
from rockid.errors import ConfigurationError, UpstreamError
from rockid.integrity import SharedValueDigest
from rockid.prompts import SYSTEM_PROMPT, USER_PROMPT
from rockid.providers.models import IdentificationRequest, Message, RawResponse
from rockid.retry import RetryPolicy
from tests.helpers import QUARTZ_JSON, GateTransport, ScriptedTransport

pytestmark = pytest.mark.integration

_SECRET = "s3cret"
_IMAGE = b"\xff\xd8\xff\xe0rock-photo"


def _handler(transport: ScriptedTransport, **kwargs) -> BackendHandler:
    dispatcher = RequestDispatcher(
        transport, policy=RetryPolicy(max_retries=1, base_delay_s=0.0, jitter_s=0.0)
    )
    return BackendHandler(
        integrity=SharedValueDigest(_SECRET), dispatcher=dispatcher, **kwargs
    )


def _form(messages: str | None = None, *, digest: str | None = None) -> dict[str, str]:
    if messages is None:
        request = IdentificationRequest(messages=(Message(role="user", image=_IMAGE),))
        messages = request.messages_json()
    return {
        "messages": messages,
        "hash": digest if digest is not None else SharedValueDigest(_SECRET).sign(messages),
    }


def _body(reply: ProxyReply) -> dict:
    return json.loads(reply.body)


# =============================================================================
# Request validation (no upstream call)
# =============================================================================


@pytest.mark.asyncio
async def test_missing_messages_is_400() -> None:
    transport = ScriptedTransport()

    reply = await _handler(transport).handle({"hash": "abc"})

    assert reply.status_code == 400
    assert _body(reply)["error"] == "No messages parameter provided"
    assert transport.calls == 0


@pytest.mark.asyncio
async def test_bad_digest_is_401_without_upstream_call() -> None:
    transport = ScriptedTransport()

    reply = await _handler(transport).handle(_form(digest="0" * 32))

    assert reply.status_code == 401
    assert _body(reply)["error"] == "Authentication failed"
    assert transport.calls == 0


@pytest.mark.asyncio
async def test_missing_digest_is_401() -> None:
    transport = ScriptedTransport()
    form = _form()
    del form["hash"]

    reply = await _handler(transport).handle(form)

    assert reply.status_code == 401


@pytest.mark.asyncio
async def test_undecodable_messages_is_400() -> None:
    transport = ScriptedTransport()

    reply = await _handler(transport).handle(_form("not json"))

    assert reply.status_code == 400
    assert _body(reply)["error"] == "Failed to decode JSON messages"
    assert transport.calls == 0


@pytest.mark.asyncio
async def test_oversized_image_is_413() -> None:
    transport = ScriptedTransport()

    reply = await _handler(transport, max_image_chars=16).handle(_form())

    assert reply.status_code == 413
    body = _body(reply)
    assert body["error"] == "Image too large for processing"
    assert len(body["suggestions"]) == 3
    assert transport.calls == 0


@pytest.mark.asyncio
async def test_no_usable_messages_is_400() -> None:
    transport = ScriptedTransport()

    reply = await _handler(transport).handle(_form(json.dumps([{"role": "user"}, 7])))

    assert reply.status_code == 400
    assert transport.calls == 0


# =============================================================================
# Upstream request and image hold
# =============================================================================


@pytest.mark.asyncio
async def test_upstream_request_is_headed_by_system_prompt() -> None:
    transport = ScriptedTransport()

    reply = await _handler(transport).handle(_form())

    assert reply.status_code == 200
    messages = transport.requests[0].messages
    assert messages[0] == Message(role="system", text=SYSTEM_PROMPT)
    assert messages[1].role == "user"
    assert messages[1].text == USER_PROMPT
    assert messages[1].image == _IMAGE


def test_build_request_keeps_client_text_and_roles() -> None:
    handler = _handler(ScriptedTransport(), system_prompt="sys")
    wire = [
        {"role": "system", "content": "be brief"},
        {"role": "bogus", "message": "hello"},
        {"role": "user", "content": "look", "image": "%41%42"},
    ]

    request = handler.build_request(wire)

    assert [(m.role, m.text) for m in request.messages] == [
        ("system", "sys"),
        ("system", "be brief"),
        ("user", "hello"),
        ("user", "look"),
    ]
    assert request.images == (b"AB",)


@pytest.mark.asyncio
async def test_images_are_held_only_while_in_flight() -> None:
    store = ImageStore()
    transport = GateTransport()
    handler = _handler(transport, store=store)

    task = asyncio.ensure_future(handler.handle(_form()))
    await asyncio.wait_for(transport.started.wait(), timeout=5)

    name = content_name(_IMAGE)
    assert name in store
    assert store.get(name) == _IMAGE

    transport.release.set()
    reply = await asyncio.wait_for(task, timeout=5)

    assert reply.status_code == 200
    assert name not in store
    assert len(store) == 0


def test_handler_uses_the_store_it_is_given_even_when_empty() -> None:
    store = ImageStore()

    handler = _handler(ScriptedTransport(), store=store)

    assert len(store) == 0
    assert handler.store is store


def test_image_store_shares_identical_uploads() -> None:
    store = ImageStore()

    with store.hold((_IMAGE,)) as first:
        with store.hold((_IMAGE,)) as second:
            assert first == second
        assert first[0] in store
    assert len(store) == 0


def test_public_url() -> None:
    assert public_url("https://api.test/", "abc.jpg") == "https://api.test/tmp/abc.jpg"


# =============================================================================
# Reply mapping
# =============================================================================


@pytest.mark.asyncio
async def test_structured_answer_is_canonical_json() -> None:
    transport = ScriptedTransport(default=f"```json\n{QUARTZ_JSON}\n```")

    reply = await _handler(transport).handle(_form())

    assert reply.status_code == 200
    assert reply.content_type == "application/json"
    assert reply.body == QUARTZ_JSON


@pytest.mark.asyncio
async def test_flat_answer_is_passed_as_text() -> None:
    transport = ScriptedTransport(default="NAME: Quartz\nCATEGORY: Mineral\n")

    reply = await _handler(transport).handle(_form())

    assert reply.status_code == 200
    assert reply.content_type.startswith("text/plain")
    assert reply.body.startswith("NAME: Quartz")


@pytest.mark.asyncio
async def test_error_block_becomes_error_json() -> None:
    transport = ScriptedTransport(default="ERROR: Not a rock\nSUGGESTION1: Try a rock\n")

    reply = await _handler(transport).handle(_form())

    assert reply.status_code == 200
    assert _body(reply) == {"error": "Not a rock", "suggestions": ["Try a rock"]}


@pytest.mark.asyncio
async def test_missing_required_fields_include_raw_preview() -> None:
    transport = ScriptedTransport(default='{"category": "Mineral"}')

    reply = await _handler(transport).handle(_form())

    body = _body(reply)
    assert reply.status_code == 200
    assert body["error"] == "Missing required fields: name"
    assert body["rawResponse"] == '{"category": "Mineral"}'


@pytest.mark.asyncio
async def test_no_json_found_reply() -> None:
    transport = ScriptedTransport(default="x" * 500)

    reply = await _handler(transport).handle(_form())

    body = _body(reply)
    assert reply.status_code == 200
    assert body["error"] == "No valid JSON structure found in the response"
    assert body["rawResponse"] == "x" * 200 + "..."
    assert len(body["suggestions"]) == 3


@pytest.mark.asyncio
async def test_upstream_failure_is_502() -> None:
    transport = ScriptedTransport(script=[503, 503])

    reply = await _handler(transport).handle(_form())

    assert reply.status_code == 502
    assert _body(reply)["error"].startswith("API error: ")
    assert transport.calls == 2


@pytest.mark.asyncio
async def test_upstream_without_content_is_502() -> None:
    class NoContent(ScriptedTransport):
        def content(self, response: RawResponse) -> str:
            raise UpstreamError("No content in API response", retryable=False)

    reply = await _handler(NoContent()).handle(_form())

    assert reply.status_code == 502
    assert _body(reply)["error"] == "API error: No content in API response"


# =============================================================================
# Construction from config
# =============================================================================


def test_from_config_requires_shared_secret() -> None:
    config = Config(mode="upstream", use_mock=True)

    with pytest.raises(ConfigurationError, match="Shared secret"):
        BackendHandler.from_config(config)


def test_from_config_requires_public_base_url() -> None:
    config = Config(mode="upstream", api_key="sk-test", shared_secret=_SECRET)

    with pytest.raises(ConfigurationError, match="Public base URL"):
        BackendHandler.from_config(config)


@pytest.mark.asyncio
async def test_from_config_mock_round_trip() -> None:
    handler = BackendHandler.from_config(
        Config(mode="upstream", use_mock=True, shared_secret=_SECRET)
    )

    reply = await handler.handle(_form())

    assert reply.status_code == 200
    assert _body(reply)["name"] == "Quartz"
