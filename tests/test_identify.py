"""End-to-end identification through dispatch, normalization and building."""

from __future__ import annotations

import pytest

from rockid.config import Config
from rockid.connectivity import ConnectivityMonitor, ConnectivityStatus
from rockid.errors import (
    ConfigurationError,
    IdentificationFailedError,
    NetworkError,
    NoConnectionError,
    ParseError,
)
from rockid.identify import identify
from rockid.prompts import SYSTEM_PROMPT, USER_PROMPT
from rockid.providers.mock import MockTransport
from tests.helpers import ScriptedTransport

pytestmark = pytest.mark.integration

_PHOTO = b"\xff\xd8\xff\xe0granite"


@pytest.fixture
def config(fast_retry) -> Config:
    return Config(use_mock=True, retry=fast_retry)


@pytest.mark.asyncio
async def test_mock_config_end_to_end(config: Config) -> None:
    result = await identify(_PHOTO, config=config)

    assert result.name == "Quartz"
    assert result.category == "Mineral"
    assert len(result.chemical_properties.elements) == 2


@pytest.mark.asyncio
async def test_request_carries_prompts_and_photo(config: Config) -> None:
    transport = ScriptedTransport()

    await identify(_PHOTO, config=config, transport=transport)

    system, user = transport.requests[0].messages
    assert system.text == SYSTEM_PROMPT
    assert user.text == USER_PROMPT
    assert user.image == _PHOTO


@pytest.mark.asyncio
async def test_flat_answer_is_built(config: Config) -> None:
    transport = ScriptedTransport(
        default="NAME: Granite\nCATEGORY: Rock\nCONFIDENCE: 0.8\nCOLOR: Speckled grey\n"
    )

    result = await identify(_PHOTO, config=config, transport=transport)

    assert result.name == "Granite"
    assert result.confidence == pytest.approx(0.8)
    assert result.physical_properties.color == "Speckled grey"
    assert result.uses.fun_facts


@pytest.mark.asyncio
async def test_caller_owned_transport_is_not_closed(config: Config) -> None:
    transport = ScriptedTransport()

    await identify(_PHOTO, config=config, transport=transport)

    assert not transport.closed


@pytest.mark.asyncio
async def test_error_answer_raises_with_suggestions(config: Config) -> None:
    transport = ScriptedTransport(default="ERROR: Not a rock\nSUGGESTION1: Try again\n")

    with pytest.raises(IdentificationFailedError) as exc_info:
        await identify(_PHOTO, config=config, transport=transport)

    assert exc_info.value.suggestions == ("Try again",)


@pytest.mark.asyncio
async def test_unparseable_answer_keeps_raw_text(config: Config) -> None:
    transport = ScriptedTransport(default="Sorry, I can't tell.")

    with pytest.raises(ParseError) as exc_info:
        await identify(_PHOTO, config=config, transport=transport)

    assert exc_info.value.raw_text == "Sorry, I can't tell."


@pytest.mark.asyncio
async def test_retries_then_surfaces_network_error(config: Config) -> None:
    transport = ScriptedTransport(script=[500, 500, 500, 500])

    with pytest.raises(NetworkError) as exc_info:
        await identify(_PHOTO, config=config, transport=transport)

    assert transport.calls == 4
    assert exc_info.value.suggestions


@pytest.mark.asyncio
async def test_offline_fails_fast(config: Config) -> None:
    transport = MockTransport()
    monitor = ConnectivityMonitor(ConnectivityStatus.UNSATISFIED)

    with pytest.raises(NoConnectionError):
        await identify(_PHOTO, config=config, monitor=monitor, transport=transport)

    assert transport.calls == 0


@pytest.mark.asyncio
async def test_empty_image_is_rejected(config: Config) -> None:
    with pytest.raises(ConfigurationError, match="Failed to process image"):
        await identify(b"", config=config)
