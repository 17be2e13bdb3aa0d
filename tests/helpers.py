"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off transport classes as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
from types import SimpleNamespace
from typing import Any

from rockid.providers.models import IdentificationRequest, Message, RawResponse

QUARTZ_JSON = json.dumps(
    {
        "name": "Quartz",
        "category": "Mineral",
        "confidence": 0.92,
        "physicalProperties": {"color": "Colorless", "hardness": "7", "luster": "Vitreous"},
        "chemicalProperties": {
            "formula": "SiO2",
            "composition": "Silicon dioxide",
            "elements": [{"name": "Silicon", "symbol": "Si", "percentage": 46.7}],
        },
        "formation": {"formationType": "Igneous", "commonLocations": ["Brazil"]},
        "uses": {"industrial": ["Glass"], "funFacts": ["Quartz is piezoelectric."]},
    }
)


def make_request(text: str = "identify") -> IdentificationRequest:
    return IdentificationRequest(messages=(Message(role="user", text=text),))


@dataclass
class ScriptedTransport:
    """Transport that plays back a scripted sequence of responses/exceptions.

    Items may be a `RawResponse`, an ``int`` status code (empty body), or an
    exception to raise. When the script runs out, returns 200 with `default`.
    """

    script: list[RawResponse | int | BaseException] = field(default_factory=list)
    default: str = QUARTZ_JSON
    name: str = "scripted"
    calls: int = 0
    timeouts: list[float] = field(default_factory=list)
    requests: list[IdentificationRequest] = field(default_factory=list)
    closed: bool = False

    async def send(self, request: IdentificationRequest, *, timeout: float) -> RawResponse:
        self.requests.append(request)
        self.calls += 1
        self.timeouts.append(timeout)
        if not self.script:
            return RawResponse(status_code=200, text=self.default)
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, int):
            return RawResponse(status_code=item)
        return item

    def content(self, response: RawResponse) -> str:
        return response.text

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class GateTransport(ScriptedTransport):
    """Transport that blocks inside `send` until released (cancellation tests)."""

    started: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)

    async def send(self, request: IdentificationRequest, *, timeout: float) -> RawResponse:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return RawResponse(status_code=200, text=self.default)


@dataclass
class FakeCompletions:
    """Stands in for ``client.chat.completions.with_raw_response``."""

    outcomes: list[Any] = field(default_factory=list)
    bodies: list[dict[str, Any]] = field(default_factory=list)

    async def create(self, **kwargs: Any) -> Any:
        self.bodies.append(kwargs)
        item = self.outcomes.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class FakeOpenAIClient:
    """Minimal ``AsyncOpenAI`` shape used by `OpenAITransport`."""

    def __init__(self, outcomes: list[Any]) -> None:
        self.completions = FakeCompletions(outcomes=list(outcomes))
        self.chat = SimpleNamespace(
            completions=SimpleNamespace(with_raw_response=self.completions)
        )
        self.closed = False

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeRawHTTP:
    status_code: int
    text: str


@dataclass
class FakeRawResponse:
    """What ``with_raw_response.create`` returns: exposes ``http_response``."""

    http_response: FakeRawHTTP


def chat_completion(content: str, *, status_code: int = 200) -> FakeRawResponse:
    body = {"choices": [{"message": {"role": "assistant", "content": content}}]}
    return FakeRawResponse(FakeRawHTTP(status_code, json.dumps(body)))
