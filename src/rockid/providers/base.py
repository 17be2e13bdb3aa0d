"""Transport protocol: the minimal interface the dispatcher drives."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from rockid.providers.models import IdentificationRequest, RawResponse


@runtime_checkable
class Transport(Protocol):
    """One network attempt for an identification request.

    Implementations return a `RawResponse` for every HTTP answer, whatever its
    status, and raise `rockid.errors.NetworkError` for transport-level
    failures (timeouts, DNS, TLS, dropped connections). They never retry:
    retries belong to the dispatcher. Cancelling the awaiting task aborts the
    in-flight call.
    """

    name: str

    async def send(
        self, request: IdentificationRequest, *, timeout: float
    ) -> RawResponse:
        """Perform one attempt and return the raw answer."""
        ...

    def content(self, response: RawResponse) -> str:
        """Return the model's free-text answer carried by a successful response.

        Raises `rockid.errors.UpstreamError` when the body is malformed.
        """
        ...

    async def aclose(self) -> None:
        """Release underlying client resources."""
        ...
