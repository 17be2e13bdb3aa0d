"""Client-to-backend transport: form-encoded POST with an integrity digest."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import httpx

from rockid.providers._errors import wrap_transport_error
from rockid.providers.models import RawResponse

if TYPE_CHECKING:
    from rockid.integrity import IntegrityCheck
    from rockid.providers.models import IdentificationRequest

logger = logging.getLogger(__name__)

_HEADERS = {
    "User-Agent": "rockid/1.0",
    "Cache-Control": "no-cache",
}


class BackendTransport:
    """POST ``messages`` + ``hash`` to the backend proxy."""

    name = "backend"

    def __init__(
        self,
        url: str,
        integrity: IntegrityCheck,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize with the backend URL and the integrity check to sign with."""
        self.url = url
        self.integrity = integrity
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers=_HEADERS, follow_redirects=True)
        return self._client

    def build_form(self, request: IdentificationRequest) -> dict[str, str]:
        """Return the form fields for *request* (raises ``ConfigurationError``)."""
        messages = request.messages_json()
        return {"messages": messages, "hash": self.integrity.sign(messages)}

    async def send(
        self, request: IdentificationRequest, *, timeout: float
    ) -> RawResponse:
        """Perform one POST and return the raw answer."""
        form = self.build_form(request)
        logger.debug(
            "POST %s (messages=%d chars)", self.url, len(form["messages"])
        )
        try:
            response = await self._get_client().post(
                self.url, data=form, timeout=timeout
            )
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            raise wrap_transport_error(
                e, transport=self.name, message="Backend request failed"
            ) from e
        return RawResponse(
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
        )

    def content(self, response: RawResponse) -> str:
        """The backend replies with the (already normalized) answer text."""
        return response.text

    async def aclose(self) -> None:
        """Close the HTTP client if this transport created it."""
        client, self._client = self._client, None
        if client is not None and self._owns_client:
            await client.aclose()
