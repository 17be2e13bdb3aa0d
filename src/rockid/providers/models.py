"""Domain models for the transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Literal

from rockid._http import ResponseStatus, classify_status
from rockid.encoding import percent_encode
from rockid.errors import ConfigurationError

Role = Literal["system", "user"]


@dataclass(frozen=True)
class Message:
    """A role-tagged message: plain text, or text plus image bytes."""

    role: Role
    text: str = ""
    image: bytes | None = None

    def __post_init__(self) -> None:
        """Validate role and content early."""
        if self.role not in ("system", "user"):
            raise ConfigurationError(
                f"Unsupported message role: {self.role!r}",
                hint="Use 'system' or 'user'.",
            )
        if not self.text and not self.image:
            raise ConfigurationError(
                "Message has neither text nor image",
                hint="Pass text=..., image=..., or both.",
            )

    def to_wire(self) -> dict[str, str]:
        """Return the client-to-backend wire shape of this message."""
        item = {"role": self.role, "content": self.text, "message": self.text}
        if self.image:
            item["image"] = percent_encode(self.image)
        return item


@dataclass(frozen=True)
class IdentificationRequest:
    """An ordered list of messages for one identification call."""

    messages: tuple[Message, ...]

    def __post_init__(self) -> None:
        """Normalize to a tuple and require at least one message."""
        object.__setattr__(self, "messages", tuple(self.messages))
        if not self.messages:
            raise ConfigurationError("IdentificationRequest needs at least one message")

    @classmethod
    def for_image(
        cls, image: bytes, *, system_prompt: str, user_prompt: str
    ) -> IdentificationRequest:
        """Build the standard system + user-with-image request."""
        return cls(
            messages=(
                Message(role="system", text=system_prompt),
                Message(role="user", text=user_prompt, image=image),
            )
        )

    @property
    def images(self) -> tuple[bytes, ...]:
        return tuple(m.image for m in self.messages if m.image)

    def messages_json(self) -> str:
        """Serialize messages for the form body; the integrity digest covers this text.

        Raises:
            ConfigurationError: If the payload cannot be serialized.
        """
        try:
            return json.dumps(
                [m.to_wire() for m in self.messages],
                ensure_ascii=False,
                separators=(",", ":"),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                "Failed to encode request", hint="Message text must be valid UTF-8."
            ) from e


@dataclass(frozen=True)
class RawResponse:
    """Opaque response text plus its HTTP-like classification."""

    status_code: int | None
    text: str = ""
    #: Model identifier that produced the answer, when the transport knows it.
    model: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def status(self) -> ResponseStatus:
        return classify_status(self.status_code)

    @property
    def ok(self) -> bool:
        return self.status is ResponseStatus.SUCCESS
