"""Exception hierarchy for rockid.

Every error carries a short message plus an ordered tuple of actionable
``suggestions`` so callers can show something useful instead of a raw
technical failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Literal

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

ParseErrorKind = Literal["no-candidate-found", "repair-failed", "missing-required-fields"]


class RockIdError(Exception):
    """Base exception for all rockid errors."""

    default_suggestions: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        suggestions: Iterable[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.suggestions: tuple[str, ...] = (
            tuple(suggestions) if suggestions is not None else self.default_suggestions
        )


class ConfigurationError(RockIdError):
    """Configuration validation failed, or the payload could not be built."""


class DispatchError(RockIdError):
    """Base class for failures surfaced by the request dispatcher."""


class NetworkError(DispatchError):
    """Transport-level or HTTP-level failure.

    ``transient`` failures were retried internally before being surfaced;
    permanent ones are surfaced on the first occurrence.
    """

    default_suggestions = (
        "Check your internet connection",
        "Try again in a few moments",
    )

    def __init__(
        self,
        message: str,
        *,
        transient: bool,
        status_code: int | None = None,
        attempts: int | None = None,
        hint: str | None = None,
        suggestions: Iterable[str] | None = None,
    ) -> None:
        super().__init__(message, hint=hint, suggestions=suggestions)
        self.transient = transient
        self.status_code = status_code
        self.attempts = attempts


class NoConnectionError(NetworkError):
    """Connectivity is known to be unavailable; no network call was made."""

    default_suggestions = (
        "Connect to Wi-Fi or cellular data",
        "Try again once you are back online",
    )

    def __init__(
        self,
        message: str = "No internet connection",
        *,
        attempts: int | None = None,
        hint: str | None = None,
        suggestions: Iterable[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            transient=True,
            attempts=attempts,
            hint=hint,
            suggestions=suggestions,
        )


class DispatchCancelledError(DispatchError):
    """The call was cancelled by its owner. Never retried."""


class AuthError(RockIdError):
    """The request-integrity check failed (digest mismatch or HTTP 401)."""

    default_suggestions = ("Update the app to the latest version",)


class UpstreamError(RockIdError):
    """The provider (or backend) answered with a non-2xx status or a malformed body."""

    default_suggestions = ("Try again in a few moments",)

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
        hint: str | None = None,
        suggestions: Iterable[str] | None = None,
    ) -> None:
        super().__init__(message, hint=hint, suggestions=suggestions)
        self.status_code = status_code
        self.retryable = retryable


class ParseError(RockIdError):
    """The response text could not be turned into a usable record.

    ``raw_text`` always holds the best-effort text so a caller can display a
    raw fallback instead of nothing.
    """

    default_suggestions = (
        "Try taking a clearer photo of the rock",
        "Ensure good lighting and focus",
        "Position the rock against a neutral background",
    )

    def __init__(
        self,
        message: str,
        *,
        kind: ParseErrorKind,
        raw_text: str = "",
        hint: str | None = None,
        suggestions: Iterable[str] | None = None,
    ) -> None:
        super().__init__(message, hint=hint, suggestions=suggestions)
        self.kind = kind
        self.raw_text = raw_text


class MissingRequiredFieldsError(ParseError):
    """``name``/``category`` are absent after every repair."""

    def __init__(
        self, missing: Iterable[str], *, raw_text: str = "", hint: str | None = None
    ) -> None:
        self.missing = tuple(missing)
        super().__init__(
            f"Missing required fields: {', '.join(self.missing)}",
            kind="missing-required-fields",
            raw_text=raw_text,
            hint=hint,
        )


class RecordValidationError(RockIdError):
    """Typed-result construction failed."""

    default_suggestions = ("Try again with a clearer image",)


class IdentificationFailedError(RockIdError):
    """The provider explicitly reported that identification was not possible."""

    default_suggestions = (
        "Ensure the image is clear and well-lit",
        "Make sure your rock is the main subject in the photo",
        "Try a different angle or lighting condition",
    )


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
