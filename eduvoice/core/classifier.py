"""
Provider error classification.

Decides whether a failed provider call is the credential's fault (bad key,
exhausted quota, rate limit) and can fall back to the next credential, or a
hard failure that must reach the caller.

Provider SDKs do not expose a stable contract for this, so classification
is best-effort and fails closed: anything not recognised is HARD.
Classifiers are strategies; new provider error shapes get a new classifier
instead of edits to the sequencer.
"""

from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Any, FrozenSet, Iterable, Optional, Tuple

import openai


class ErrorKind(Enum):
    """Outcome of classifying a provider error."""
    KEY_OR_QUOTA = auto()  # Try the next credential
    HARD = auto()          # Propagate to the caller


KEY_ERROR_PHRASES: Tuple[str, ...] = (
    "api key",
    "permission denied",
    "quota exceeded",
    "authentication failed",
    "invalid_request",
    "billing",
    "insufficient_quota",
)

KEY_ERROR_STATUSES: FrozenSet[int] = frozenset({401, 403, 429})

# gRPC PERMISSION_DENIED, surfaced by Google client libraries as cause.code
PERMISSION_DENIED_CAUSE_CODE = 7


def _attr(obj: Any, name: str) -> Any:
    """getattr that also reads dict keys and tolerates raising properties."""
    if obj is None:
        return None
    try:
        if isinstance(obj, dict):
            return obj.get(name)
        return getattr(obj, name, None)
    except Exception:
        return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    try:
        return str(value).lower()
    except Exception:
        return ""


class ErrorClassifier(ABC):
    """Strategy for classifying provider errors.

    Implementations must be total: classify never raises.
    """

    @abstractmethod
    def classify(self, error: BaseException) -> ErrorKind:
        ...


class HeuristicErrorClassifier(ErrorClassifier):
    """Classifies by message text, status codes and nested cause/response.

    Checks, any of which marks the error KEY_OR_QUOTA:
    1. Message contains one of the key/quota phrases (case-insensitive)
    2. The error's ``type`` attribute mentions ``api_key``
    3. ``status``, ``status_code`` or ``code`` is 401, 403 or 429
    4. The nested cause carries the permission-denied code
    5. The nested response body mentions an API key
    """

    def __init__(
        self,
        phrases: Iterable[str] = KEY_ERROR_PHRASES,
        statuses: Iterable[int] = KEY_ERROR_STATUSES,
        cause_code: Optional[int] = PERMISSION_DENIED_CAUSE_CODE
    ):
        self.phrases = tuple(p.lower() for p in phrases)
        self.statuses = frozenset(statuses)
        self.cause_code = cause_code

    def classify(self, error: BaseException) -> ErrorKind:
        try:
            if (self._matches_message(error)
                    or self._matches_type(error)
                    or self._matches_status(error)
                    or self._matches_cause(error)
                    or self._matches_response(error)):
                return ErrorKind.KEY_OR_QUOTA
        except Exception:
            # Unpredictable error shapes classify as hard, never raise
            return ErrorKind.HARD
        return ErrorKind.HARD

    def _matches_message(self, error: BaseException) -> bool:
        message = _text(error) + " " + _text(_attr(error, "message"))
        return any(phrase in message for phrase in self.phrases)

    def _matches_type(self, error: BaseException) -> bool:
        return "api_key" in _text(_attr(error, "type"))

    def _matches_status(self, error: BaseException) -> bool:
        for name in ("status", "status_code", "code"):
            value = _attr(error, name)
            if isinstance(value, bool):
                continue
            if isinstance(value, int) and value in self.statuses:
                return True
            if isinstance(value, str) and value.isdigit() and int(value) in self.statuses:
                return True
        return False

    def _matches_cause(self, error: BaseException) -> bool:
        if self.cause_code is None:
            return False
        for cause in (_attr(error, "cause"), _attr(error, "__cause__")):
            code = _attr(cause, "code")
            if code == self.cause_code and not isinstance(code, bool):
                return True
        return False

    def _matches_response(self, error: BaseException) -> bool:
        response = _attr(error, "response")
        candidates = [
            _attr(_attr(_attr(response, "data"), "error"), "message"),
            _attr(_attr(_attr(error, "body"), "error"), "message"),
            _attr(error, "body"),
        ]
        # httpx.Response exposes the raw body as .text
        if response is not None and not isinstance(response, dict):
            candidates.append(_attr(response, "text"))
        return any("api key" in _text(value) for value in candidates)


class OpenAIErrorClassifier(ErrorClassifier):
    """Classifies the typed exceptions raised by the openai SDK."""

    KEY_ERROR_TYPES = (
        openai.AuthenticationError,
        openai.PermissionDeniedError,
        openai.RateLimitError,
    )

    def classify(self, error: BaseException) -> ErrorKind:
        if isinstance(error, self.KEY_ERROR_TYPES):
            return ErrorKind.KEY_OR_QUOTA
        return ErrorKind.HARD


class ChainedErrorClassifier(ErrorClassifier):
    """Asks each classifier in turn; the first KEY_OR_QUOTA verdict wins."""

    def __init__(self, *classifiers: ErrorClassifier):
        if not classifiers:
            raise ValueError("at least one classifier is required")
        self.classifiers = classifiers

    def classify(self, error: BaseException) -> ErrorKind:
        for classifier in self.classifiers:
            try:
                kind = classifier.classify(error)
            except Exception:
                kind = ErrorKind.HARD
            if kind is ErrorKind.KEY_OR_QUOTA:
                return kind
        return ErrorKind.HARD


def default_classifier() -> ErrorClassifier:
    """SDK-typed checks first, then the message heuristics."""
    return ChainedErrorClassifier(OpenAIErrorClassifier(), HeuristicErrorClassifier())
