"""
Provider attempt sequencing.

Tries an ordered list of credentials against the provider: user-supplied
keys first, the platform key last. Stops at the first success. Falls
through to the next credential only when the failure is classified as a
key or quota problem.

Sequencing rules:
1. Candidates are tried strictly in order, never in parallel
2. Each credential is invoked at most once per call
3. Candidates without a secret are skipped without classification
4. The platform candidate's own failure propagates unclassified
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from eduvoice.observability import get_logger

from .classifier import ErrorClassifier, ErrorKind, default_classifier

logger = get_logger(__name__)

USER_SOURCE = "user"
PLATFORM_SOURCE = "platform"


@dataclass(frozen=True)
class CredentialCandidate:
    """One credential the sequencer may try."""
    source_label: str
    secret: Optional[str]
    priority: int

    @property
    def has_secret(self) -> bool:
        return bool(self.secret and self.secret.strip())

    def __repr__(self) -> str:
        # Never render the secret itself
        return (
            f"CredentialCandidate(source_label={self.source_label!r}, "
            f"has_secret={self.has_secret}, priority={self.priority})"
        )


@dataclass(frozen=True)
class ProviderAttemptResult:
    """Outcome of a sequencer run."""
    succeeded: bool
    output: Optional[Any] = None
    classified_error: Optional[ErrorKind] = None
    source_label: Optional[str] = None
    attempts: int = 0


def build_candidates(
    user_secret: Optional[str],
    platform_secret: Optional[str]
) -> List[CredentialCandidate]:
    """Assemble the candidate list: optional user key, then the platform key.

    Without a user key the list holds only the platform candidate.
    """
    candidates = []
    if user_secret and user_secret.strip():
        candidates.append(CredentialCandidate(USER_SOURCE, user_secret.strip(), 0))
    candidates.append(
        CredentialCandidate(PLATFORM_SOURCE, platform_secret, len(candidates))
    )
    return candidates


class ProviderAttemptSequencer:
    """Runs the credential fallback chain.

    Args:
        classifier: Strategy deciding whether a failure may fall back
        always_try_final_fallback: When True, a hard error in the initial
            pass ends that pass but the platform candidate is still tried.
            When False (default), hard errors propagate immediately.
    """

    def __init__(
        self,
        classifier: Optional[ErrorClassifier] = None,
        always_try_final_fallback: bool = False
    ):
        self.classifier = classifier or default_classifier()
        self.always_try_final_fallback = always_try_final_fallback

    def attempt(
        self,
        candidates: Sequence[CredentialCandidate],
        invoke: Callable[[CredentialCandidate], Any]
    ) -> ProviderAttemptResult:
        """Try candidates in order until one returns.

        Args:
            candidates: Ordered credentials; the last is the platform default
            invoke: Provider call for one credential

        Returns:
            ProviderAttemptResult; succeeded is False only when every user
            key failed with a key error and the platform candidate has no
            secret configured

        Raises:
            ValueError: If candidates is empty
            Exception: A hard error from a user key (unless
                always_try_final_fallback), or any error from the platform call
        """
        if not candidates:
            raise ValueError("at least one credential candidate is required")

        *initial, final = candidates
        attempts = 0
        last_kind: Optional[ErrorKind] = None
        hard_error: Optional[Exception] = None

        for candidate in initial:
            if not candidate.has_secret:
                logger.debug("credential_skipped", source=candidate.source_label)
                continue

            attempts += 1
            logger.info("credential_attempt", source=candidate.source_label)
            try:
                output = invoke(candidate)
            except Exception as exc:
                kind = self.classifier.classify(exc)
                last_kind = kind
                logger.warning(
                    "credential_failed",
                    source=candidate.source_label,
                    error_kind=kind.name,
                    error=str(exc)
                )
                if kind is ErrorKind.KEY_OR_QUOTA:
                    continue
                if not self.always_try_final_fallback:
                    raise
                hard_error = exc
                break
            return ProviderAttemptResult(
                succeeded=True,
                output=output,
                source_label=candidate.source_label,
                attempts=attempts
            )

        if not final.has_secret:
            logger.error("platform_credential_missing", source=final.source_label)
            if hard_error is not None:
                raise hard_error
            return ProviderAttemptResult(
                succeeded=False,
                classified_error=last_kind,
                attempts=attempts
            )

        attempts += 1
        logger.info("credential_fallback", source=final.source_label)
        output = invoke(final)
        return ProviderAttemptResult(
            succeeded=True,
            output=output,
            source_label=final.source_label,
            attempts=attempts
        )
