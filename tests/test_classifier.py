"""
Unit tests for provider error classification.

Tests message, status, cause and response checks plus SDK-typed errors.
"""

import httpx
import openai
import pytest

from eduvoice.core.classifier import (
    ChainedErrorClassifier,
    ErrorClassifier,
    ErrorKind,
    HeuristicErrorClassifier,
    OpenAIErrorClassifier,
    default_classifier,
)


class ProviderError(Exception):
    """Exception carrying arbitrary provider attributes."""

    def __init__(self, text="", /, **attrs):
        super().__init__(text)
        for name, value in attrs.items():
            setattr(self, name, value)


class ExplodingError(Exception):
    """Exception whose attributes raise when read."""

    @property
    def status(self):
        raise RuntimeError("boom")

    def __str__(self):
        raise RuntimeError("cannot render")


def _status_error(cls, status_code, message="error"):
    request = httpx.Request("POST", "https://provider.test/v1/chat/completions")
    response = httpx.Response(status_code, request=request)
    return cls(message, response=response, body=None)


class TestHeuristicErrorClassifier:
    """Test heuristic classification of untyped errors."""

    def setup_method(self):
        self.classifier = HeuristicErrorClassifier()

    @pytest.mark.parametrize("message", [
        "API key not valid. Please pass a valid API key.",
        "Permission denied on resource",
        "Quota exceeded for quota metric",
        "Authentication failed",
        "invalid_request: bad key",
        "Billing account disabled",
        "insufficient_quota",
    ])
    def test_key_phrases(self, message):
        assert self.classifier.classify(ProviderError(message)) is ErrorKind.KEY_OR_QUOTA

    def test_phrase_match_is_case_insensitive(self):
        error = ProviderError("QUOTA EXCEEDED")
        assert self.classifier.classify(error) is ErrorKind.KEY_OR_QUOTA

    def test_message_attribute_checked(self):
        error = ProviderError("", message="Your API key was rejected")
        assert self.classifier.classify(error) is ErrorKind.KEY_OR_QUOTA

    def test_type_mentions_api_key(self):
        error = ProviderError("rejected", type="invalid_api_key")
        assert self.classifier.classify(error) is ErrorKind.KEY_OR_QUOTA

    @pytest.mark.parametrize("attr", ["status", "status_code", "code"])
    @pytest.mark.parametrize("value", [401, 403, 429, "429"])
    def test_key_statuses(self, attr, value):
        error = ProviderError("request failed", **{attr: value})
        assert self.classifier.classify(error) is ErrorKind.KEY_OR_QUOTA

    @pytest.mark.parametrize("value", [400, 500, 503, True])
    def test_other_statuses_are_hard(self, value):
        error = ProviderError("request failed", status=value)
        assert self.classifier.classify(error) is ErrorKind.HARD

    def test_permission_denied_cause_code(self):
        error = ProviderError("rpc failed", cause=ProviderError("inner", code=7))
        assert self.classifier.classify(error) is ErrorKind.KEY_OR_QUOTA

    def test_chained_cause_code(self):
        try:
            try:
                raise ProviderError("inner", code=7)
            except ProviderError as inner:
                raise ProviderError("outer") from inner
        except ProviderError as outer:
            assert self.classifier.classify(outer) is ErrorKind.KEY_OR_QUOTA

    def test_response_data_mentions_api_key(self):
        response = {"data": {"error": {"message": "API key expired"}}}
        error = ProviderError("bad request", response=response)
        assert self.classifier.classify(error) is ErrorKind.KEY_OR_QUOTA

    def test_body_mentions_api_key(self):
        error = ProviderError("bad request", body={"error": {"message": "API key invalid"}})
        assert self.classifier.classify(error) is ErrorKind.KEY_OR_QUOTA

    def test_unrelated_error_is_hard(self):
        assert self.classifier.classify(ProviderError("model overloaded")) is ErrorKind.HARD

    def test_plain_exception_is_hard(self):
        assert self.classifier.classify(ValueError("bad prompt")) is ErrorKind.HARD

    def test_never_raises(self):
        assert self.classifier.classify(ExplodingError()) is ErrorKind.HARD

    def test_custom_phrases(self):
        classifier = HeuristicErrorClassifier(phrases=["token revoked"], statuses=[])
        assert classifier.classify(ProviderError("Token revoked")) is ErrorKind.KEY_OR_QUOTA
        assert classifier.classify(ProviderError("x", status=429)) is ErrorKind.HARD


class TestOpenAIErrorClassifier:
    """Test classification of typed openai SDK errors."""

    def setup_method(self):
        self.classifier = OpenAIErrorClassifier()

    @pytest.mark.parametrize("cls,status", [
        (openai.AuthenticationError, 401),
        (openai.PermissionDeniedError, 403),
        (openai.RateLimitError, 429),
    ])
    def test_key_errors(self, cls, status):
        error = _status_error(cls, status)
        assert self.classifier.classify(error) is ErrorKind.KEY_OR_QUOTA

    def test_server_error_is_hard(self):
        error = _status_error(openai.InternalServerError, 500)
        assert self.classifier.classify(error) is ErrorKind.HARD

    def test_untyped_error_is_hard(self):
        assert self.classifier.classify(ProviderError("API key invalid")) is ErrorKind.HARD


class TestChainedErrorClassifier:
    """Test classifier composition."""

    def test_first_key_verdict_wins(self):
        classifier = ChainedErrorClassifier(OpenAIErrorClassifier(), HeuristicErrorClassifier())
        assert classifier.classify(ProviderError("API key invalid")) is ErrorKind.KEY_OR_QUOTA

    def test_all_hard(self):
        classifier = ChainedErrorClassifier(OpenAIErrorClassifier(), HeuristicErrorClassifier())
        assert classifier.classify(RuntimeError("timeout")) is ErrorKind.HARD

    def test_raising_member_counts_as_hard(self):
        class Broken(ErrorClassifier):
            def classify(self, error):
                raise RuntimeError("classifier bug")

        classifier = ChainedErrorClassifier(Broken(), HeuristicErrorClassifier())
        assert classifier.classify(ProviderError("x", status=429)) is ErrorKind.KEY_OR_QUOTA
        assert classifier.classify(ProviderError("x")) is ErrorKind.HARD

    def test_requires_members(self):
        with pytest.raises(ValueError, match="at least one classifier"):
            ChainedErrorClassifier()

    def test_default_classifier(self):
        classifier = default_classifier()
        assert classifier.classify(_status_error(openai.RateLimitError, 429)) is ErrorKind.KEY_OR_QUOTA
        assert classifier.classify(ProviderError("quota exceeded")) is ErrorKind.KEY_OR_QUOTA
        assert classifier.classify(ProviderError("bad input")) is ErrorKind.HARD
