import pytest

from mockup_studio.errors import (
    ContentBlocked,
    NoCredentialsAvailable,
    QuotaExhausted,
    StudioError,
    TransientProviderError,
    failure_category,
    is_quota_error,
    translate_error,
)


class StatusError(Exception):
    def __init__(self, status):
        super().__init__("boom")
        self.status = status


class TestIsQuotaError:

    @pytest.mark.parametrize("message", [
        "Quota exceeded for project",
        "Rate LIMIT reached",
        "HTTP 429 Too Many Requests",
        "RESOURCE_EXHAUSTED",
    ])
    def test_message_markers(self, message):
        assert is_quota_error(RuntimeError(message))

    def test_status_attribute(self):
        assert is_quota_error(StatusError(429))
        assert not is_quota_error(StatusError(500))

    def test_plain_failure(self):
        assert not is_quota_error(RuntimeError("connection reset"))

    def test_typed_quota(self):
        assert is_quota_error(QuotaExhausted("x"))


class TestTranslateError:

    def test_studio_errors_pass_through(self):
        err = ContentBlocked("SAFETY")
        assert translate_error(err) is err

    def test_quota(self):
        assert isinstance(translate_error(RuntimeError("quota exceeded")), QuotaExhausted)

    def test_other(self):
        translated = translate_error(RuntimeError("socket closed"))
        assert isinstance(translated, TransientProviderError)
        assert isinstance(translated, StudioError)
        assert "socket closed" in str(translated)


class TestFailureCategory:

    def test_typed(self):
        assert failure_category(ContentBlocked("SAFETY", stage="finish")) == "blocked"
        assert failure_category(QuotaExhausted("q")) == "busy"
        assert failure_category(NoCredentialsAvailable()) == "busy"

    def test_string_sniffing(self):
        assert failure_category(RuntimeError("Safety filter")) == "blocked"
        assert failure_category(RuntimeError("resource exhausted")) == "busy"
        assert failure_category(RuntimeError("bad gateway")) == "failed"

    def test_blocked_message_wording(self):
        assert str(ContentBlocked("SAFETY")) == "Generation blocked: SAFETY"
        assert str(ContentBlocked("RECITATION", stage="finish")) == "Generation stopped: RECITATION"
