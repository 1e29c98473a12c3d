"""Tests for upload policies and intake checks."""
import pytest

from mediavault.config import MB
from mediavault.errors import ValidationError
from mediavault.services.intake import (
    UploadPolicy,
    batch_upload_policy,
    check_count,
    check_size,
    check_type,
    effective_ceiling,
    event_video_policy,
    single_upload_policy,
    validate,
)


class TestTypeAllowLists:
    """Each upload route has its own allow-list."""

    @pytest.mark.parametrize("mime,expected", [
        ("video/mp4", True),
        ("video/x-matroska", True),
        ("VIDEO/MP4", True),
        ("video/mp4; codecs=avc1", True),
        ("image/png", False),
        ("text/plain", False),
        ("", False),
        (None, False),
    ])
    def test_single_upload_accepts_any_video(self, mime, expected):
        assert single_upload_policy().allows(mime) is expected

    @pytest.mark.parametrize("mime,expected", [
        ("video/webm", True),
        ("image/jpeg", True),
        ("audio/mpeg", False),
        ("application/pdf", False),
    ])
    def test_batch_upload_accepts_video_and_images(self, mime, expected):
        assert batch_upload_policy().allows(mime) is expected

    @pytest.mark.parametrize("mime,expected", [
        ("video/mp4", True),
        ("video/quicktime", True),
        ("video/webm", True),
        ("video/x-m4v", True),
        ("video/mov", True),
        ("video/x-matroska", False),
        ("video/avi", False),
        ("image/png", False),
    ])
    def test_event_video_accepts_listed_containers_only(self, mime, expected):
        assert event_video_policy().allows(mime) is expected

    def test_check_type_raises_policy_message(self):
        with pytest.raises(ValidationError, match="Only video files are allowed."):
            check_type("text/plain", single_upload_policy())


class TestSizeCeilings:
    def test_defaults(self):
        assert single_upload_policy().max_bytes == 500 * MB
        assert event_video_policy().max_bytes == 400 * MB
        assert batch_upload_policy().max_files == 20

    def test_at_limit_is_accepted(self):
        policy = UploadPolicy(name="t", max_bytes=10, rejection_message="no")
        check_size(10, policy)

    def test_one_byte_over_is_rejected(self):
        policy = UploadPolicy(name="t", max_bytes=10, rejection_message="no")
        with pytest.raises(ValidationError, match="File too large"):
            check_size(11, policy)

    def test_quota_ceiling_reports_quota(self):
        policy = UploadPolicy(name="t", max_bytes=10, rejection_message="no")
        with pytest.raises(ValidationError, match="Upload quota exceeded"):
            check_size(6, policy, ceiling=5)

    def test_oversized_file_reported_before_quota(self):
        policy = UploadPolicy(name="t", max_bytes=10, rejection_message="no")
        with pytest.raises(ValidationError, match=r"File too large \(limit 10 bytes\)"):
            check_size(11, policy, ceiling=5)

    def test_policy_reads_current_settings(self, monkeypatch):
        from mediavault.config import settings
        monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE", 1234)
        assert single_upload_policy().max_bytes == 1234

    @pytest.mark.parametrize("remaining,expected", [
        (None, 100),
        (1000, 100),
        (40, 40),
        (-5, 0),
    ])
    def test_effective_ceiling(self, remaining, expected):
        policy = UploadPolicy(name="t", max_bytes=100, rejection_message="no")
        assert effective_ceiling(policy, remaining) == expected


class TestCountAndDecision:
    def test_empty_batch(self):
        with pytest.raises(ValidationError, match="No files uploaded"):
            check_count(0, batch_upload_policy())

    def test_too_many_files(self):
        with pytest.raises(ValidationError, match="Too many files"):
            check_count(21, batch_upload_policy())

    def test_validate_returns_decision(self):
        policy = single_upload_policy()
        assert validate("video/mp4", 1, policy).accepted
        rejected = validate("text/plain", 1, policy)
        assert not rejected.accepted
        assert rejected.reason == "Only video files are allowed."
        oversized = validate("video/mp4", policy.max_bytes + 1, policy)
        assert not oversized.accepted
        assert "too large" in oversized.reason
