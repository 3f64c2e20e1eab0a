"""Tests for the retrying extraction client and the timestamp verifier."""

from __future__ import annotations

import pytest

from conftest import FakeMetadataService, captured, make_item
from reelkeeper.ingestion import (
    NO_CAPTURE_DATE_REASON,
    RetryingExtractionClient,
    TimestampVerifier,
    VerificationStatus,
)
from reelkeeper.sources.errors import CredentialsExpiredError, ExtractionError


def _client(service: FakeMetadataService, sleeps: list[float]) -> RetryingExtractionClient:
    return RetryingExtractionClient(
        service, max_attempts=3, backoff_seconds=1.0, sleep=sleeps.append
    )


def test_transient_failures_are_retried_with_growing_delays() -> None:
    sleeps: list[float] = []
    service = FakeMetadataService(
        {
            "a.mov": [
                ExtractionError("overloaded", error_class="transient"),
                ExtractionError("overloaded", error_class="transient"),
                captured(2024, 1, 5),
            ]
        }
    )

    metadata = _client(service, sleeps).extract("a.mov")

    assert metadata.captured_at is not None
    assert service.calls == ["a.mov", "a.mov", "a.mov"]
    assert sleeps == [1.0, 2.0]


def test_transient_failures_exhaust_attempts() -> None:
    sleeps: list[float] = []
    service = FakeMetadataService({"a.mov": ExtractionError("busy", error_class="transient")})

    with pytest.raises(ExtractionError, match="busy"):
        _client(service, sleeps).extract("a.mov")

    assert len(service.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_permanent_failures_are_not_retried() -> None:
    sleeps: list[float] = []
    service = FakeMetadataService({"a.mov": ExtractionError("corrupt", error_class="permanent")})

    with pytest.raises(ExtractionError):
        _client(service, sleeps).extract("a.mov")

    assert service.calls == ["a.mov"]
    assert sleeps == []


def test_authentication_failures_surface_as_credentials_expired() -> None:
    service = FakeMetadataService(
        {"a.mov": ExtractionError("token expired", error_class="authentication")}
    )

    with pytest.raises(CredentialsExpiredError):
        _client(service, []).extract("a.mov")

    assert service.calls == ["a.mov"]


def test_client_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        RetryingExtractionClient(FakeMetadataService({}), max_attempts=0)


def test_full_verification_classifies_every_item() -> None:
    service = FakeMetadataService(
        {
            "good.mov": captured(2024, 1, 1),
            "bad.mov": ExtractionError("unreadable"),
        }
    )
    items = [make_item("good.mov"), make_item("plain.mov"), make_item("bad.mov")]

    report = TimestampVerifier(_client(service, [])).verify(items)

    statuses = {result.identity: result.status for result in report.results}
    assert statuses == {
        "good.mov": VerificationStatus.VERIFIED,
        "plain.mov": VerificationStatus.UNVERIFIABLE,
        "bad.mov": VerificationStatus.ERROR,
    }
    assert report.get("plain.mov").error_detail == NO_CAPTURE_DATE_REASON
    assert report.get("bad.mov").error_detail == "unreadable"
    assert report.counts() == {"pending": 0, "verified": 1, "unverifiable": 1, "error": 1}
    assert [result.identity for result in report.rejected()] == ["plain.mov", "bad.mov"]


def test_targeted_verification_leaves_verified_items_untouched() -> None:
    service = FakeMetadataService(
        {
            "good.mov": captured(2024, 1, 1),
            "bad.mov": [ExtractionError("unreadable"), captured(2024, 2, 2)],
        }
    )
    verifier = TimestampVerifier(_client(service, []))
    items = [make_item("good.mov"), make_item("bad.mov")]
    first = verifier.verify(items)
    verified_before = first.get("good.mov").model_copy(deep=True)
    service.calls.clear()

    report = verifier.verify(items + [make_item("new.mov")], previous=first, targeted=True)

    assert service.calls == ["bad.mov", "new.mov"]
    assert report.get("good.mov") == verified_before
    assert report.get("bad.mov").status is VerificationStatus.VERIFIED
    assert report.get("bad.mov").error_detail is None
    assert report.get("new.mov").status is VerificationStatus.UNVERIFIABLE


def test_targeted_verification_requires_previous_report() -> None:
    with pytest.raises(ValueError):
        TimestampVerifier(_client(FakeMetadataService({}), [])).verify([], targeted=True)


def test_credentials_failure_aborts_remaining_items() -> None:
    service = FakeMetadataService(
        {
            "a.mov": captured(2024, 1, 1),
            "b.mov": ExtractionError("expired", error_class="authentication"),
        }
    )
    verifier = TimestampVerifier(_client(service, []))
    items = [make_item("a.mov"), make_item("b.mov"), make_item("c.mov")]
    seen: list[str] = []

    with pytest.raises(CredentialsExpiredError):
        verifier.verify(items, on_result=lambda result: seen.append(result.identity))

    assert service.calls == ["a.mov", "b.mov"]
    assert seen == ["a.mov"]


def test_targeted_abort_is_recorded_on_the_report() -> None:
    service = FakeMetadataService(
        {
            "b.mov": [
                ExtractionError("unreadable"),
                ExtractionError("expired", error_class="authentication"),
            ]
        }
    )
    verifier = TimestampVerifier(_client(service, []))
    previous = verifier.verify([make_item("b.mov")])

    with pytest.raises(CredentialsExpiredError):
        verifier.verify([make_item("b.mov")], previous=previous, targeted=True)

    assert previous.aborted is True
    assert "expired" in (previous.abort_reason or "")
