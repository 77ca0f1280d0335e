from __future__ import annotations

import pytest

from conftest import FakeDestination, FakeImageSource
from sheet_transfer.logging.events import RecordingEventSink
from sheet_transfer.models.job import ErrorType, WarningType
from sheet_transfer.models.row_data import ImageQueueEntry
from sheet_transfer.services.capabilities import AccessRevokedError, TokenExpiredError
from sheet_transfer.services.images import ImageBatchOutcome, ImageFallbackPipeline

OK_URL = "https://drive.google.com/file/d/OK1/view"
DENIED_URL = "https://drive.google.com/file/d/DENIED1/view"


def _entry(token: str, url: str, row: int = 2) -> ImageQueueEntry:
    return ImageQueueEntry(
        correlation_token=token,
        batch_local_row_index=0,
        destination_column_id=9001,
        image_url=url,
        source_row=row,
        tab="Orders",
    )


def test_successful_attach():
    dest = FakeDestination()
    outcome = ImageFallbackPipeline(FakeImageSource(), dest).process(
        555, [_entry("Orders#2", OK_URL)], {"Orders#2": 1001}
    )
    assert (outcome.successful, outcome.fallback, outcome.failed) == (1, 0, 0)
    assert dest.attachments == [(1001, 9001, "image.png")]
    assert outcome.errors == [] and outcome.warnings == []


def test_denied_image_falls_back_to_link():
    dest = FakeDestination()
    events = RecordingEventSink()
    pipeline = ImageFallbackPipeline(FakeImageSource(denied={DENIED_URL}), dest, events, job_id="j1")
    outcome = pipeline.process(555, [_entry("Orders#4", DENIED_URL, row=4)], {"Orders#4": 1002})
    assert outcome.fallback == 1
    assert dest.hyperlinks == [(1002, 9001, DENIED_URL)]
    assert outcome.warnings[0].type is WarningType.IMAGE_FALLBACK
    assert "Orders!row 4" in outcome.warnings[0].message
    assert "image_fallback" in [e.kind for e in events.events]


def test_failed_link_fallback_is_hard_error():
    dest = FakeDestination(fail_hyperlink=True)
    outcome = ImageFallbackPipeline(FakeImageSource(denied={DENIED_URL}), dest).process(
        555, [_entry("Orders#2", DENIED_URL)], {"Orders#2": 1001}
    )
    assert outcome.failed == 1
    assert outcome.errors[0].type is ErrorType.IMAGE_ACCESS_DENIED
    assert outcome.errors[0].row == 2


def test_attach_failure_uses_upload_error_type():
    dest = FakeDestination(fail_attach=True, fail_hyperlink=True)
    outcome = ImageFallbackPipeline(FakeImageSource(), dest).process(
        555, [_entry("Orders#2", OK_URL)], {"Orders#2": 1001}
    )
    assert outcome.errors[0].type is ErrorType.IMAGE_UPLOAD_FAILED


def test_unresolved_token_fails_without_calls():
    images = FakeImageSource()
    outcome = ImageFallbackPipeline(images, FakeDestination()).process(
        555, [_entry("Orders#2", OK_URL)], {}
    )
    assert outcome.failed == 1
    assert images.downloads == []
    assert "row was not inserted" in outcome.errors[0].message


def test_each_entry_resolves_once():
    entries = [_entry("a", OK_URL), _entry("b", DENIED_URL), _entry("c", OK_URL)]
    outcome = ImageFallbackPipeline(FakeImageSource(denied={DENIED_URL}), FakeDestination()).process(
        555, entries, {"a": 1, "b": 2}
    )
    assert (outcome.successful, outcome.fallback, outcome.failed) == (1, 1, 1)
    assert [o.entry.correlation_token for o in outcome.outcomes] == ["a", "b", "c"]


def test_outcome_counts_must_add_up():
    with pytest.raises(ValueError):
        ImageBatchOutcome(queued=2, successful=1)


@pytest.mark.parametrize("exc", [TokenExpiredError("expired"), AccessRevokedError("revoked")])
def test_credential_errors_propagate(exc):
    dest = FakeDestination()
    dest.attach_image_to_cell = lambda *a, **k: (_ for _ in ()).throw(exc)
    with pytest.raises(type(exc)):
        ImageFallbackPipeline(FakeImageSource(), dest).process(555, [_entry("a", OK_URL)], {"a": 1})
