"""
Unit tests for the upload domain models.

These tests verify the core state rules without touching external
services (no HTTP, no object store, no file system beyond tmp_path).

Testing philosophy:
- Test behavior, not implementation
- Each test should have a clear "given/when/then" structure
- Use descriptive names that explain what we're testing
- Prefer real objects over mocks where practical
"""

from datetime import datetime, timedelta, timezone

import pytest

from reelvault.client.sources import BytesSource, FileSource
from reelvault.core.errors import InvalidTransitionError
from reelvault.core.uploads import (
    MultipartSession,
    PlaybackLease,
    UploadFile,
    UploadQueue,
    UploadStatus,
)


def video(name: str = "clip.mp4", size: int = 10) -> BytesSource:
    return BytesSource(name, b"x" * size, content_type="video/mp4")


# ---------------------------------------------------------------------------
# UploadFile Tests
# ---------------------------------------------------------------------------

class TestUploadFile:
    """Tests for the per-file state machine."""

    def test_new_file_is_pending_with_title_from_name(self):
        """Title defaults to the file name without its extension."""
        item = UploadFile(source=video("Beach Day.final.mp4"))

        assert item.status is UploadStatus.PENDING
        assert item.title == "Beach Day.final"
        assert item.progress == 0

    def test_explicit_title_is_kept(self):
        item = UploadFile(source=video(), title="My title")
        assert item.title == "My title"

    def test_happy_path_transitions(self):
        """pending -> uploading -> completed sets progress to 100."""
        item = UploadFile(source=video())

        item.start()
        item.report_progress(40)
        item.complete("123-clip.mp4", "https://example/get")

        assert item.status is UploadStatus.COMPLETED
        assert item.progress == 100
        assert item.object_key == "123-clip.mp4"
        assert item.is_finished

    def test_failure_keeps_message(self):
        item = UploadFile(source=video())
        item.start()

        item.fail("part 2 failed: HTTP 500")

        assert item.status is UploadStatus.ERROR
        assert item.error == "part 2 failed: HTTP 500"

    def test_cannot_complete_without_starting(self):
        item = UploadFile(source=video())

        with pytest.raises(InvalidTransitionError, match="pending to completed"):
            item.complete("key", None)

    def test_cannot_restart_finished_file(self):
        """Leaving a terminal state needs remove and re-add."""
        item = UploadFile(source=video())
        item.start()
        item.fail("boom")

        with pytest.raises(InvalidTransitionError):
            item.start()

    def test_progress_never_goes_backwards(self):
        item = UploadFile(source=video())
        item.start()

        item.report_progress(60)
        item.report_progress(30)

        assert item.progress == 60

    def test_progress_is_clamped(self):
        item = UploadFile(source=video())
        item.start()

        item.report_progress(250)

        assert item.progress == 100


# ---------------------------------------------------------------------------
# MultipartSession Tests
# ---------------------------------------------------------------------------

class TestMultipartSession:
    """Tests for part bookkeeping."""

    @pytest.fixture
    def session(self) -> MultipartSession:
        return MultipartSession(
            object_key="1-big.mp4",
            upload_id="upload-1",
            content_type="video/mp4",
            total_size=12,
            part_count=3,
        )

    def test_parts_come_back_ascending_whatever_the_order(self, session):
        session.record_part(3, '"c"')
        session.record_part(1, '"a"')
        session.record_part(2, '"b"')

        assert [p.part_number for p in session.completed_parts()] == [1, 2, 3]
        assert session.is_complete

    def test_incomplete_until_every_part_acknowledged(self, session):
        session.record_part(1, '"a"')

        assert session.acknowledged == 1
        assert not session.is_complete

    @pytest.mark.parametrize("number", [0, 4, -1])
    def test_out_of_range_part_rejected(self, session, number):
        with pytest.raises(ValueError, match="outside"):
            session.record_part(number, '"x"')

    def test_duplicate_part_rejected(self, session):
        session.record_part(1, '"a"')

        with pytest.raises(ValueError, match="already recorded"):
            session.record_part(1, '"a2"')

    def test_part_without_etag_rejected(self, session):
        with pytest.raises(ValueError, match="no ETag"):
            session.record_part(1, "")


# ---------------------------------------------------------------------------
# PlaybackLease Tests
# ---------------------------------------------------------------------------

class TestPlaybackLease:

    def test_lease_with_expiry_is_not_degraded(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        lease = PlaybackLease("k", "https://u", now, now + timedelta(hours=1))
        assert not lease.is_degraded

    def test_legacy_lease_is_degraded(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        lease = PlaybackLease(None, "https://legacy", now, None)
        assert lease.is_degraded


# ---------------------------------------------------------------------------
# UploadQueue Tests
# ---------------------------------------------------------------------------

class TestUploadQueue:
    """Tests for the user's upload queue."""

    def test_only_videos_are_accepted(self):
        queue = UploadQueue()

        added = queue.add_many([
            video("a.mp4"),
            BytesSource("notes.txt", b"hi", content_type="text/plain"),
            BytesSource("b.mov", b"x", content_type="video/quicktime"),
        ])

        assert [item.source.name for item in added] == ["a.mp4", "b.mov"]
        assert len(queue) == 2

    def test_remove_pending_file(self):
        queue = UploadQueue()
        item = queue.add(video())

        queue.remove(item.id)

        assert len(queue) == 0

    def test_cannot_remove_file_in_flight(self):
        queue = UploadQueue()
        item = queue.add(video())
        item.start()

        with pytest.raises(InvalidTransitionError, match="Only pending or failed"):
            queue.remove(item.id)

    def test_cannot_remove_completed_file(self):
        queue = UploadQueue()
        item = queue.add(video())
        item.start()
        item.complete("1-clip.mp4", None)

        with pytest.raises(InvalidTransitionError):
            queue.remove(item.id)

    def test_failed_file_is_retried_by_remove_and_re_add(self):
        """An errored file leaves the error state only by being removed and added again."""
        queue = UploadQueue()
        source = video()
        failed = queue.add(source)
        failed.start()
        failed.fail("part 2 failed: HTTP 500")

        removed = queue.remove(failed.id)
        retried = queue.add(source)

        assert removed is failed
        assert retried.id != failed.id
        assert retried.status is UploadStatus.PENDING
        assert queue.pending() == [retried]

    def test_pending_skips_started_files(self):
        queue = UploadQueue()
        first = queue.add(video("a.mp4"))
        second = queue.add(video("b.mp4"))
        first.start()

        assert queue.pending() == [second]

    def test_overall_progress_is_mean_of_files(self):
        queue = UploadQueue()
        a = queue.add(video("a.mp4"))
        b = queue.add(video("b.mp4"))
        a.start()
        a.report_progress(100)
        b.start()
        b.report_progress(50)

        assert queue.overall_progress == 75

    def test_empty_queue_has_zero_progress(self):
        assert UploadQueue().overall_progress == 0


# ---------------------------------------------------------------------------
# Source Tests
# ---------------------------------------------------------------------------

@pytest.mark.anyio
class TestSources:

    async def test_bytes_source_reads_ranges(self):
        source = BytesSource("a.mp4", b"0123456789")

        assert await source.read(2, 5) == b"234"
        assert source.size == 10

    async def test_file_source_reads_ranges_and_guesses_type(self, tmp_path):
        path = tmp_path / "clip.mp4"
        path.write_bytes(b"abcdefghij")
        source = FileSource(path)

        assert source.size == 10
        assert source.content_type == "video/mp4"
        assert await source.read(7, 10) == b"hij"

    async def test_file_source_unknown_extension_falls_back(self, tmp_path):
        path = tmp_path / "clip.unknownext"
        path.write_bytes(b"x")

        assert FileSource(path).content_type == "application/octet-stream"
