"""Tests for ChangeTrackingStore.

Covers:
- is_changed for unknown, identical and differing signatures
- Content signatures ignoring mtime
- mark_failed keeping or replacing the stored signature
- forget / known_paths / last_updated_at
"""

from __future__ import annotations

from tracepulse.storage.store import FileSignature

PATH = "/logs/a.jsonl"
SIG = FileSignature(mtime_ns=1_000, size_bytes=200)


class TestIsChanged:
    def test_unknown_path_is_changed(self, tracking):
        assert tracking.get(PATH) is None
        assert tracking.is_changed(PATH, SIG) is True

    def test_same_signature_unchanged(self, tracking):
        tracking.mark_ingested(PATH, SIG)
        assert tracking.is_changed(PATH, SIG) is False

    def test_mtime_or_size_change(self, tracking):
        tracking.mark_ingested(PATH, SIG)
        assert tracking.is_changed(PATH, FileSignature(mtime_ns=2_000, size_bytes=200)) is True
        assert tracking.is_changed(PATH, FileSignature(mtime_ns=1_000, size_bytes=201)) is True

    def test_content_signature_ignores_mtime(self, tracking):
        tracking.mark_ingested(PATH, FileSignature(mtime_ns=1, size_bytes=10, content_hash="aa"))
        touched = FileSignature(mtime_ns=99, size_bytes=10, content_hash="aa")
        edited = FileSignature(mtime_ns=99, size_bytes=10, content_hash="bb")
        assert tracking.is_changed(PATH, touched) is False
        assert tracking.is_changed(PATH, edited) is True

    def test_failed_without_signature_is_changed(self, tracking):
        tracking.mark_failed(PATH, "unreadable")
        assert tracking.get(PATH).signature is None
        assert tracking.is_changed(PATH, SIG) is True


class TestMarking:
    def test_mark_ingested_records_time(self, tracking, fake_clock):
        state = tracking.mark_ingested(PATH, SIG)
        assert state.last_ingested_at == int(fake_clock())
        assert state.last_error is None
        assert tracking.get(PATH) == state

    def test_mark_failed_keeps_previous_signature(self, tracking, fake_clock):
        """A failure must not advance the stored signature."""
        tracking.mark_ingested(PATH, SIG)
        ingested_at = int(fake_clock())
        fake_clock.advance(1_000)

        newer = FileSignature(mtime_ns=5_000, size_bytes=300)
        tracking.mark_failed(PATH, "line 3: invalid JSON")

        state = tracking.get(PATH)
        assert state.signature == SIG
        assert state.last_error == "line 3: invalid JSON"
        assert state.last_ingested_at == ingested_at
        assert state.updated_at == ingested_at + 1_000
        assert tracking.is_changed(PATH, newer) is True

    def test_mark_failed_with_signature_stops_retry(self, tracking):
        newer = FileSignature(mtime_ns=5_000, size_bytes=300)
        tracking.mark_failed(PATH, "bad", signature=newer)
        state = tracking.get(PATH)
        assert state.signature == newer
        assert state.last_error == "bad"
        assert state.last_ingested_at is None
        assert tracking.is_changed(PATH, newer) is False

    def test_success_clears_error(self, tracking):
        tracking.mark_failed(PATH, "bad")
        tracking.mark_ingested(PATH, SIG)
        assert tracking.get(PATH).last_error is None


class TestQueries:
    def test_forget_and_known_paths(self, tracking):
        tracking.mark_ingested("/logs/a.jsonl", SIG)
        tracking.mark_ingested("/logs/b.jsonl", SIG)
        assert tracking.known_paths() == {"/logs/a.jsonl", "/logs/b.jsonl"}
        assert tracking.forget("/logs/a.jsonl") is True
        assert tracking.forget("/logs/a.jsonl") is False
        assert tracking.known_paths() == {"/logs/b.jsonl"}

    def test_last_updated_at_tracks_successes_only(self, tracking, fake_clock):
        assert tracking.last_updated_at() is None
        tracking.mark_ingested("/logs/a.jsonl", SIG)
        first = int(fake_clock())
        fake_clock.advance(500)
        tracking.mark_failed("/logs/b.jsonl", "bad")
        assert tracking.last_updated_at() == first

    def test_count_and_summary(self, tracking):
        tracking.mark_ingested("/logs/a.jsonl", SIG)
        tracking.mark_failed("/logs/b.jsonl", "bad")
        assert tracking.count() == 2
        assert tracking.count("a.jsonl") == 1
        assert tracking.summary()["failed_files"] == 1
        assert len(tracking.list_states(limit=1)) == 1
