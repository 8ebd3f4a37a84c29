"""Tests for download progress and completeness bookkeeping."""

import threading

import pytest


def _payload(cache, feed):
    return cache.payload(cache.latest_issue(feed))


class TestProgress:

    def test_begin_stamps_once(self, merged):
        cache, feed, snapshot = merged
        payload = cache.bookkeeper.begin_download(_payload(cache, feed))
        started = payload.download_started
        assert started is not None
        cache._db.write("UPDATE payloads SET download_started = '2000-01-01T00:00:00'")
        cache.save()
        payload = cache.bookkeeper.begin_download(payload)
        assert payload.download_started.year == 2000

    def test_complete_download(self, merged):
        cache, feed, snapshot = merged
        payload = cache.bookkeeper.complete_download(_payload(cache, feed))
        assert payload.download_stopped is not None

    def test_monotonic_and_clamped(self, merged):
        cache, feed, snapshot = merged
        bk = cache.bookkeeper
        payload = _payload(cache, feed)
        total = payload.bytes_total
        assert bk.progress(payload) == (0, total)

        bk.record_progress(payload, 10)
        bk.record_progress(payload, 0)
        assert bk.progress(payload) == (10, total)
        assert not bk.is_complete(payload)

        bk.record_progress(payload, total * 5)
        assert bk.progress(payload) == (total, total)
        assert bk.is_complete(payload)

    def test_negative_delta_rejected(self, merged):
        cache, feed, snapshot = merged
        payload = _payload(cache, feed)
        cache.bookkeeper.record_progress(payload, 5)
        with pytest.raises(ValueError):
            cache.bookkeeper.record_progress(payload, -1)
        assert cache.bookkeeper.progress(payload)[0] == 5

    def test_concurrent_updates_and_reads(self, merged):
        """A reader polling while another thread records never sees a step back."""
        cache, feed, snapshot = merged
        bk = cache.bookkeeper
        payload = _payload(cache, feed)
        total = payload.bytes_total
        done = threading.Event()
        errors = []
        seen = []

        def writer():
            try:
                for _ in range(total + 20):
                    bk.record_progress(payload, 1)
            except Exception as e:
                errors.append(e)
            finally:
                done.set()

        def reader():
            try:
                while not done.is_set():
                    seen.append(bk.progress(payload)[0])
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert errors == []
        assert seen == sorted(seen)
        assert all(0 <= loaded <= total for loaded in seen)
        assert bk.progress(payload) == (total, total)

    def test_remerge_resets_progress(self, merged, snapshots):
        cache, feed, snapshot = merged
        payload = _payload(cache, feed)
        cache.bookkeeper.begin_download(payload)
        cache.bookkeeper.record_progress(payload, 50)

        cache.merge_feeder(snapshots.feeder(snapshots.issue()))
        payload = _payload(cache, feed)
        assert payload.bytes_loaded == 0
        assert payload.bytes_total == sum(f.size for f in snapshot.payload.files)
        # The download start is kept for eviction ordering
        assert payload.download_started is not None


class TestCompleteness:

    def test_missing_files_block_completion(self, merged, snapshots):
        cache, feed, snapshot = merged
        first = snapshot.payload.files[0].name
        snapshots.write_files(cache, snapshot.payload, skip=(first,))

        missing = cache.bookkeeper.mark_stored(_payload(cache, feed))
        assert [f.name for f in missing] == [first]
        assert not cache.set_issue_complete(cache.latest_issue(feed))
        issue = cache.latest_issue(feed)
        assert not issue.is_complete
        assert not issue.is_ovw_complete

    def test_all_files_stored(self, merged, snapshots):
        cache, feed, snapshot = merged
        snapshots.write_files(cache, snapshot.payload)
        assert cache.set_issue_complete(cache.latest_issue(feed))

        issue = cache.latest_issue(feed)
        assert issue.is_complete
        assert issue.is_ovw_complete
        assert cache.bookkeeper.is_complete(_payload(cache, feed))
        assert cache.stats()["stored_bytes"] == sum(f.size for f in snapshot.payload.files)

    def test_corrupt_file_not_stored(self, merged, snapshots):
        cache, feed, snapshot = merged
        snapshots.write_files(cache, snapshot.payload)
        victim = snapshot.payload.files[0].name
        path = cache.file_for_name(victim)
        path.write_bytes(b"X" * path.stat().st_size)

        missing = cache.bookkeeper.mark_stored(_payload(cache, feed))
        assert [f.name for f in missing] == [victim]
