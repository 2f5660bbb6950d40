"""Tests for deferred image batches."""

import pytest
import requests  # type: ignore[import-untyped]

from catalog_sync.deferred import DeferredJob, partition
from conftest import make_response


def image_urls(reference, count, start=3):
    return [f"https://img.test/{reference}/{i}.jpg" for i in range(start, start + count)]


class TestPartition:
    def test_even_split(self):
        """Items are split into equal chunks."""
        assert partition([1, 2, 3, 4], 2) == [[1, 2], [3, 4]]

    def test_last_chunk_shorter(self):
        """The last chunk holds the remainder."""
        assert partition("abcde", 3) == [["a", "b", "c"], ["d", "e"]]

    def test_empty(self):
        """An empty list gives no chunks."""
        assert partition([], 3) == []

    def test_invalid_size(self):
        """Batch size zero is rejected."""
        with pytest.raises(ValueError):
            partition([1], 0)


class TestDeferredImageProcessor:
    def test_batches_of_three(self, deferred_queue, fake_http, sleeps):
        """Five images go out as two PUTs, numbered after the initial ones."""
        urls = image_urls("SP-1", 5)
        for url in urls:
            fake_http.add_image(url)
        fake_http.add("PUT", "/product/55", make_response(200, {"id": 55}))

        result = deferred_queue.processor.process_remaining("55", urls, reference="SP-1", start_index=2)

        puts = fake_http.calls_to("PUT", "/product/55")
        assert [c.file_fields for c in puts] == [
            ["images[2]", "images[3]", "images[4]"],
            ["images[5]", "images[6]"],
        ]
        assert all(c.form == {"reference": "SP-1", "append_images": "1"} for c in puts)
        assert (result.total, result.processed, result.errors, result.batches) == (5, 5, 0, 2)
        assert len(sleeps) == 1
        assert 2.0 <= sleeps[0] <= 5.0

    def test_failed_download_is_counted(self, deferred_queue, fake_http, staged_files):
        """A failed download is counted as an error, the rest still go out."""
        urls = image_urls("SP-1", 3)
        fake_http.add_image(urls[0])
        fake_http.add("GET", urls[1], make_response(404))
        fake_http.add_image(urls[2])
        fake_http.add("PUT", "/product/55", make_response(200, {"id": 55}))

        result = deferred_queue.processor.process_remaining("55", urls, reference="SP-1")

        assert result.processed == 2
        assert result.errors == 1
        assert result.processed + result.errors == result.total
        assert fake_http.calls_to("PUT")[0].file_fields == ["images[0]", "images[2]"]
        assert staged_files() == []

    def test_batch_with_no_staged_images_sends_nothing(self, deferred_queue, fake_http):
        """No PUT is sent when nothing in the batch could be staged."""
        urls = image_urls("SP-1", 2)
        for url in urls:
            fake_http.add("GET", url, make_response(404))

        result = deferred_queue.processor.process_remaining("55", urls, reference="SP-1")

        assert fake_http.calls_to("PUT") == []
        assert result.errors == 2

    def test_rejected_batch_counts_all_images(self, deferred_queue, fake_http):
        """A failed batch does not stop the following one."""
        urls = image_urls("SP-1", 4)
        for url in urls:
            fake_http.add_image(url)
        fake_http.add("PUT", "/product/55", make_response(500), make_response(200, {"id": 55}))

        result = deferred_queue.processor.process_remaining("55", urls, reference="SP-1")

        assert result.errors == 3
        assert result.processed == 1
        assert result.batches == 2

    def test_intrusion_block_adds_extra_pause(self, deferred_queue, fake_http, sleeps):
        """A 406 adds the block delay on top of the normal pause."""
        urls = image_urls("SP-1", 4)
        for url in urls:
            fake_http.add_image(url)
        fake_http.add("PUT", "/product/55", make_response(406), make_response(200, {"id": 55}))

        deferred_queue.processor.process_remaining("55", urls, reference="SP-1")

        assert len(sleeps) == 1
        assert 7.0 <= sleeps[0] <= 20.0

    def test_block_on_last_batch_still_backs_off(self, deferred_queue, fake_http, sleeps):
        """A single deferred batch that gets a 406 pauses before returning."""
        urls = image_urls("SP-1", 3)
        for url in urls:
            fake_http.add_image(url)
        fake_http.add("PUT", "/product/55", make_response(406))

        result = deferred_queue.processor.process_remaining("55", urls, reference="SP-1")

        assert result.errors == 3
        assert len(sleeps) == 1
        assert 5.0 <= sleeps[0] <= 15.0

    def test_network_error_counts_batch_as_failed(self, deferred_queue, fake_http, staged_files):
        """A network error fails the whole batch and still cleans up."""
        urls = image_urls("SP-1", 2)
        for url in urls:
            fake_http.add_image(url)
        fake_http.add("PUT", "/product/55", requests.exceptions.ConnectionError("reset"))

        result = deferred_queue.processor.process_remaining("55", urls, reference="SP-1")

        assert result.errors == 2
        assert staged_files() == []

    def test_empty_list(self, deferred_queue, fake_http, sleeps):
        """No images, no requests and no pauses."""
        result = deferred_queue.processor.process_remaining("55", [], reference="SP-1")

        assert (result.total, result.processed, result.errors, result.batches) == (0, 0, 0, 0)
        assert fake_http.calls == []
        assert sleeps == []


class TestDeferredImageQueue:
    def test_drain_is_fifo(self, deferred_queue, fake_http):
        """Jobs are processed in the order they were queued."""
        for ref, remote_id in (("SP-1", "11"), ("SP-2", "22")):
            url = image_urls(ref, 1)[0]
            fake_http.add_image(url)
            fake_http.add("PUT", f"/product/{remote_id}", make_response(200, {"id": remote_id}))
            deferred_queue.enqueue(DeferredJob(reference=ref, remote_id=remote_id, images=[url], start_index=2))

        assert len(deferred_queue) == 2
        results = deferred_queue.drain()

        assert [r.reference for r in results] == ["SP-1", "SP-2"]
        assert [c.url.rsplit("/", 1)[1] for c in fake_http.calls_to("PUT")] == ["11", "22"]
        assert len(deferred_queue) == 0

    def test_drain_empty_queue(self, deferred_queue):
        """Draining an empty queue returns nothing."""
        assert deferred_queue.drain() == []
