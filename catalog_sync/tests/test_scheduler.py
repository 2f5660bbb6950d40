"""Tests for the retry policy and the sequential batch scheduler."""

import random
from dataclasses import replace
from types import SimpleNamespace

import pytest

from catalog_sync.api_client import ApiSession
from catalog_sync.models import DeferredResult, OutcomeStatus, RejectReason, UploadOutcome
from catalog_sync.retry import RetryDecision, RetryPolicy
from catalog_sync.scheduler import BatchScheduler
from conftest import make_response


class StubQueue:
    def __init__(self):
        self.pending = []

    def drain(self):
        results, self.pending = self.pending, []
        return results


class StubUploader:
    """Replays scripted outcomes per reference and records the call order."""

    def __init__(self, scripts=None):
        self.scripts = scripts or {}
        self.calls = []
        self.client = SimpleNamespace(session=ApiSession(user_agents=["ua-0", "ua-1", "ua-2"]))
        self.deferred = StubQueue()

    def upload(self, product):
        self.calls.append(product.reference)
        script = self.scripts.get(product.reference)
        if script:
            outcome = script.pop(0) if len(script) > 1 else script[0]
            return replace(outcome)
        return UploadOutcome.created(product.reference, "1")


def failed(reference, status, retriable=True):
    return UploadOutcome.failed(reference, f"HTTP {status}", status_code=status, retriable=retriable)


@pytest.fixture
def scheduler_factory(sleeps):
    def _make(uploader, **kwargs):
        kwargs.setdefault("policy", RetryPolicy(rng=random.Random(1)))
        return BatchScheduler(uploader, sleep=sleeps.append, rng=random.Random(3), **kwargs)

    return _make


class TestRetryPolicy:
    def test_backoff_grows_exponentially(self):
        """Backoff doubles per attempt."""
        policy = RetryPolicy(backoff_base=5.0, jitter_max=0.0)

        assert [policy.backoff(a) for a in range(3)] == [5.0, 10.0, 20.0]

    def test_backoff_jitter_bounds(self):
        """Jitter stays within its configured maximum."""
        policy = RetryPolicy(backoff_base=5.0, jitter_max=2.0, rng=random.Random(0))

        for _ in range(20):
            assert 10.0 <= policy.backoff(1) <= 12.0

    def test_intrusion_block_rotates_identity(self):
        """A 406 is retried with a new client identity."""
        decision = RetryPolicy(jitter_max=0.0).decide(failed("A", 406), 0)

        assert decision.retry
        assert decision.rotate_identity
        assert decision.delay == 5.0

    def test_rate_limit_waits_cooldown(self):
        """A 429 waits the fixed cooldown without rotating."""
        decision = RetryPolicy().decide(failed("A", 429), 2)

        assert decision.retry
        assert decision.delay == 60.0
        assert not decision.rotate_identity

    def test_network_failure_backs_off(self):
        """Timeouts and connection errors are retried."""
        outcome = UploadOutcome.failed("A", "timeout", retriable=True)

        assert RetryPolicy().decide(outcome, 0).retry

    def test_non_retriable_failure(self):
        """Non-retriable failures stop immediately."""
        assert not RetryPolicy().decide(failed("A", 403, retriable=False), 0).retry

    def test_success_and_rejection_never_retry(self):
        """Successes and rejections are final."""
        policy = RetryPolicy()

        assert not policy.decide(UploadOutcome.created("A", "1"), 0).retry
        assert not policy.decide(UploadOutcome.rejected("A", RejectReason.INVALID_FIELDS), 0).retry

    def test_exhausted(self):
        """Retries stop once max_retries is reached."""
        decision = RetryPolicy(max_retries=3).decide(failed("A", 500), 3)

        assert not decision.retry
        assert decision.reason == "retries exhausted"

    def test_custom_classifier(self):
        """A custom classifier replaces the default decisions."""
        policy = RetryPolicy(classifier=lambda p, o, a: RetryDecision(retry=True, delay=1.0, reason="always"))

        assert policy.decide(failed("A", 403, retriable=False), 0).delay == 1.0


class TestBatchScheduler:
    def test_batches_and_pauses(self, scheduler_factory, make_product, sleeps):
        """Five products in batches of two: three batches, four pauses."""
        uploader = StubUploader()
        products = [make_product(f"SP-{i}") for i in range(5)]

        summary = scheduler_factory(uploader).run_all(products)

        assert uploader.calls == [p.reference for p in products]
        assert (summary.total, summary.success, summary.batches) == (5, 5, 3)
        assert summary.finished_at is not None
        assert len(sleeps) == 4
        product_pauses = [sleeps[0], sleeps[2]]
        batch_pauses = [sleeps[1], sleeps[3]]
        assert all(2.0 <= s <= 5.0 for s in product_pauses)
        assert all(5.0 <= s <= 10.0 for s in batch_pauses)

    def test_empty_list(self, scheduler_factory, sleeps):
        """An empty run has no batches and no pauses."""
        summary = scheduler_factory(StubUploader()).run_all([])

        assert (summary.total, summary.batches) == (0, 0)
        assert sleeps == []

    def test_invalid_batch_size(self):
        """Batch size must be at least one."""
        with pytest.raises(ValueError):
            BatchScheduler(StubUploader(), batch_size=0)

    def test_intrusion_block_then_success(self, scheduler_factory, make_product, sleeps):
        """A blocked product is retried under the next identity."""
        uploader = StubUploader({"A": [failed("A", 406), UploadOutcome.created("A", "7")]})

        summary = scheduler_factory(uploader).run_all([make_product("A")])

        outcome = summary.details[0]
        assert outcome.status == OutcomeStatus.CREATED
        assert outcome.attempts == 2
        assert uploader.client.session.user_agent == "ua-1"
        assert sleeps[0] >= 5.0

    def test_rate_limit_cooldown(self, scheduler_factory, make_product, sleeps):
        """A rate-limited product waits the cooldown, then succeeds."""
        uploader = StubUploader({"A": [failed("A", 429), UploadOutcome.created("A", "7")]})

        scheduler_factory(uploader).run_all([make_product("A")])

        assert sleeps == [60.0]
        assert uploader.client.session.user_agent == "ua-0"

    def test_no_retry_for_rejection(self, scheduler_factory, make_product, sleeps):
        """Validation rejections are never retried."""
        uploader = StubUploader({"A": [UploadOutcome.rejected("A", RejectReason.INVALID_FIELDS)]})

        summary = scheduler_factory(uploader).run_all([make_product("A")])

        assert uploader.calls == ["A"]
        assert summary.errors == 1
        assert summary.details[0].attempts == 1

    def test_no_retry_for_forbidden(self, scheduler_factory, make_product):
        """A 403 is tried once."""
        uploader = StubUploader({"A": [failed("A", 403, retriable=False)]})

        summary = scheduler_factory(uploader).run_all([make_product("A")])

        assert uploader.calls == ["A"]
        assert not summary.details[0].retries_exhausted

    def test_persistent_server_error_exhausts(self, scheduler_factory, make_product, sleeps):
        """Server errors are retried with growing delays until exhausted."""
        uploader = StubUploader({"A": [failed("A", 500)]})

        summary = scheduler_factory(uploader).run_all([make_product("A")])

        outcome = summary.details[0]
        assert uploader.calls == ["A"] * 4
        assert outcome.attempts == 4
        assert outcome.retries_exhausted
        assert outcome.status == OutcomeStatus.FAILED
        assert len(sleeps) == 3
        assert sleeps[0] < sleeps[1] < sleeps[2]

    def test_stop_on_error(self, scheduler_factory, make_product):
        """With continue_on_error off, the run stops at the first failure."""
        uploader = StubUploader({"A": [failed("A", 403, retriable=False)]})
        products = [make_product("A"), make_product("B"), make_product("C")]

        summary = scheduler_factory(uploader, continue_on_error=False).run_all(products)

        assert uploader.calls == ["A"]
        assert summary.errors == 1
        assert len(summary.details) == 1

    def test_progress_callback(self, scheduler_factory, make_product):
        """The callback sees (done, total, outcome) per product."""
        seen = []
        scheduler = scheduler_factory(StubUploader(), on_progress=lambda d, t, o: seen.append((d, t, o.reference)))

        scheduler.run_all([make_product("A"), make_product("B")])

        assert seen == [(1, 2, "A"), (2, 2, "B")]

    def test_deferred_result_is_attached(self, scheduler_factory, make_product):
        """Deferred results are attached to their product's outcome."""
        uploader = StubUploader()
        uploader.deferred.pending = [DeferredResult(reference="A", remote_id="1", total=3, processed=3)]

        summary = scheduler_factory(uploader).run_all([make_product("A")])

        assert summary.details[0].deferred.processed == 3
        assert summary.deferred_results[0].reference == "A"


class TestSchedulerWithUploader:
    def test_deferred_images_go_out_before_next_product(self, uploader, fake_http, make_product, sleeps):
        """Requests are strictly sequential: POST A, PUT A, POST B, PUT B."""
        products = []
        for ref, remote_id in (("A", 1), ("B", 2)):
            urls = [f"https://img.test/{ref}/{i}.jpg" for i in range(3)]
            for url in urls:
                fake_http.add_image(url)
            fake_http.add("GET", f"/product/{ref}", make_response(404))
            fake_http.add("PUT", f"/product/{remote_id}", make_response(200, {"id": remote_id}))
            products.append(make_product(ref, images=urls))
        fake_http.add("POST", "/product", make_response(201, {"id": 1}), make_response(201, {"id": 2}))
        scheduler = BatchScheduler(uploader, sleep=sleeps.append, rng=random.Random(0))

        summary = scheduler.run_all(products)

        writes = [(c.method, c.url.rsplit("/", 1)[1]) for c in fake_http.calls if c.method in ("POST", "PUT")]
        writes = [w for w in writes if w[1] != "auth"]
        assert writes == [("POST", "product"), ("PUT", "1"), ("POST", "product"), ("PUT", "2")]
        assert summary.success == 2
        assert [o.deferred.processed for o in summary.details] == [1, 1]
