"""
Tourkit — Upload Coordinator Unit Tests (Mocked Storage)
==========================================================

What:  Tests for UploadCoordinator against an httpx.MockTransport.
How:   Each test scripts the storage endpoint's answers and passes a fake
       sleep so the backoff schedule is observed without waiting.

What we test:
    ✅ Backoff schedule is capped exponential
    ✅ Transient failures are retried until the budget is spent
    ✅ Auth failures stop immediately and spend no retries
    ✅ Timeouts count as transient
    ✅ Progress is reported per attempt and only increases within one
    ✅ A shared ProgressBoard can forget finished tasks
    ✅ Request shape: URL, bearer token, upsert and content headers
    ❌ Real storage (use integration tests for that)
"""

import asyncio

import httpx
import pytest

from tourkit.config import OptimizerConfig, UploadConfig
from tourkit.exceptions import TerminalAuthError
from tourkit.schemas.assets import AssetDescriptor
from tourkit.services.asset_optimizer import AssetOptimizer
from tourkit.services.credentials import CredentialProvider, StaticCredentialProvider
from tourkit.services.upload_coordinator import (
    ProgressBoard,
    UploadCoordinator,
    backoff_delay,
)

STORAGE = "http://storage.test"


class CountingCredentials(CredentialProvider):
    def __init__(self, token="user-token", error=None):
        self.token = token
        self.error = error
        self.calls = 0

    async def get_access_token(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.token


def scripted_storage(*statuses, seen=None):
    """MockTransport handler answering each request with the next status."""
    queue = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        status = queue.pop(0) if queue else 200
        if isinstance(status, Exception):
            raise status
        if status >= 400:
            return httpx.Response(status, json={"error": f"storage said {status}"})
        return httpx.Response(status, json={"Key": "ok"})

    return handler


def make_coordinator(make_client, handler, fake_sleep, **config):
    return UploadCoordinator(
        config=UploadConfig(storage_url=STORAGE, **config),
        credentials=CountingCredentials(),
        client=make_client(handler),
        sleep=fake_sleep,
    )


@pytest.fixture
def document() -> AssetDescriptor:
    return AssetDescriptor(name="disclosure.pdf", mime_type="application/pdf", data=b"%PDF-1.7 " * 300)


def sleeps(fake_sleep):
    return [call.args[0] for call in fake_sleep.await_args_list]


class TestBackoffDelay:

    def test_schedule(self):
        assert [backoff_delay(i) for i in range(7)] == [1000, 2000, 4000, 8000, 10000, 10000, 10000]

    def test_custom_base_and_cap(self):
        assert backoff_delay(0, 250, 1000) == 250
        assert backoff_delay(3, 250, 1000) == 1000

    def test_negative_index_rejected(self):
        with pytest.raises(ValueError):
            backoff_delay(-1)


class TestUploadCoordinator:

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, make_client, fake_sleep, document):
        seen = []
        coordinator = make_coordinator(make_client, scripted_storage(200, seen=seen), fake_sleep)
        task = coordinator.new_task(document, bucket="listing-photos", object_path="tour-42/disclosure.pdf")

        result = await coordinator.submit(task)

        assert result.success is True
        assert result.locator == "listing-photos/tour-42/disclosure.pdf"
        assert result.error is None
        assert result.attempt_count == 1
        assert result.attempts[0].outcome == "success"
        assert fake_sleep.await_count == 0
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_request_shape(self, make_client, fake_sleep, document):
        seen = []
        coordinator = make_coordinator(make_client, scripted_storage(200, seen=seen), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="/tour 42/file.pdf")

        await coordinator.submit(task)

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == f"{STORAGE}/storage/v1/object/docs/tour%2042/file.pdf"
        assert request.headers["Authorization"] == "Bearer user-token"
        assert request.headers["x-upsert"] == "true"
        assert request.headers["Content-Type"] == "application/pdf"
        assert request.headers["Content-Length"] == str(document.size)
        assert request.content == document.data

    @pytest.mark.asyncio
    async def test_transient_failures_exhaust_budget(self, make_client, fake_sleep, document):
        seen = []
        coordinator = make_coordinator(make_client, scripted_storage(503, 503, 503, seen=seen), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf", max_attempts=2)
        progress = []

        result = await coordinator.submit(task, progress.append)

        assert result.success is False
        assert result.error_code == "transient_transport_error"
        assert result.error == "storage said 503 (503)"
        assert result.attempt_count == 3
        assert [a.outcome for a in result.attempts] == ["transient_error"] * 3
        assert len(seen) == 3
        assert sleeps(fake_sleep) == [1.0, 2.0]
        assert progress[-1] == 0

    @pytest.mark.asyncio
    async def test_succeeds_on_last_allowed_attempt(self, make_client, fake_sleep, document):
        coordinator = make_coordinator(make_client, scripted_storage(500, 502, 201), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf", max_attempts=2)

        result = await coordinator.submit(task)

        assert result.success is True
        assert [a.outcome for a in result.attempts] == ["transient_error", "transient_error", "success"]
        assert [a.attempt_index for a in result.attempts] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_zero_retries_means_one_attempt(self, make_client, fake_sleep, document):
        coordinator = make_coordinator(make_client, scripted_storage(500, 200), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf", max_attempts=0)

        result = await coordinator.submit(task)

        assert result.success is False
        assert result.attempt_count == 1
        assert fake_sleep.await_count == 0

    @pytest.mark.asyncio
    async def test_backoff_uses_configured_delays(self, make_client, fake_sleep, document):
        coordinator = make_coordinator(
            make_client,
            scripted_storage(500, 500, 500, 500, 500),
            fake_sleep,
            base_delay_ms=500,
            max_delay_ms=1500,
        )
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf", max_attempts=4)

        await coordinator.submit(task)

        assert sleeps(fake_sleep) == [0.5, 1.0, 1.5, 1.5]

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, make_client, fake_sleep, document):
        failure = httpx.ConnectError("connection refused")
        coordinator = make_coordinator(make_client, scripted_storage(failure, 200), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf")

        result = await coordinator.submit(task)

        assert result.success is True
        assert result.attempts[0].error == "Network error during upload"

    @pytest.mark.asyncio
    async def test_storage_401_is_terminal(self, make_client, fake_sleep, document):
        seen = []
        coordinator = make_coordinator(make_client, scripted_storage(401, 200, seen=seen), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf", max_attempts=5)

        result = await coordinator.submit(task)

        assert result.success is False
        assert result.error_code == "terminal_auth_error"
        assert result.attempt_count == 1
        assert result.attempts[0].outcome == "auth_error"
        assert len(seen) == 1
        assert fake_sleep.await_count == 0

    @pytest.mark.asyncio
    async def test_403_is_retried(self, make_client, fake_sleep, document):
        coordinator = make_coordinator(make_client, scripted_storage(403, 200), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf")

        result = await coordinator.submit(task)

        assert result.success is True
        assert result.attempt_count == 2

    @pytest.mark.asyncio
    async def test_missing_credential_short_circuits(self, make_client, fake_sleep, document):
        seen = []
        coordinator = UploadCoordinator(
            config=UploadConfig(storage_url=STORAGE, max_attempts=3),
            client=make_client(scripted_storage(seen=seen)),
            sleep=fake_sleep,
        )
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf")

        result = await coordinator.submit(task, credentials=StaticCredentialProvider(None))

        assert result.success is False
        assert result.error == "Please sign in to upload files"
        assert result.attempt_count == 1
        assert seen == []
        assert fake_sleep.await_count == 0

    @pytest.mark.asyncio
    async def test_credential_failure_is_terminal(self, make_client, fake_sleep, document):
        credentials = CountingCredentials(error=RuntimeError("session store down"))
        coordinator = make_coordinator(make_client, scripted_storage(), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf")

        result = await coordinator.submit(task, credentials=credentials)

        assert result.error_code == "terminal_auth_error"
        assert credentials.calls == 1

    @pytest.mark.asyncio
    async def test_token_fetched_for_every_attempt(self, make_client, fake_sleep, document):
        credentials = CountingCredentials()
        coordinator = make_coordinator(make_client, scripted_storage(500, 500, 200), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf")

        await coordinator.submit(task, credentials=credentials)

        assert credentials.calls == 3

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, make_client, fake_sleep, document):
        calls = []

        async def slow_then_fast(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                await asyncio.sleep(1)
            return httpx.Response(200)

        coordinator = make_coordinator(make_client, slow_then_fast, fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf", timeout_ms=20)

        result = await coordinator.submit(task)

        assert result.success is True
        assert result.attempts[0].outcome == "transient_error"
        assert result.attempts[0].error == "Upload timed out"
        assert sleeps(fake_sleep) == [1.0]


class TestProgress:

    @pytest.mark.asyncio
    async def test_progress_monotonic_and_complete(self, make_client, fake_sleep):
        # 3 MB streams as six 512 KB chunks
        asset = AssetDescriptor(name="plan.pdf", mime_type="application/pdf", data=b"x" * (3 * 1024 * 1024))
        coordinator = make_coordinator(make_client, scripted_storage(200), fake_sleep)
        task = coordinator.new_task(asset, bucket="docs", object_path="plan.pdf")
        progress = []

        await coordinator.submit(task, progress.append)

        assert progress[0] == 0
        assert progress[-1] == 100
        assert progress == sorted(progress)
        assert len(set(progress)) >= 6

    @pytest.mark.asyncio
    async def test_progress_resets_each_attempt(self, make_client, fake_sleep, document):
        coordinator = make_coordinator(make_client, scripted_storage(500, 200), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf")
        progress = []

        await coordinator.submit(task, progress.append)

        assert progress.count(0) == 2
        assert progress[-1] == 100
        second_attempt = progress[progress.index(0, 1):]
        assert second_attempt == sorted(second_attempt)

    @pytest.mark.asyncio
    async def test_progress_zero_on_failure(self, make_client, fake_sleep, document):
        coordinator = make_coordinator(make_client, scripted_storage(401), fake_sleep)
        task = coordinator.new_task(document, bucket="docs", object_path="a.pdf")
        progress = []

        await coordinator.submit(task, progress.append)

        assert progress[-1] == 0

    @pytest.mark.asyncio
    async def test_submit_many_reports_per_task(self, make_client, fake_sleep, document):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("bad.pdf"):
                return httpx.Response(500)
            return httpx.Response(200)

        coordinator = make_coordinator(make_client, handler, fake_sleep, max_attempts=1)
        good = coordinator.new_task(document, bucket="docs", object_path="good.pdf")
        bad = coordinator.new_task(document, bucket="docs", object_path="bad.pdf")
        board = ProgressBoard()

        results = await coordinator.submit_many([good, bad], board)

        assert [r.task_id for r in results] == [good.task_id, bad.task_id]
        assert results[0].success is True
        assert results[1].success is False
        assert results[1].attempt_count == 2
        assert board.snapshot() == {good.task_id: 100, bad.task_id: 0}

    @pytest.mark.asyncio
    async def test_board_forgets_finished_tasks(self, make_client, fake_sleep, document):
        coordinator = make_coordinator(make_client, scripted_storage(200, 200, 200), fake_sleep)
        tasks = [
            coordinator.new_task(document, bucket="docs", object_path=f"{n}.pdf")
            for n in range(3)
        ]
        board = ProgressBoard()

        await coordinator.submit_many(tasks, board)

        assert board.discard(tasks[0].task_id) == 100
        assert tasks[0].task_id not in board.snapshot()
        assert len(board.snapshot()) == 2
        assert board.discard(tasks[0].task_id) is None
        assert board.discard("never-started") is None

        board.clear()
        assert board.snapshot() == {}


class TestOptimizationBeforeTransfer:

    @pytest.mark.asyncio
    async def test_large_image_is_shrunk_before_upload(self, make_client, fake_sleep, noisy_image_bytes):
        seen = []
        photo = AssetDescriptor(
            name="porch.png",
            mime_type="image/png",
            data=noisy_image_bytes(600, 400),
        )
        coordinator = UploadCoordinator(
            config=UploadConfig(storage_url=STORAGE),
            credentials=CountingCredentials(),
            optimizer=AssetOptimizer(OptimizerConfig(max_bytes=1024, max_dimension=300)),
            client=make_client(scripted_storage(200, seen=seen)),
            sleep=fake_sleep,
        )
        task = coordinator.new_task(photo, bucket="photos", object_path="porch.png")

        result = await coordinator.submit(task)

        assert result.success is True
        assert seen[0].headers["Content-Type"] == "image/jpeg"
        assert int(seen[0].headers["Content-Length"]) < photo.size

    @pytest.mark.asyncio
    async def test_undecodable_image_uploaded_as_is(self, make_client, fake_sleep):
        seen = []
        broken = AssetDescriptor(name="scan.jpg", mime_type="image/jpeg", data=b"\x00" * 4096)
        coordinator = UploadCoordinator(
            config=UploadConfig(storage_url=STORAGE),
            credentials=CountingCredentials(),
            optimizer=AssetOptimizer(OptimizerConfig(max_bytes=1024)),
            client=make_client(scripted_storage(200, seen=seen)),
            sleep=fake_sleep,
        )

        result = await coordinator.submit(coordinator.new_task(broken, bucket="photos", object_path="scan.jpg"))

        assert result.success is True
        assert seen[0].content == broken.data


class TestStaticCredentialProvider:

    @pytest.mark.asyncio
    async def test_bearer_header_parsed(self):
        provider = StaticCredentialProvider.from_authorization_header("Bearer abc.def")
        assert await provider.get_access_token() == "abc.def"

    @pytest.mark.asyncio
    async def test_other_schemes_rejected(self):
        provider = StaticCredentialProvider.from_authorization_header("Basic dXNlcjpwYXNz")
        with pytest.raises(TerminalAuthError):
            await provider.get_access_token()
