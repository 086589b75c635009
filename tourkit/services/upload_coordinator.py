"""
Tourkit — Upload Coordinator
==============================

What:  Drives one asset's transfer to object storage with bounded retries,
       a per-attempt timeout, and live 0-100% progress.
Why:   Uploads start from phones on flaky connections. A single dropped
       connection should cost a short wait, not a lost photo, while an
       expired session must stop immediately instead of burning retries.
How:   tenacity.AsyncRetrying runs the attempt loop:
           stop   = max_attempts + 1 total attempts
           wait   = backoff_delay(retry index) (capped exponential)
           retry  = TransientTransportError only
       TerminalAuthError is not in the retry predicate, so it escapes the
       loop on first occurrence without consuming budget.

Attempt lifecycle:
    1. progress → 0
    2. fetch a fresh credential (failure → TerminalAuthError)
    3. stream the body in chunks, reporting progress as chunks are taken
    4. 2xx → success | 401 → TerminalAuthError | anything else,
       network error or timeout → TransientTransportError

Backoff schedule (base 1000ms, cap 10000ms):
    retry index:  0     1     2     3     4      5+
    delay (ms):   1000  2000  4000  8000  10000  10000
"""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from tourkit.config import UploadConfig
from tourkit.exceptions import TerminalAuthError, TransientTransportError
from tourkit.schemas.assets import (
    AssetDescriptor,
    Destination,
    TransferAttempt,
    UploadResult,
    UploadTask,
)
from tourkit.services.asset_optimizer import AssetOptimizer, optimal_chunk_size
from tourkit.services.credentials import CredentialProvider
from tourkit.services.http_client import build_async_client, describe_error_response

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
SleepFunc = Callable[[float], Awaitable[None]]


def backoff_delay(retry_index: int, base_delay_ms: int = 1_000, max_delay_ms: int = 10_000) -> int:
    """
    Milliseconds to wait before retry number `retry_index` (zero-based).

        delay(i) = min(base_delay_ms * 2^i, max_delay_ms)
    """
    if retry_index < 0:
        raise ValueError("retry_index must be >= 0")
    return min(base_delay_ms * (2 ** retry_index), max_delay_ms)


# ══════════════════════════════════════════════════════════════════════════
# Progress
# ══════════════════════════════════════════════════════════════════════════

class ProgressBoard:
    """
    Shared progress sink for several concurrent uploads.

    Each task writes only its own key; the lock serialises writes so a
    reader always sees a consistent snapshot.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._progress: Dict[str, int] = {}

    def update(self, task_id: str, percent: int) -> None:
        with self._lock:
            self._progress[task_id] = percent

    def reporter(self, task_id: str) -> ProgressCallback:
        def report(percent: int) -> None:
            self.update(task_id, percent)
        return report

    def get(self, task_id: str) -> int:
        with self._lock:
            return self._progress.get(task_id, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._progress)

    def discard(self, task_id: str) -> Optional[int]:
        """Forget a finished task; returns its last reported percent, if any."""
        with self._lock:
            return self._progress.pop(task_id, None)

    def clear(self) -> None:
        with self._lock:
            self._progress.clear()


class _AttemptProgress:
    """Turns byte counts into percentages; only ever reports increases."""

    def __init__(self, report: ProgressCallback):
        self._report = report
        self._last = 0

    def update(self, sent: int, total: int) -> None:
        percent = 100 if total <= 0 else min(100, (sent * 100) // total)
        if percent > self._last:
            self._last = percent
            self._report(percent)

    def complete(self) -> None:
        self.update(1, 1)


def _ignore_progress(_percent: int) -> None:
    return None


# ══════════════════════════════════════════════════════════════════════════
# Coordinator
# ══════════════════════════════════════════════════════════════════════════

class UploadCoordinator:
    """
    Transfers assets to {storage_url}/storage/v1/object/{bucket}/{path}.

    One coordinator can run many uploads at once; all per-upload state lives
    inside submit(). The httpx client is shared and closed by aclose().
    """

    def __init__(
        self,
        config: Optional[UploadConfig] = None,
        credentials: Optional[CredentialProvider] = None,
        optimizer: Optional[AssetOptimizer] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.config = config or UploadConfig()
        self.credentials = credentials
        self.optimizer = optimizer or AssetOptimizer()
        self._owns_client = client is None
        self._client = client or build_async_client(timeout_seconds=self.config.timeout_ms / 1000)
        self._sleep = sleep

    def new_task(
        self,
        asset: AssetDescriptor,
        bucket: str,
        object_path: str,
        max_attempts: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> UploadTask:
        """Build an UploadTask using this coordinator's configured defaults."""
        return UploadTask(
            source_asset=asset,
            destination=Destination(bucket=bucket, object_path=object_path),
            max_attempts=self.config.max_attempts if max_attempts is None else max_attempts,
            timeout_ms=timeout_ms or self.config.timeout_ms,
        )

    async def submit(
        self,
        task: UploadTask,
        on_progress: Optional[ProgressCallback] = None,
        *,
        credentials: Optional[CredentialProvider] = None,
    ) -> UploadResult:
        """
        Upload `task.source_asset`, retrying transient failures.

        Returns an UploadResult in every case; transport and auth failures
        are reported in it rather than raised.
        """
        provider = credentials or self.credentials
        report = on_progress or _ignore_progress
        asset = await asyncio.to_thread(self.optimizer.optimize_or_original, task.source_asset)
        attempts: List[TransferAttempt] = []

        logger.info(
            "[%s] Upload start: %s → %s (%d bytes, %d retries allowed)",
            task.task_id,
            asset.name,
            task.destination.locator,
            asset.size,
            task.max_attempts,
        )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(task.max_attempts + 1),
            wait=self._wait,
            retry=retry_if_exception_type(TransientTransportError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    record = TransferAttempt(
                        attempt_index=attempt.retry_state.attempt_number - 1,
                        started_at=datetime.now(timezone.utc),
                    )
                    attempts.append(record)
                    locator = await self._run_attempt(task, asset, provider, record, report)
        except TerminalAuthError as e:
            report(0)
            logger.warning("[%s] Upload stopped, not retrying: %s", task.task_id, e.message)
            return UploadResult(
                task_id=task.task_id,
                success=False,
                error=e.message,
                error_code="terminal_auth_error",
                attempts=attempts,
            )
        except TransientTransportError as e:
            report(0)
            logger.error(
                "[%s] Upload failed after %d attempts: %s",
                task.task_id,
                len(attempts),
                e.message,
            )
            return UploadResult(
                task_id=task.task_id,
                success=False,
                error=e.message,
                error_code="transient_transport_error",
                attempts=attempts,
            )

        logger.info("[%s] Upload complete after %d attempt(s)", task.task_id, len(attempts))
        return UploadResult(
            task_id=task.task_id,
            success=True,
            locator=locator,
            attempts=attempts,
        )

    async def submit_many(
        self,
        tasks: Iterable[UploadTask],
        board: Optional[ProgressBoard] = None,
        *,
        credentials: Optional[CredentialProvider] = None,
    ) -> List[UploadResult]:
        """Run independent uploads concurrently, each reporting under its task_id."""
        board = board or ProgressBoard()
        return list(
            await asyncio.gather(
                *(
                    self.submit(task, board.reporter(task.task_id), credentials=credentials)
                    for task in tasks
                )
            )
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Internals ─────────────────────────────────────────────────────────

    def _wait(self, retry_state: RetryCallState) -> float:
        # attempt_number counts attempts already made, so 1 → retry index 0
        delay_ms = backoff_delay(
            retry_state.attempt_number - 1,
            self.config.base_delay_ms,
            self.config.max_delay_ms,
        )
        return delay_ms / 1000

    async def _run_attempt(
        self,
        task: UploadTask,
        asset: AssetDescriptor,
        provider: Optional[CredentialProvider],
        record: TransferAttempt,
        report: ProgressCallback,
    ) -> str:
        report(0)
        try:
            token = await self._acquire_token(provider)
            locator = await asyncio.wait_for(
                self._transfer(task, asset, token, _AttemptProgress(report)),
                timeout=task.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            record.outcome = "transient_error"
            record.error = "Upload timed out"
            logger.warning("[%s] Attempt %d timed out", task.task_id, record.attempt_index + 1)
            raise TransientTransportError(
                message="Upload timed out",
                context={"timeout_ms": task.timeout_ms},
            ) from e
        except TerminalAuthError as e:
            record.outcome = "auth_error"
            record.error = e.message
            raise
        except TransientTransportError as e:
            record.outcome = "transient_error"
            record.error = e.message
            logger.warning(
                "[%s] Attempt %d failed: %s",
                task.task_id,
                record.attempt_index + 1,
                e.message,
            )
            raise

        record.outcome = "success"
        return locator

    async def _acquire_token(self, provider: Optional[CredentialProvider]) -> str:
        if provider is None:
            raise TerminalAuthError()
        try:
            token = await provider.get_access_token()
        except TerminalAuthError:
            raise
        except Exception as e:
            raise TerminalAuthError(
                message="Please sign in to upload files",
                context={"error_type": type(e).__name__},
            ) from e
        if not token:
            raise TerminalAuthError()
        return token

    async def _transfer(
        self,
        task: UploadTask,
        asset: AssetDescriptor,
        token: str,
        progress: _AttemptProgress,
    ) -> str:
        destination = task.destination
        url = (
            f"{self.config.storage_url.rstrip('/')}/storage/v1/object/"
            f"{quote(destination.bucket, safe='')}/{quote(destination.object_path.lstrip('/'))}"
        )
        headers = {
            "Authorization": f"Bearer {token}",
            "x-upsert": "true",
            "Content-Type": asset.mime_type,
            "Content-Length": str(asset.size),
        }

        try:
            response = await self._client.post(
                url,
                content=self._stream_body(asset.data, progress),
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise TransientTransportError(message="Upload timed out") from e
        except httpx.HTTPError as e:
            raise TransientTransportError(
                message="Network error during upload",
                context={"error": str(e)},
            ) from e

        if 200 <= response.status_code < 300:
            progress.complete()
            return destination.locator

        message = describe_error_response(response, "Upload failed")
        if response.status_code == 401:
            raise TerminalAuthError(message=message, context={"status_code": 401})
        raise TransientTransportError(message=message, status_code=response.status_code)

    @staticmethod
    async def _stream_body(data: bytes, progress: _AttemptProgress):
        total = len(data)
        chunk_size = optimal_chunk_size(total)
        sent = 0
        for start in range(0, total, chunk_size):
            piece = data[start:start + chunk_size]
            yield piece
            # Resumed only once the transport has taken the chunk
            sent += len(piece)
            progress.update(sent, total)
