"""Persisted, batched message queue for the Mixpanel ingestion API.

Messages are appended in memory and written to disk on every mutation.
flush() drains the queue in batches; each batch is a single POST carrying
messages of one type, in insertion order. A batch is removed only after
the server accepted it, so a failed flush leaves the queue untouched.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional, Set

import httpx

from mixpanel_analytics.config import MixpanelConfiguration
from mixpanel_analytics.errors import MixpanelError, NetworkError, PersistenceError
from mixpanel_analytics.events import MixpanelMessage
from mixpanel_analytics.storage import JsonFileStore

logger = logging.getLogger(__name__)

QUEUE_FILENAME = "queue.json"

# Statuses worth retrying as-is; other 4xx mean the payload itself is bad.
_RETRYABLE_STATUS = {408, 429}
_PAYLOAD_TOO_LARGE = 413


class BatchRejected(MixpanelError):
    """The server refused a batch; resending it unchanged cannot succeed."""


class MessageQueue:
    """Batched, async-safe queue with single-flight flushing.

    ``enqueue`` only takes the append lock and touches local disk.
    ``flush`` snapshots a batch under that lock, releases it for the
    network round-trip, and takes it again to remove what was sent.
    Concurrent ``flush`` calls share the one in flight.
    """

    def __init__(
        self,
        config: Optional[MixpanelConfiguration] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        store: Optional[JsonFileStore] = None,
    ):
        self.config = (config or MixpanelConfiguration()).validate()
        self._store = store or JsonFileStore(self.config.storage_dir / QUEUE_FILENAME)

        self._queue: List[MixpanelMessage] = []
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Future] = None
        self._auto_task: Optional[asyncio.Task] = None

        self._client = client
        self._owns_client = client is None

        self._batch_size = self.config.batch_size
        self._failures = 0
        self._next_attempt_at = 0.0

        self.load()

    # -- persistence --

    def load(self) -> None:
        """Replace the in-memory queue with what is on disk."""
        try:
            raw = self._store.read(default=[])
        except PersistenceError:
            logger.exception("Queue storage unreadable; starting empty")
            raw = []

        messages = []
        for item in raw if isinstance(raw, list) else []:
            try:
                messages.append(MixpanelMessage.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed queued message: %r", item)
        self._queue = messages[-self.config.max_queue_size :]
        if messages:
            logger.info("Restored %d queued messages", len(self._queue))

    async def _persist(self) -> None:
        # Caller holds self._lock.
        snapshot = [m.to_dict() for m in self._queue]
        try:
            await asyncio.to_thread(self._store.write, snapshot)
        except PersistenceError:
            logger.exception("Failed to persist queue (%d messages)", len(snapshot))

    # -- lazy init --

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.request_timeout,
                headers={"Accept": "application/json"},
            )
            self._owns_client = True
        return self._client

    # -- public API --

    @property
    def pending(self) -> List[MixpanelMessage]:
        return [m.copy() for m in self._queue]

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def is_flushing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def backoff_remaining(self) -> float:
        return max(0.0, self._next_attempt_at - time.monotonic())

    async def enqueue(self, message: MixpanelMessage) -> None:
        async with self._lock:
            if len(self._queue) >= self.config.max_queue_size:
                dropped = self._queue.pop(0)
                logger.warning(
                    "Queue full (%d); dropping oldest message %s",
                    self.config.max_queue_size,
                    dropped.message_id,
                )
            self._queue.append(message.copy())
            should_flush = (
                self.config.auto_flush and len(self._queue) >= self._batch_size
            )
            await self._persist()
        if should_flush and not self.is_flushing and not self.backoff_remaining():
            self._start_flush()

    async def flush(self) -> int:
        """Send what is queued right now; return how many were delivered.

        Messages enqueued while the flush runs are left for the next one.

        If a flush is already running this waits for it instead of
        starting another one. Manual flushes ignore the backoff window.
        """
        if not self.is_flushing:
            self._start_flush()
        return await asyncio.shield(self._inflight)

    def start(self) -> None:
        """Start periodic flushing. Must be called from a running loop."""
        if not self.config.auto_flush or self._auto_task is not None:
            return
        self._auto_task = asyncio.create_task(self._auto_flush_loop())
        logger.debug("Auto flush every %.1fs", self.config.flush_interval)

    async def stop(self) -> None:
        task, self._auto_task = self._auto_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def set_configuration(self, config: MixpanelConfiguration) -> None:
        """Swap configuration; the storage location stays where it was."""
        config.validate()
        was_running = self._auto_task is not None
        await self.stop()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        self.config = config
        self._batch_size = config.batch_size
        if was_running:
            self.start()

    async def close(self) -> None:
        """Stop auto flush, try a last flush, and release the HTTP client.

        Whatever could not be sent stays persisted for the next run.
        """
        await self.stop()
        if self._queue:
            await self.flush()
        elif self._inflight is not None:
            await asyncio.shield(self._inflight)
        async with self._lock:
            await self._persist()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # -- flushing --

    def _start_flush(self) -> None:
        self._inflight = asyncio.ensure_future(self._drain())

    async def _auto_flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.flush_interval)
            remaining = self.backoff_remaining()
            if remaining:
                logger.debug("Auto flush skipped; backing off %.1fs", remaining)
                continue
            if self._queue:
                await self.flush()

    def _next_batch(self, eligible: Set[str]) -> List[MixpanelMessage]:
        # Longest same-type prefix: /track and /engage take separate requests.
        batch: List[MixpanelMessage] = []
        for message in self._queue:
            if message.message_id not in eligible or len(batch) >= self._batch_size:
                break
            if batch and message.message_type is not batch[0].message_type:
                break
            batch.append(message)
        return batch

    async def _drain(self) -> int:
        # Only what is queued now; later messages wait for the next flush.
        async with self._lock:
            eligible = {m.message_id for m in self._queue}

        sent = 0
        while True:
            async with self._lock:
                batch = self._next_batch(eligible)
            if not batch:
                break

            try:
                await self._send(batch)
            except NetworkError as e:
                self._record_failure(e, len(batch))
                break
            except BatchRejected as e:
                logger.error("Dropping %d rejected messages: %s", len(batch), e)
            except Exception:
                logger.exception("Flush failed; keeping %d messages", len(batch))
                break
            else:
                sent += len(batch)
                self._failures = 0
                self._next_attempt_at = 0.0
                if self._batch_size < self.config.batch_size:
                    self._batch_size = min(self.config.batch_size, self._batch_size * 2)
                logger.debug("Flushed %d Mixpanel messages", len(batch))

            eligible.difference_update(m.message_id for m in batch)
            await self._remove(batch)
        return sent

    async def _remove(self, batch: List[MixpanelMessage]) -> None:
        ids = {m.message_id for m in batch}
        async with self._lock:
            self._queue = [m for m in self._queue if m.message_id not in ids]
            await self._persist()

    def _record_failure(self, error: NetworkError, count: int) -> None:
        if error.status_code == _PAYLOAD_TOO_LARGE:
            self._batch_size = max(1, count // 2)
            logger.warning(
                "Batch too large; retrying with batches of %d", self._batch_size
            )
            return
        self._failures += 1
        delay = min(
            self.config.backoff_base * 2 ** (self._failures - 1),
            self.config.backoff_max,
        )
        self._next_attempt_at = time.monotonic() + delay
        logger.warning(
            "Flush failed (%s); %d messages kept, next automatic attempt in %.0fs",
            error,
            count,
            delay,
        )

    async def _send(self, batch: List[MixpanelMessage]) -> None:
        url = self.config.events_url if batch[0].is_event else self.config.people_url
        body = [m.payload for m in batch]
        try:
            response = await self._get_client().post(
                url,
                json=body,
                params={"verbose": "1"},
                timeout=self.config.request_timeout,
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"{type(e).__name__}: {e}") from e

        status = response.status_code
        if status == _PAYLOAD_TOO_LARGE and len(batch) == 1:
            raise BatchRejected(f"HTTP {status}: message too large")
        if status >= 500 or status in _RETRYABLE_STATUS or status == _PAYLOAD_TOO_LARGE:
            raise NetworkError(f"HTTP {status} from {url}", status_code=status)
        if status >= 400:
            raise BatchRejected(f"HTTP {status}: {response.text[:200]}")

        try:
            result = response.json()
        except ValueError:
            return
        if result == 0 or (isinstance(result, dict) and result.get("status") == 0):
            error = result.get("error") if isinstance(result, dict) else None
            raise BatchRejected(error or "status 0")
