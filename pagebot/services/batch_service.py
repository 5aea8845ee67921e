import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

from pagebot.config import settings
from pagebot.logging_config import get_logger

logger = get_logger("batch_service")

BATCH_SEPARATOR = "\n\n"

DispatchFunc = Callable[[str, str, Optional[str]], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class Spawner(Protocol):
    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> Any: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


@dataclass
class PendingBatch:
    recipient_id: Optional[str]
    messages: list[str] = field(default_factory=list)
    timer: Optional[TimerHandle] = None
    processing: bool = False
    # Texts that arrived after the batch was handed to the dispatcher.
    deferred: list[str] = field(default_factory=list)
    deferred_recipient_id: Optional[str] = None


class MessageBatcher:
    """Coalesces bursts of texts from one sender into a single turn.

    Each new text resets the sender's timer. When it fires the texts are joined with
    a blank line and dispatched once. While that dispatch runs, new texts are held
    and start the next batch after it completes, so a sender never has two turns in
    flight.
    """

    def __init__(
        self,
        dispatch: DispatchFunc,
        spawner: Spawner,
        scheduler: Optional[Scheduler] = None,
        delay_seconds: float = settings.batch_delay_seconds,
        enabled: bool = settings.batching_enabled,
    ):
        self._dispatch = dispatch
        self._spawner = spawner
        self._scheduler = scheduler or LoopScheduler()
        self.delay_seconds = delay_seconds
        self.enabled = enabled
        self._batches: dict[str, PendingBatch] = {}
        self._closed = False

    def enqueue(self, sender_id: str, text: str, recipient_id: Optional[str] = None) -> None:
        if not self.enabled:
            self._spawner.spawn(self._dispatch(sender_id, text, recipient_id), name="dispatch_unbatched")
            return

        batch = self._batches.get(sender_id)

        if batch is None:
            batch = PendingBatch(recipient_id=recipient_id, messages=[text])
            self._batches[sender_id] = batch
            self._arm(sender_id, batch)
            logger.debug("Batch started", extra={"context": {"sender_id": sender_id}})
            return

        if batch.processing:
            batch.deferred.append(text)
            batch.deferred_recipient_id = recipient_id
            logger.debug(
                "Batch in flight, deferring message",
                extra={"context": {"sender_id": sender_id, "deferred": len(batch.deferred)}},
            )
            return

        batch.messages.append(text)
        self._arm(sender_id, batch)
        logger.debug(
            "Message added to batch",
            extra={"context": {"sender_id": sender_id, "size": len(batch.messages)}},
        )

    def pending_for(self, sender_id: str) -> Optional[PendingBatch]:
        return self._batches.get(sender_id)

    def cancel_all(self) -> None:
        self._closed = True
        for batch in self._batches.values():
            if batch.timer is not None:
                batch.timer.cancel()
        self._batches.clear()

    def _arm(self, sender_id: str, batch: PendingBatch) -> None:
        if batch.timer is not None:
            batch.timer.cancel()
        batch.timer = self._scheduler.call_later(self.delay_seconds, lambda: self._fire(sender_id, batch))

    def _fire(self, sender_id: str, batch: PendingBatch) -> None:
        if self._batches.get(sender_id) is not batch or batch.processing:
            return
        batch.processing = True
        batch.timer = None
        self._spawner.spawn(self._process(sender_id, batch), name="dispatch_batch")

    async def _process(self, sender_id: str, batch: PendingBatch) -> None:
        combined = BATCH_SEPARATOR.join(batch.messages)
        logger.info(
            "Dispatching batch",
            extra={"context": {"sender_id": sender_id, "messages": len(batch.messages)}},
        )
        try:
            await self._dispatch(sender_id, combined, batch.recipient_id)
        except Exception:
            logger.exception("Batch dispatch failed", extra={"context": {"sender_id": sender_id}})
        finally:
            if self._batches.get(sender_id) is batch:
                del self._batches[sender_id]
            if batch.deferred and not self._closed:
                next_batch = PendingBatch(
                    recipient_id=batch.deferred_recipient_id or batch.recipient_id,
                    messages=list(batch.deferred),
                )
                self._batches[sender_id] = next_batch
                self._arm(sender_id, next_batch)
