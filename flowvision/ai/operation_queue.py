"""
FlowVision
Async AI Operation Queue.

Prioritised, cancellable, bounded worker pool in front of the AI provider.

Lifecycle of an operation:
    queued → running → completed | failed
    queued → cancelled
    running → cancelled   (cooperative: flagged, finalised at the next boundary)

Rules:
  - Dequeue order is high → normal → low, FIFO within a priority.
  - Provider settings (model, max_tokens, temperature, timeout) are
    snapshotted when the operation is queued; later config edits do not
    affect it.
  - Identical operations (same type + input + context) never execute
    concurrently; the second one re-checks the result cache first.
  - A running operation past its timeout is forced to ``failed``; its late
    result is discarded.
  - Terminal operations are dropped after ``retention_seconds``.
  - All state is guarded by one Condition; callers only ever see copies.

Usage:
    queue = AIOperationQueue(executor, settings_provider=cfg.operation_settings, app=app)
    queue.start()
    op_id = queue.queue_operation(AIOperation(type="issue_analysis", input="..."))
    queue.get_progress(op_id)
"""

from __future__ import annotations

import copy
import hashlib
import heapq
import itertools
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from flowvision.core.exceptions import ConflictError, ValidationError
from flowvision.models.ai import (
    AI_OPERATION_PRIORITIES,
    AI_OPERATION_TYPES,
    AI_TERMINAL_STATUSES,
    ESTIMATED_DURATIONS_MS,
)

logger = logging.getLogger(__name__)

PRIORITY_RANK = {"high": 0, "normal": 1, "low": 2}

# Seconds a completed result may be served again for an identical request
RESULT_CACHE_TTL_SECONDS = {
    "issue_analysis": 30 * 60,
    "initiative_generation": 60 * 60,
    "clustering": 15 * 60,
    "insights": 45 * 60,
}

DEFAULT_RETENTION_SECONDS = 60
DEFAULT_TIMEOUT_SECONDS = 30
HEALTHY_QUEUE_LENGTH = 10

_MISSING = object()


class OperationCancelled(Exception):
    """Raised inside an executor when its operation was cancelled or timed out."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Operation ────────────────────────────────────────────────────────────────


@dataclass
class AIOperation:
    type: str
    input: Any
    context: dict = field(default_factory=dict)
    priority: str = "normal"
    id: str | None = None
    requested_by: str | None = None
    tenant_id: str | None = None
    estimated_duration: int | None = None  # ms, advisory only

    status: str = "queued"
    progress: int = 0
    message: str = ""
    result: Any = None
    error: str | None = None
    cached: bool = False
    config: dict = field(default_factory=dict)
    cancel_requested: bool = False

    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    # queue clock readings
    queued_tick: float | None = None
    started_tick: float | None = None
    finished_tick: float | None = None
    deadline_tick: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in AI_TERMINAL_STATUSES

    def fingerprint(self) -> str:
        payload = json.dumps(
            {
                "tenant_id": self.tenant_id,
                "type": self.type,
                "input": self.input,
                "context": self.context or {},
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode()).hexdigest()

    @property
    def processing_time_ms(self) -> int | None:
        if self.started_tick is None or self.finished_tick is None:
            return None
        return int((self.finished_tick - self.started_tick) * 1000)

    def to_dict(self) -> dict:
        return {
            "operation_id": self.id,
            "type": self.type,
            "priority": self.priority,
            "status": self.status,
            "progress": self.progress,
            "message": self.message,
            "cached": self.cached,
            "estimated_duration": self.estimated_duration,
            "error": self.error,
            "requested_by": self.requested_by,
            "tenant_id": self.tenant_id,
            "config": dict(self.config),
            "processing_time_ms": self.processing_time_ms,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


TransitionListener = Callable[[AIOperation, "str | None"], None]
ProgressCallback = Callable[[AIOperation], None]


# ── Queue ────────────────────────────────────────────────────────────────────


class AIOperationQueue:
    """In-memory AI operation queue with a bounded worker pool.

    Args:
        executor: ``executor(op, progress) -> result``. ``op`` is a snapshot;
            ``progress(pct, message="")`` reports progress and raises
            ``OperationCancelled`` once the operation should stop.
        settings_provider: ``settings_provider(op_type) -> dict`` with
            model / max_tokens / temperature / timeout_seconds.
        max_workers: Worker threads started by :meth:`start`.
        retention_seconds: How long terminal operations stay queryable.
        default_timeout_seconds: Used when the settings carry no timeout.
        clock: Monotonic time source (seconds); injectable for tests.
        app: Flask app whose context wraps each execution.
    """

    def __init__(
        self,
        executor: Callable[[AIOperation, Callable], Any],
        *,
        settings_provider: Callable[[str], dict] | None = None,
        max_workers: int = 2,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        cache_ttls: dict[str, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
        app=None,
        poll_interval: float = 0.5,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._executor = executor
        self._settings_provider = settings_provider
        self.max_workers = max_workers
        self.retention_seconds = retention_seconds
        self.default_timeout_seconds = default_timeout_seconds
        self._cache_ttls = dict(RESULT_CACHE_TTL_SECONDS if cache_ttls is None else cache_ttls)
        self._clock = clock
        self._app = app
        self._poll_interval = poll_interval

        self._cond = threading.Condition()
        self._heap: list[tuple[int, int, str]] = []
        self._seq = itertools.count()
        self._operations: dict[str, AIOperation] = {}
        self._callbacks: dict[str, ProgressCallback] = {}
        self._result_cache: dict[str, tuple[float, Any]] = {}
        self._listeners: list[TransitionListener] = []

        self._fp_guard = threading.Lock()
        self._fp_locks: dict[str, list] = {}

        self._stopping = threading.Event()
        self._threads: list[threading.Thread] = []

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start the worker pool and the timeout/GC reaper. Idempotent."""
        if self.is_running:
            return
        self._stopping.clear()
        self._threads = [
            threading.Thread(target=self._worker_loop, name=f"ai-queue-worker-{i}", daemon=True)
            for i in range(self.max_workers)
        ]
        self._threads.append(
            threading.Thread(target=self._reaper_loop, name="ai-queue-reaper", daemon=True)
        )
        for t in self._threads:
            t.start()
        logger.info("AI operation queue started (workers=%d)", self.max_workers)

    def stop(self, timeout: float = 5.0) -> None:
        """Signal workers to exit and wait up to *timeout* seconds for each."""
        self._stopping.set()
        with self._cond:
            self._cond.notify_all()
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        logger.info("AI operation queue stopped")

    def add_listener(self, listener: TransitionListener) -> None:
        """Register ``listener(op_snapshot, previous_status)`` for every transition."""
        self._listeners.append(listener)

    # ── Enqueue / cancel ─────────────────────────────────────────────────

    def queue_operation(self, op: AIOperation, progress_callback: ProgressCallback | None = None) -> str:
        """Queue *op* and return its id immediately.

        Raises:
            ValidationError: Unknown type or priority.
            ConflictError: The id was already used by this queue.
        """
        if op.type not in AI_OPERATION_TYPES:
            raise ValidationError(
                f"Invalid operation type: {op.type}",
                details={"type": f"must be one of: {', '.join(AI_OPERATION_TYPES)}"},
            )
        if op.priority not in AI_OPERATION_PRIORITIES:
            raise ValidationError(
                f"Invalid priority: {op.priority}",
                details={"priority": f"must be one of: {', '.join(AI_OPERATION_PRIORITIES)}"},
            )

        op = copy.deepcopy(op)
        op.id = op.id or f"op_{uuid.uuid4().hex}"
        op.context = op.context or {}
        if op.estimated_duration is None:
            op.estimated_duration = ESTIMATED_DURATIONS_MS.get(op.type, 5000)
        # Snapshot settings outside the lock; the provider may hit the DB
        op.config = dict(self._settings_provider(op.type)) if self._settings_provider else {}
        op.config.setdefault("timeout_seconds", self.default_timeout_seconds)
        fingerprint = op.fingerprint()

        with self._cond:
            if op.id in self._operations:
                raise ConflictError(resource="AIOperation", field="id", value=op.id)
            now = self._clock()
            op.created_at = _utcnow()
            op.queued_tick = now
            op.status, op.progress, op.message = "queued", 0, "Queued for processing"
            op.cancel_requested = False
            self._operations[op.id] = op
            if progress_callback is not None:
                self._callbacks[op.id] = progress_callback

            cached = self._cache_lookup(fingerprint, now)
            if cached is not _MISSING:
                self._complete(op, cached, now, cached_hit=True)
            else:
                heapq.heappush(self._heap, (PRIORITY_RANK[op.priority], next(self._seq), op.id))
                self._cond.notify()
            snapshot = copy.deepcopy(op)

        logger.info(
            "Queued %s operation (priority=%s%s)", op.type, op.priority,
            ", cached" if snapshot.cached else "",
            extra={"operation_id": op.id, "operation_type": op.type, "tenant_id": op.tenant_id},
        )
        self._emit(snapshot, None)
        return op.id

    def cancel_operation(self, op_id: str, *, tenant_id: str | None = None) -> bool:
        """Cancel a queued or running operation.

        Returns False when the id is unknown (or belongs to another tenant
        when *tenant_id* is given) or the operation is already terminal.
        A running operation is flagged and finalised as ``cancelled`` by
        its worker; its result is never delivered.
        """
        with self._cond:
            op = self._visible(op_id, tenant_id)
            if op is None or op.is_terminal:
                return False
            if op.status == "running":
                op.cancel_requested = True
                op.message = "Cancellation requested"
                logger.info("Cancellation requested for running operation", extra={"operation_id": op_id})
                return True
            previous = op.status
            self._finalise(op, "cancelled", self._clock(), message="Operation cancelled")
            snapshot = copy.deepcopy(op)

        logger.info("Cancelled queued operation", extra={"operation_id": op_id})
        self._emit(snapshot, previous)
        return True

    # ── Dequeue / execute ────────────────────────────────────────────────

    def _pop_queued(self) -> AIOperation | None:
        while self._heap:
            _, _, op_id = heapq.heappop(self._heap)
            op = self._operations.get(op_id)
            if op is not None and op.status == "queued":
                return op
        return None

    def claim_next(self, timeout: float | None = 0) -> AIOperation | None:
        """Pop the highest-priority queued operation and mark it ``running``.

        Waits up to *timeout* seconds (``None`` = until stopped) for work.
        Returns a snapshot, or None when nothing was claimed.
        """
        wait_until = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                op = self._pop_queued()
                if op is not None:
                    break
                if self._stopping.is_set():
                    return None
                if wait_until is None:
                    self._cond.wait(self._poll_interval)
                    continue
                remaining = wait_until - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)

            now = self._clock()
            op.status = "running"
            op.started_at = _utcnow()
            op.started_tick = now
            op.deadline_tick = now + float(op.config.get("timeout_seconds") or self.default_timeout_seconds)
            op.progress = max(op.progress, 10)
            op.message = "Processing started"
            snapshot = copy.deepcopy(op)

        self._emit(snapshot, "queued")
        return snapshot

    def run_operation(self, op_id: str) -> AIOperation | None:
        """Execute a claimed operation on the calling thread; returns its final snapshot."""
        with self._cond:
            op = self._operations.get(op_id)
            if op is None or op.status != "running":
                return copy.deepcopy(op) if op else None
            fingerprint = op.fingerprint()

        if not self._acquire_fingerprint(fingerprint, op_id):
            # cancelled or timed out while an identical operation held the lock
            return self._finish_and_emit(op_id, "cancelled")
        try:
            with self._cond:
                op = self._operations.get(op_id)
                if op is None or op.status != "running":
                    return copy.deepcopy(op) if op else None
                now = self._clock()
                settled = None
                if op.cancel_requested:
                    settled = self._finish(op_id, "cancelled", now)
                else:
                    # an identical operation may have finished while we waited
                    cached = self._cache_lookup(fingerprint, now)
                    if cached is not _MISSING:
                        self._complete(op, cached, now, cached_hit=True)
                        settled = copy.deepcopy(op)
                snapshot = copy.deepcopy(op)

            if settled is not None:
                self._emit(settled, "running")
                return settled

            progress = self._progress_reporter(op_id)
            try:
                result = self._executor(snapshot, progress)
            except OperationCancelled:
                return self._finish_and_emit(op_id, "cancelled")
            except Exception as exc:  # executor errors become operation state
                logger.warning("Operation failed: %s", exc,
                               extra={"operation_id": op_id, "operation_type": snapshot.type})
                return self._finish_and_emit(op_id, "failed", error=str(exc) or exc.__class__.__name__)
            return self._finish_and_emit(op_id, "completed", result=result, fingerprint=fingerprint)
        finally:
            self._release_fingerprint(fingerprint)

    def process_next(self, timeout: float | None = 0) -> AIOperation | None:
        """Claim and execute one operation on the calling thread."""
        claimed = self.claim_next(timeout)
        if claimed is None:
            return None
        return self.run_operation(claimed.id)

    # ── Timeouts / GC ────────────────────────────────────────────────────

    def enforce_timeouts(self, now: float | None = None) -> list[str]:
        """Force running operations past their deadline to ``failed``."""
        now = self._clock() if now is None else now
        events = []
        with self._cond:
            for op in self._operations.values():
                if op.status == "running" and op.deadline_tick is not None and now >= op.deadline_tick:
                    budget = op.config.get("timeout_seconds") or self.default_timeout_seconds
                    self._finalise(op, "failed", now, error=f"Operation timed out after {budget}s")
                    events.append(copy.deepcopy(op))
        for snapshot in events:
            logger.warning("Operation timed out", extra={"operation_id": snapshot.id})
            self._emit(snapshot, "running")
        return [s.id for s in events]

    def purge_expired(self, now: float | None = None) -> int:
        """Drop terminal operations older than the retention window and stale cache entries."""
        now = self._clock() if now is None else now
        with self._cond:
            expired = [
                op_id for op_id, op in self._operations.items()
                if op.is_terminal and op.finished_tick is not None
                and now - op.finished_tick >= self.retention_seconds
            ]
            for op_id in expired:
                del self._operations[op_id]
                self._callbacks.pop(op_id, None)
            for fp in [fp for fp, (expires, _) in self._result_cache.items() if now >= expires]:
                del self._result_cache[fp]
        if expired:
            logger.debug("Purged %d expired AI operations", len(expired))
        return len(expired)

    # ── Queries ──────────────────────────────────────────────────────────

    def _visible(self, op_id: str, tenant_id: str | None) -> AIOperation | None:
        # caller holds self._cond; other tenants' operations look unknown
        op = self._operations.get(op_id)
        if op is None or (tenant_id is not None and op.tenant_id != tenant_id):
            return None
        return op

    def get_operation(self, op_id: str, *, tenant_id: str | None = None) -> AIOperation | None:
        with self._cond:
            op = self._visible(op_id, tenant_id)
            return copy.deepcopy(op) if op else None

    def get_progress(self, op_id: str, *, tenant_id: str | None = None) -> dict | None:
        with self._cond:
            op = self._visible(op_id, tenant_id)
            if op is None:
                return None
            remaining = None
            if op.status == "running" and op.started_tick is not None and op.estimated_duration:
                elapsed_ms = (self._clock() - op.started_tick) * 1000
                remaining = max(0, int(op.estimated_duration - elapsed_ms))
            elif op.status == "queued":
                remaining = op.estimated_duration
            return {
                "operation_id": op.id,
                "type": op.type,
                "status": op.status,
                "progress": op.progress,
                "message": op.message,
                "estimated_time_remaining": remaining,
                "cancel_requested": op.cancel_requested,
            }

    def get_result(self, op_id: str, *, tenant_id: str | None = None) -> dict | None:
        with self._cond:
            op = self._visible(op_id, tenant_id)
            if op is None:
                return None
            return {
                "operation_id": op.id,
                "type": op.type,
                "status": op.status,
                "result": copy.deepcopy(op.result) if op.status == "completed" else None,
                "error": op.error,
                "cached": op.cached,
                "processing_time_ms": op.processing_time_ms,
                "completed_at": op.completed_at.isoformat() if op.completed_at else None,
            }

    def queue_status(self) -> dict:
        with self._cond:
            queued = sum(1 for op in self._operations.values() if op.status == "queued")
            running = sum(1 for op in self._operations.values() if op.status == "running")
            cache_size = len(self._result_cache)
            tracked = len(self._operations)
        return {
            "queue_length": queued,
            "running": running,
            "active_operations": queued + running,
            "tracked_operations": tracked,
            "cache_size": cache_size,
            "workers": sum(1 for t in self._threads if t.is_alive() and t.name.startswith("ai-queue-worker")),
            "max_workers": self.max_workers,
            "processing": running > 0,
            "healthy": queued < HEALTHY_QUEUE_LENGTH,
        }

    # ── Internals (callers hold self._cond unless noted) ────────────────

    def _cache_lookup(self, fingerprint: str, now: float):
        entry = self._result_cache.get(fingerprint)
        if entry is None:
            return _MISSING
        expires, result = entry
        if now >= expires:
            del self._result_cache[fingerprint]
            return _MISSING
        return copy.deepcopy(result)

    def _finalise(self, op: AIOperation, status: str, now: float, *, error=None, message=None) -> None:
        op.status = status
        op.completed_at = _utcnow()
        op.finished_tick = now
        op.error = error
        if status == "completed":
            op.progress = 100
        op.message = message or {
            "completed": "Operation completed",
            "failed": "Operation failed",
            "cancelled": "Operation cancelled",
        }[status]

    def _complete(self, op: AIOperation, result, now: float, *, cached_hit: bool) -> None:
        op.result = result
        op.cached = cached_hit
        if op.started_tick is None:
            op.started_tick = now
            op.started_at = _utcnow()
        self._finalise(op, "completed", now, message="Served from cache" if cached_hit else None)

    def _finish(self, op_id: str, status: str, now: float, *, result=None, error=None, fingerprint=None):
        """Apply a worker outcome; returns a snapshot or None if the outcome was discarded."""
        op = self._operations.get(op_id)
        if op is None or op.status != "running":
            logger.debug("Discarding late %s outcome", status, extra={"operation_id": op_id})
            return None
        if op.cancel_requested and status == "completed":
            status = "cancelled"
        if status == "completed":
            self._complete(op, result, now, cached_hit=False)
            ttl = self._cache_ttls.get(op.type, 0)
            if fingerprint and ttl > 0:
                self._result_cache[fingerprint] = (now + ttl, copy.deepcopy(result))
        else:
            self._finalise(op, status, now, error=error)
        return copy.deepcopy(op)

    def _finish_and_emit(self, op_id: str, status: str, *, result=None, error=None, fingerprint=None):
        # Called without the lock held
        with self._cond:
            snapshot = self._finish(op_id, status, self._clock(),
                                    result=result, error=error, fingerprint=fingerprint)
            current = copy.deepcopy(self._operations.get(op_id))
        if snapshot is None:
            return current
        logger.info("Operation %s", snapshot.status,
                    extra={"operation_id": op_id, "operation_type": snapshot.type,
                           "duration_ms": snapshot.processing_time_ms})
        self._emit(snapshot, "running")
        return snapshot

    def _progress_reporter(self, op_id: str) -> Callable[..., None]:
        def report(pct: int, message: str = "") -> None:
            with self._cond:
                op = self._operations.get(op_id)
                if op is None or op.status != "running" or op.cancel_requested:
                    raise OperationCancelled(op_id)
                op.progress = max(0, min(99, int(pct)))
                if message:
                    op.message = message
                snapshot = copy.deepcopy(op)
                callback = self._callbacks.get(op_id)
            if callback is not None:
                self._safe_callback(callback, snapshot)
        return report

    def _acquire_fingerprint(self, fingerprint: str, op_id: str) -> bool:
        """Wait for the fingerprint lock while *op_id* is still running and not cancelled.

        Returns False (lock not held) once the operation stops waiting.
        """
        with self._fp_guard:
            entry = self._fp_locks.setdefault(fingerprint, [threading.Lock(), 0])
            entry[1] += 1
        while not entry[0].acquire(timeout=self._poll_interval):
            with self._cond:
                op = self._operations.get(op_id)
                waiting = op is not None and op.status == "running" and not op.cancel_requested
            if not waiting:
                self._drop_fingerprint_ref(fingerprint)
                return False
        return True

    def _release_fingerprint(self, fingerprint: str) -> None:
        with self._fp_guard:
            self._fp_locks[fingerprint][0].release()
        self._drop_fingerprint_ref(fingerprint)

    def _drop_fingerprint_ref(self, fingerprint: str) -> None:
        with self._fp_guard:
            entry = self._fp_locks[fingerprint]
            entry[1] -= 1
            if entry[1] == 0:
                del self._fp_locks[fingerprint]

    def _safe_callback(self, callback: ProgressCallback, snapshot: AIOperation) -> None:
        try:
            callback(snapshot)
        except Exception:  # progress callbacks are best-effort
            logger.exception("Progress callback failed", extra={"operation_id": snapshot.id})

    def _emit(self, snapshot: AIOperation, previous: str | None) -> None:
        # Called without the lock held
        callback = self._callbacks.get(snapshot.id)
        if callback is not None:
            self._safe_callback(callback, snapshot)
        for listener in list(self._listeners):
            try:
                listener(snapshot, previous)
            except Exception:  # a broken listener must not stall the queue
                logger.exception("Operation transition listener failed", extra={"operation_id": snapshot.id})

    # ── Threads ──────────────────────────────────────────────────────────

    def _in_app_context(self, fn, *args):
        if self._app is None:
            return fn(*args)
        with self._app.app_context():
            return fn(*args)

    def _worker_loop(self) -> None:
        while not self._stopping.is_set():
            claimed = self.claim_next(timeout=self._poll_interval)
            if claimed is None:
                continue
            try:
                self._in_app_context(self.run_operation, claimed.id)
            except Exception:  # keep the worker alive
                logger.exception("Worker crashed while running operation", extra={"operation_id": claimed.id})

    def _reaper_loop(self) -> None:
        while not self._stopping.wait(self._poll_interval):
            try:
                self._in_app_context(self.enforce_timeouts)
                self.purge_expired()
            except Exception:  # keep the reaper alive
                logger.exception("AI queue reaper iteration failed")
