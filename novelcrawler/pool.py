"""
Worker pool coordinator.

All pool state (slot table, job queue, idle workers, stats) is owned by a
single event-loop thread. Worker messages and the public methods'
control messages arrive on one queue and are handled one at a time, so
none of that state needs a lock.
"""

import queue
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Union

from .errors import PoolStartupError
from .job import JobRunner
from .logger import get_logger
from .models import JobRequest, ListingItem, PoolStats, WorkerPhase
from .worker import Worker

logger = get_logger()

_STOP = object()


@dataclass
class WorkerState:
    """Slot binding a logical worker identity to its live thread."""

    identity: int
    phase: WorkerPhase = WorkerPhase.STARTING
    worker: Optional[Worker] = None
    job: Optional[JobRequest] = None
    respawns: int = 0
    ever_ready: bool = False
    settled: threading.Event = field(default_factory=threading.Event)


class WorkerPool:
    """
    Fixed-size pool of download workers fed from a FIFO queue.

    Args:
        size: Number of workers
        runner_factory: Called once inside each worker thread to build its job runner
        start_timeout: Seconds start() waits for each worker to report ready
    """

    def __init__(self, size: int, runner_factory: Callable[[], JobRunner], start_timeout: float = 30.0):
        if size < 1:
            raise ValueError(f"Pool size must be at least 1, got {size}")
        self.size = size
        self.start_timeout = start_timeout
        self.stats = PoolStats()
        self.total_queued = 0
        self.slots: List[WorkerState] = [WorkerState(identity=i + 1) for i in range(size)]
        self._runner_factory = runner_factory
        self._events: "queue.Queue" = queue.Queue()
        self._queue: Deque[JobRequest] = deque()
        self._idle: Deque[int] = deque()
        self._done_waiters: List[threading.Event] = []
        self._closed = False
        self._loop = threading.Thread(target=self._event_loop, name="pool-coordinator", daemon=True)

    # Public API

    def start(self) -> None:
        """Spawn every worker and wait until each is ready (or has crashed)."""
        logger.info(f"Spawning {self.size} worker threads...")
        self._loop.start()

        for slot in self.slots:
            try:
                self._spawn(slot)
            except RuntimeError as e:
                logger.error(f"Worker {slot.identity} could not start", error=str(e))
                slot.phase = WorkerPhase.CRASHED
                slot.settled.set()

        for slot in self.slots:
            if not slot.settled.wait(self.start_timeout):
                logger.warning(f"Worker {slot.identity} not ready after {self.start_timeout}s")

        ready = sum(1 for slot in self.slots if slot.ever_ready)
        if ready == 0:
            self._stop_loop()
            raise PoolStartupError(f"None of {self.size} workers could be started")
        logger.info(f"{ready}/{self.size} workers ready.")

    def enqueue(self, jobs: Iterable[Union[JobRequest, ListingItem]]) -> None:
        requests = [j if isinstance(j, JobRequest) else JobRequest.from_listing(j) for j in jobs]
        self._post({"type": "enqueue", "jobs": requests})

    def wait_until_done(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is empty and nothing is in flight."""
        done = threading.Event()
        self._post({"type": "wait", "event": done})
        return done.wait(timeout)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop dispatching, tell every worker to exit and wait for them."""
        if not self._loop.is_alive():
            return
        stopped = threading.Event()
        self._post({"type": "shutdown", "event": stopped})
        stopped.wait(timeout)

        for slot in self.slots:
            if slot.worker is not None:
                slot.worker.join(timeout)
        self._stop_loop(timeout)

    @property
    def queued(self) -> int:
        return len(self._queue)

    # Event loop

    def _post(self, message: Dict[str, Any]) -> None:
        self._events.put((None, message))

    def _stop_loop(self, timeout: Optional[float] = None) -> None:
        self._events.put((None, _STOP))
        self._loop.join(timeout)

    def _event_loop(self) -> None:
        while True:
            source, message = self._events.get()
            if message is _STOP:
                break
            try:
                if source is None:
                    self._handle_control(message)
                else:
                    self._handle_worker_message(source, message)
            except Exception as e:
                logger.exception("Pool handler failed", error=str(e), message_type=message.get("type"))

    def _handle_control(self, message: Dict[str, Any]) -> None:
        kind = message["type"]
        if kind == "enqueue":
            self._queue.extend(message["jobs"])
            self.total_queued += len(message["jobs"])
            self._dispatch()
            self._drain_if_no_workers()
            self._check_done()
        elif kind == "wait":
            self._done_waiters.append(message["event"])
            self._check_done()
        elif kind == "shutdown":
            self._closed = True
            for slot in self.slots:
                if slot.worker is not None and slot.phase is not WorkerPhase.CRASHED:
                    slot.worker.send({"type": "exit"})
            message["event"].set()

    def _handle_worker_message(self, worker: Worker, message: Dict[str, Any]) -> None:
        slot = self.slots[worker.identity - 1]
        kind = message.get("type")

        if kind == "exit":
            self._handle_exit(slot, worker, message.get("code"))
            return
        if slot.worker is not worker:
            logger.warning(f"Ignoring {kind!r} from replaced worker {worker.identity}")
            return

        if kind == "ready":
            self._handle_ready(slot)
        elif kind == "progress":
            self._handle_progress(slot, message)
        elif kind == "result":
            self._handle_result(slot, message)
        elif kind == "error":
            self._handle_error(slot, message)
        else:
            logger.warning(f"Unknown message from worker {worker.identity}", type=kind)

    def _handle_ready(self, slot: WorkerState) -> None:
        slot.phase = WorkerPhase.READY
        slot.ever_ready = True
        slot.settled.set()
        self._make_idle(slot)
        self._dispatch()
        self._check_done()

    def _handle_progress(self, slot: WorkerState, message: Dict[str, Any]) -> None:
        total = message["total"] or 1
        pct = round(message["completed"] / total * 100)
        logger.info(
            f"[Worker {slot.identity}] {message['title']}: "
            f"{message['completed']}/{message['total']} chapters ({pct}%)  |  "
            f"Overall: {self.stats.completed}/{self.total_queued} novels"
        )

    def _handle_result(self, slot: WorkerState, message: Dict[str, Any]) -> None:
        self.stats.in_flight -= 1
        slot.job = None

        name = message.get("title") or message["id"]
        if message.get("success"):
            self.stats.succeeded += 1
            failed = message.get("failed_fragments") or 0
            fail_info = f" ({failed} chapters failed)" if failed else ""
            logger.info(f"[Worker {slot.identity}] done: {name} - {message.get('total_fragments')} chapters{fail_info}")
        elif message.get("skipped"):
            self.stats.skipped += 1
            logger.info(f"[Worker {slot.identity}] skipped: {message['id']} - {message.get('error')}")
        else:
            self.stats.failed += 1
            logger.error(f"[Worker {slot.identity}] failed: {message['id']} - {message.get('error')}")

        self._make_idle(slot)
        self._dispatch()
        self._check_done()

    def _handle_error(self, slot: WorkerState, message: Dict[str, Any]) -> None:
        logger.error(f"Worker {slot.identity} error: {message.get('error')}")
        self._fault(slot)

    def _fault(self, slot: WorkerState) -> None:
        """Fail the held job, mark the slot crashed and respawn it unless it never started."""
        was_starting = slot.phase is WorkerPhase.STARTING
        if slot.job is not None:
            self.stats.in_flight -= 1
            self.stats.failed += 1
            logger.error(f"[Worker {slot.identity}] failed: {slot.job.id} - worker crashed")
            slot.job = None
        slot.phase = WorkerPhase.CRASHED
        if slot.identity in self._idle:
            self._idle.remove(slot.identity)

        if was_starting:
            # Never came up; respawning would just crash again
            slot.settled.set()
            self._drain_if_no_workers()
        elif not self._closed:
            slot.respawns += 1
            logger.info(f"Respawning worker {slot.identity}")
            try:
                self._spawn(slot)
            except RuntimeError as e:
                logger.error(f"Worker {slot.identity} could not be respawned", error=str(e))
                self._drain_if_no_workers()
        self._check_done()

    def _handle_exit(self, slot: WorkerState, worker: Worker, code: Optional[int]) -> None:
        if code in (0, None):
            return
        logger.error(f"Worker {worker.identity} exited with code {code}")
        # Died without reporting an error first
        if slot.worker is worker and slot.phase is not WorkerPhase.CRASHED:
            self._fault(slot)

    # Helpers

    def _spawn(self, slot: WorkerState) -> None:
        worker = Worker(slot.identity, self._events, self._runner_factory)
        slot.worker = worker
        slot.phase = WorkerPhase.STARTING
        worker.start()

    def _make_idle(self, slot: WorkerState) -> None:
        slot.phase = WorkerPhase.IDLE
        self._idle.append(slot.identity)

    def _dispatch(self) -> None:
        while self._idle and self._queue and not self._closed:
            slot = self.slots[self._idle.popleft() - 1]
            job = self._queue.popleft()
            slot.phase = WorkerPhase.BUSY
            slot.job = job
            self.stats.in_flight += 1
            slot.worker.send({"type": "download", "id": job.id, "title": job.title})

    def _drain_if_no_workers(self) -> None:
        alive = [s for s in self.slots if s.phase is not WorkerPhase.CRASHED]
        if alive or not self._queue:
            return
        logger.error(f"No workers left; failing {len(self._queue)} queued job(s)")
        self.stats.failed += len(self._queue)
        self._queue.clear()

    def _check_done(self) -> None:
        if not self._done_waiters:
            return
        if self.stats.in_flight == 0 and not self._queue:
            waiters, self._done_waiters = self._done_waiters, []
            for event in waiters:
                event.set()
