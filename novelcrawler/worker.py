"""
Download worker.

Each Worker is a thread with its own inbox. It shares nothing with its
peers and talks to the pool only through dict messages:

    pool -> worker:  {"type": "download", "id", "title"}, {"type": "exit"}
    worker -> pool:  {"type": "ready"}, {"type": "progress", ...},
                     {"type": "result", ...}, {"type": "error", ...},
                     {"type": "exit", "code"}

Outgoing messages are put on the pool's event queue as ``(worker, message)``.
"""

import queue
import threading
from typing import Any, Callable, Dict

from .errors import WorkerFaultError
from .job import JobRunner
from .logger import get_logger
from .models import JobRequest, JobResult

logger = get_logger()

PROGRESS_EVERY = 20


class Worker(threading.Thread):
    """
    Run download jobs one at a time.

    Args:
        identity: Logical worker number, preserved across respawns
        events: The pool's event queue
        runner_factory: Builds this worker's job runner inside the thread
    """

    def __init__(self, identity: int, events: "queue.Queue", runner_factory: Callable[[], JobRunner]):
        super().__init__(name=f"worker-{identity}", daemon=True)
        self.identity = identity
        self.inbox: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self.exit_code = None
        self._events = events
        self._runner_factory = runner_factory

    def send(self, message: Dict[str, Any]) -> None:
        self.inbox.put(message)

    def _emit(self, message: Dict[str, Any]) -> None:
        self._events.put((self, message))

    def run(self) -> None:
        # Anything but the exit message ends with a non-zero code
        exit_code = 1
        try:
            runner = self._runner_factory()
            self._emit({"type": "ready"})
            while True:
                message = self.inbox.get()
                kind = message.get("type")
                if kind == "exit":
                    exit_code = 0
                    break
                if kind == "download":
                    self._download(runner, message)
                else:
                    raise WorkerFaultError(f"Unknown message type: {kind!r}")
        except Exception as e:
            logger.exception(f"Worker {self.identity} crashed", error=str(e))
            self._emit({"type": "error", "error": str(e), "error_type": type(e).__name__})
        finally:
            self.exit_code = exit_code
            self._emit({"type": "exit", "code": exit_code})

    def _download(self, runner: JobRunner, message: Dict[str, Any]) -> None:
        request = JobRequest(id=message["id"], title=message.get("title", ""))

        def progress(completed: int, total: int, title: str) -> None:
            if completed % PROGRESS_EVERY == 0 or completed == total:
                self._emit({
                    "type": "progress",
                    "id": request.id,
                    "title": title,
                    "completed": completed,
                    "total": total,
                })

        try:
            result = runner(request, progress)
        except WorkerFaultError:
            raise
        except Exception as e:
            logger.error("Job raised", id=request.id, error=str(e), error_type=type(e).__name__)
            result = JobResult.failure(request.id, str(e), title=request.title)

        logger.record_job(result.outcome.value)
        self._emit(result.to_message())
