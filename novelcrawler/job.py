"""
Download job: resolve one novel's chapters and assemble them into a bundle.

A Job walks ``pending -> fetching_manifest -> fetching_fragments ->
assembling -> done``, leaving early to ``failed`` or ``skipped``. States only
move forward and an instance runs once.
"""

import time
from enum import Enum
from typing import Callable, List, Optional

from .assembler import EpubAssembler
from .config import CrawlerConfig
from .errors import AssemblyError, CeilingExceededError, FetchError, ManifestError
from .fetcher import Fetcher
from .fragments import FragmentFetchTask, RetryController, fill_placeholders
from .limiter import ConcurrencyLimiter
from .logger import get_logger
from .models import Fragment, JobRequest, JobResult, NovelManifest
from .scrapers.freewebnovel import FreeWebNovelSource

logger = get_logger()

ProgressCallback = Callable[[int, int, str], None]
JobRunner = Callable[[JobRequest, Optional[ProgressCallback]], JobResult]


class JobState(str, Enum):
    PENDING = "pending"
    FETCHING_MANIFEST = "fetching_manifest"
    FETCHING_FRAGMENTS = "fetching_fragments"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


_TRANSITIONS = {
    JobState.PENDING: {JobState.FETCHING_MANIFEST},
    JobState.FETCHING_MANIFEST: {JobState.FETCHING_FRAGMENTS, JobState.FAILED, JobState.SKIPPED},
    JobState.FETCHING_FRAGMENTS: {JobState.ASSEMBLING, JobState.FAILED},
    JobState.ASSEMBLING: {JobState.DONE, JobState.FAILED},
    JobState.DONE: set(),
    JobState.FAILED: set(),
    JobState.SKIPPED: set(),
}


class Job:
    """
    Fetch a novel's manifest and every chapter, then hand them to the assembler.

    Args:
        request: Which novel to download
        source: Object with fetch_manifest(slug) and fetch_chapter(url)
        assembler: Object with assemble(metadata, fragments) -> path
        concurrency: Simultaneous chapter fetches
        delay: Seconds between chapter requests; retry cooldown is twice this
        max_fragments: Skip novels with more chapters (0 disables the ceiling)
        retry_passes: Extra passes over failed chapters
        on_progress: Optional callback(completed, total, title) for the first pass
        sleep: Sleep function, injectable for tests
    """

    def __init__(
        self,
        request: JobRequest,
        source,
        assembler,
        concurrency: int = 3,
        delay: float = 1.0,
        max_fragments: int = 2000,
        retry_passes: int = 2,
        on_progress: Optional[ProgressCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.request = request
        self.source = source
        self.assembler = assembler
        self.max_fragments = max_fragments
        self.on_progress = on_progress
        self.limiter = ConcurrencyLimiter(limit=concurrency, delay=delay, sleep=sleep,
                                          name=f"job-{request.id}")
        self.retry_controller = RetryController(self.limiter, passes=retry_passes,
                                                cooldown=delay * 2, sleep=sleep)
        self.state = JobState.PENDING
        self.fragments: List[Fragment] = []

    def _transition(self, new_state: JobState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid job transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    def run(self) -> JobResult:
        if self.state is not JobState.PENDING:
            raise RuntimeError(f"Job {self.request.id} has already run")

        request = self.request
        self._transition(JobState.FETCHING_MANIFEST)
        try:
            manifest = self._fetch_manifest()
        except CeilingExceededError as e:
            self._transition(JobState.SKIPPED)
            return JobResult.skipped(request.id, str(e), title=request.title, total=e.count)
        except (ManifestError, FetchError) as e:
            self._transition(JobState.FAILED)
            return JobResult.failure(request.id, str(e), title=request.title)

        self._transition(JobState.FETCHING_FRAGMENTS)
        failed = self._fetch_fragments(manifest)

        self._transition(JobState.ASSEMBLING)
        try:
            output_path = self.assembler.assemble(manifest.metadata, self.fragments)
        except AssemblyError as e:
            self._transition(JobState.FAILED)
            return JobResult.failure(request.id, str(e), title=manifest.title)

        self._transition(JobState.DONE)
        return JobResult.success(request.id, manifest.title, len(self.fragments), failed,
                                 output_path=output_path)

    def _fetch_manifest(self) -> NovelManifest:
        manifest = self.source.fetch_manifest(self.request.id)
        if not manifest.title:
            raise ManifestError(f"Could not find novel: {self.request.id}")
        if not manifest.chapters:
            raise ManifestError(f'No chapters found for "{manifest.title}"')
        if self.max_fragments and len(manifest.chapters) > self.max_fragments:
            raise CeilingExceededError(len(manifest.chapters), self.max_fragments)
        logger.debug("Manifest resolved", id=self.request.id, title=manifest.title,
                     author=manifest.author, chapters=len(manifest.chapters))
        return manifest

    def _fetch_fragments(self, manifest: NovelManifest) -> int:
        """Fill self.fragments completely and return the placeholder count."""
        refs = manifest.chapters
        total = len(refs)
        self.fragments = [Fragment(index=i, title=ref.title) for i, ref in enumerate(refs)]
        task = FragmentFetchTask(self.source, refs, self.fragments)

        completed = 0

        def report(index: int, ok: bool) -> None:
            nonlocal completed
            completed += 1
            if self.on_progress:
                self.on_progress(completed, total, manifest.title)

        self.limiter.run(range(total), task, on_complete=report)
        self.retry_controller.run(self.fragments, task)

        failed = fill_placeholders(self.fragments, refs)
        if failed:
            logger.warning(f"{failed} chapter(s) failed after retries", id=self.request.id, title=manifest.title)
        return failed


def build_job_runner(config: CrawlerConfig) -> JobRunner:
    """
    Wire a fetcher, source and assembler from `config` into a job runner.

    Each call builds its own HTTP session; a worker calls this once so
    connections are never shared between workers.
    """
    fetcher = Fetcher(
        retries=config.fetch_retries,
        retry_delay=config.fetch_retry_delay,
        timeout=config.fetch_timeout,
    )
    source = FreeWebNovelSource(fetcher, base_url=config.base_url)
    assembler = EpubAssembler(config.output_dir, cover_loader=source.fetch_cover)

    def run(request: JobRequest, on_progress: Optional[ProgressCallback] = None) -> JobResult:
        return Job(
            request,
            source,
            assembler,
            concurrency=config.concurrency,
            delay=config.delay,
            max_fragments=config.max_chapters,
            on_progress=on_progress,
        ).run()

    return run
