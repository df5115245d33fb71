"""
Chapter fetch task and the multi-pass retry controller.

Fragments live in a list pre-sized to the manifest's chapter count; each
task writes only its own index, so concurrent tasks need no locking.
"""

import time
from typing import Callable, List, Sequence

from .errors import EmptyContentError
from .limiter import ConcurrencyLimiter
from .logger import get_logger
from .models import ChapterRef, Fragment

logger = get_logger()

FAILED_BODY = "<p>[Failed to fetch after retries]</p>"
MAX_RETRY_PASSES = 2


class FragmentFetchTask:
    """
    Fetch and extract one chapter into its fragment slot.

    Returns True on success. On any failure the slot is reset to an
    unresolved fragment so the retry controller picks it up.
    """

    def __init__(self, source, refs: Sequence[ChapterRef], fragments: List[Fragment]):
        self.source = source
        self.refs = refs
        self.fragments = fragments

    def __call__(self, index: int) -> bool:
        ref = self.refs[index]
        try:
            content = self.source.fetch_chapter(ref.url)
            if not content.body or not content.body.strip():
                raise EmptyContentError(f"Empty content for {ref.url}", url=ref.url)
        except Exception as e:
            logger.debug("Chapter fetch failed", index=index, url=ref.url,
                         error=str(e), error_type=type(e).__name__)
            logger.record_fragment(success=False)
            self.fragments[index] = Fragment(index=index, title=ref.title, body=None)
            return False

        logger.record_fragment(success=True)
        self.fragments[index] = Fragment(index=index, title=content.title or ref.title, body=content.body)
        return True


def unresolved_indices(fragments: Sequence[Fragment]) -> List[int]:
    return [f.index for f in fragments if f.body is None]


def fill_placeholders(fragments: List[Fragment], refs: Sequence[ChapterRef]) -> int:
    """Replace unresolved fragments with failure placeholders; return how many."""
    failed = 0
    for i, fragment in enumerate(fragments):
        if fragment.body is None:
            failed += 1
            fragments[i] = Fragment(
                index=i,
                title=refs[i].title or f"Chapter {i + 1}",
                body=FAILED_BODY,
            )
    return failed


class RetryController:
    """
    Re-run failed chapters for up to `passes` extra passes.

    Each pass waits `cooldown` seconds, then retries exactly the indices
    still unresolved. Stops early once everything resolves.
    """

    def __init__(
        self,
        limiter: ConcurrencyLimiter,
        passes: int = MAX_RETRY_PASSES,
        cooldown: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.limiter = limiter
        self.passes = passes
        self.cooldown = cooldown
        self._sleep = sleep
        self.passes_run = 0

    def run(self, fragments: Sequence[Fragment], task: Callable[[int], bool]) -> List[int]:
        """Run retry passes and return the indices still unresolved afterwards."""
        for pass_number in range(1, self.passes + 1):
            pending = unresolved_indices(fragments)
            if not pending:
                return []

            logger.info(f"Retry pass {pass_number}: {len(pending)} chapter(s) to retry")
            self._sleep(self.cooldown)
            self.limiter.run(pending, task)
            self.passes_run = pass_number

        return unresolved_indices(fragments)
