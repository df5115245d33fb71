"""
Tests for the download job: manifest checks, chapter fetching, retries, outcomes.
"""

import pytest

from novelcrawler.errors import AssemblyError, FetchError
from novelcrawler.fragments import FAILED_BODY
from novelcrawler.job import Job, JobState
from novelcrawler.models import JobOutcome, JobRequest


def make_job(source, assembler, slug="abc", **kwargs):
    kwargs.setdefault("delay", 0.0)
    kwargs.setdefault("sleep", lambda seconds: None)
    return Job(JobRequest(id=slug, title=slug.title()), source, assembler, **kwargs)


class TestJobSuccess:

    def test_all_chapters_fetched_in_order(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        manifest = manifest_factory("abc", 5, title="ABC Novel")
        source = stub_source_cls({"abc": manifest})
        assembler = stub_assembler_cls()

        job = make_job(source, assembler, concurrency=3)
        result = job.run()

        assert result.outcome is JobOutcome.SUCCESS
        assert result.title == "ABC Novel"
        assert result.total_fragments == 5
        assert result.failed_fragments == 0
        assert job.state is JobState.DONE

        metadata, fragments = assembler.calls[0]
        assert metadata.title == "ABC Novel"
        assert [f.index for f in fragments] == [0, 1, 2, 3, 4]
        assert [f.title for f in fragments] == [f"Fetched {i}" for i in range(1, 6)]

    def test_concurrency_is_capped(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        source = stub_source_cls({"abc": manifest_factory("abc", 12)}, hold=0.01)

        make_job(source, stub_assembler_cls(), concurrency=3).run()

        assert 1 <= source.peak <= 3

    def test_progress_reported_for_first_pass(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        manifest = manifest_factory("abc", 4, title="ABC")
        source = stub_source_cls({"abc": manifest}, failures={manifest.chapters[1].url: 1})
        progress = []

        make_job(source, stub_assembler_cls(),
                 on_progress=lambda done, total, title: progress.append((done, total, title))).run()

        assert progress == [(1, 4, "ABC"), (2, 4, "ABC"), (3, 4, "ABC"), (4, 4, "ABC")]

    def test_pacing_and_retry_cooldown(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        """Requests after the first wait `delay`; a retry pass first waits twice that."""
        manifest = manifest_factory("abc", 3)
        source = stub_source_cls({"abc": manifest}, failures={manifest.chapters[1].url: 1})
        slept = []

        result = make_job(source, stub_assembler_cls(), concurrency=1, delay=0.5, sleep=slept.append).run()

        assert result.failed_fragments == 0
        assert slept == [0.5, 0.5, 1.0]


class TestJobRetries:

    def test_persistent_failure_becomes_placeholder(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        manifest = manifest_factory("abc", 3)
        dead = manifest.chapters[1].url
        source = stub_source_cls({"abc": manifest}, failures={dead: 100})
        assembler = stub_assembler_cls()

        result = make_job(source, assembler).run()

        assert result.outcome is JobOutcome.SUCCESS
        assert result.total_fragments == 3
        assert result.failed_fragments == 1
        assert source.chapter_calls.count(dead) == 3

        _, fragments = assembler.calls[0]
        assert fragments[1].title == "Chapter 2"
        assert fragments[1].body == FAILED_BODY
        assert all(f.body != FAILED_BODY for i, f in enumerate(fragments) if i != 1)

    def test_retry_passes_configurable(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        manifest = manifest_factory("abc", 1)
        dead = manifest.chapters[0].url
        source = stub_source_cls({"abc": manifest}, failures={dead: 100})

        result = make_job(source, stub_assembler_cls(), retry_passes=0).run()

        assert result.failed_fragments == 1
        assert source.chapter_calls.count(dead) == 1

    def test_empty_chapter_is_retried(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        manifest = manifest_factory("abc", 2)
        blank = manifest.chapters[0].url
        source = stub_source_cls({"abc": manifest}, empty={blank})

        result = make_job(source, stub_assembler_cls()).run()

        assert result.failed_fragments == 1
        assert source.chapter_calls.count(blank) == 3


class TestJobOutcomes:

    def test_missing_novel_fails(self, stub_source_cls, stub_assembler_cls):
        job = make_job(stub_source_cls({}), stub_assembler_cls(), slug="ghost")
        result = job.run()

        assert result.outcome is JobOutcome.FAILURE
        assert result.error == "Could not find novel: ghost"
        assert job.state is JobState.FAILED

    def test_no_chapters_fails(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        source = stub_source_cls({"abc": manifest_factory("abc", 0, title="Empty Book")})
        result = make_job(source, stub_assembler_cls()).run()

        assert result.outcome is JobOutcome.FAILURE
        assert result.error == 'No chapters found for "Empty Book"'
        assert source.chapter_calls == []

    def test_default_ceiling(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        source = stub_source_cls({"abc": manifest_factory("abc", 5000)})
        result = make_job(source, stub_assembler_cls()).run()

        assert result.outcome is JobOutcome.SKIPPED
        assert result.error == "5000 chapters exceeds limit of 2000"
        assert source.chapter_calls == []

    def test_manifest_fetch_error_fails(self, stub_source_cls, stub_assembler_cls):
        source = stub_source_cls({"abc": FetchError("HTTP 404 for x", status=404)})
        result = make_job(source, stub_assembler_cls()).run()

        assert result.outcome is JobOutcome.FAILURE
        assert "HTTP 404" in result.error

    def test_ceiling_skips_without_fetching(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        source = stub_source_cls({"abc": manifest_factory("abc", 5)})
        assembler = stub_assembler_cls()

        job = make_job(source, assembler, max_fragments=3)
        result = job.run()

        assert result.outcome is JobOutcome.SKIPPED
        assert result.error == "5 chapters exceeds limit of 3"
        assert result.total_fragments == 5
        assert source.chapter_calls == []
        assert assembler.calls == []
        assert job.state is JobState.SKIPPED

    def test_ceiling_is_inclusive_and_zero_disables(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        source = stub_source_cls({"abc": manifest_factory("abc", 3)})
        assert make_job(source, stub_assembler_cls(), max_fragments=3).run().outcome is JobOutcome.SUCCESS

        source = stub_source_cls({"abc": manifest_factory("abc", 3)})
        assert make_job(source, stub_assembler_cls(), max_fragments=0).run().outcome is JobOutcome.SUCCESS

    def test_assembly_error_fails(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        source = stub_source_cls({"abc": manifest_factory("abc", 2, title="ABC")})
        result = make_job(source, stub_assembler_cls(error=AssemblyError("disk full"))).run()

        assert result.outcome is JobOutcome.FAILURE
        assert result.error == "disk full"
        assert result.title == "ABC"

    def test_job_runs_once(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        job = make_job(stub_source_cls({"abc": manifest_factory("abc", 1)}), stub_assembler_cls())
        job.run()

        with pytest.raises(RuntimeError):
            job.run()

    def test_result_message_shape(self, manifest_factory, stub_source_cls, stub_assembler_cls):
        result = make_job(stub_source_cls({"abc": manifest_factory("abc", 2, title="ABC")}),
                          stub_assembler_cls()).run()

        assert result.to_message() == {
            "type": "result",
            "id": "abc",
            "title": "ABC",
            "success": True,
            "skipped": False,
            "error": None,
            "total_fragments": 2,
            "failed_fragments": 0,
        }
