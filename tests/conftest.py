"""
Pytest configuration and shared fixtures.
"""

import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from novelcrawler.errors import TransientFetchError
from novelcrawler.logger import reset_logger
from novelcrawler.models import ChapterContent, ChapterRef, NovelManifest


@pytest.fixture(autouse=True)
def fresh_logger():
    """Start every test with zeroed metrics and handlers bound to the current stdout."""
    reset_logger()
    yield


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    calls: List[float] = []

    def sleep(seconds: float) -> None:
        calls.append(seconds)

    sleep.calls = calls
    return sleep


# HTML samples


@pytest.fixture
def sample_listing_html() -> str:
    """Completed-novel listing page with two novels."""
    return """
    <html><body>
      <div class="ul-list1">
        <div class="li-row">
          <div class="pic"><img src="/files/covers/omegas-rebirth.jpg"></div>
          <div class="txt">
            <h3 class="tit"><a href="/novel/omegas-rebirth/">Omega's Rebirth</a></h3>
            <div class="desc">
              <div class="item"><span class="s1">312 Chapters</span></div>
              <div class="item"><a href="/genre/Fantasy">Fantasy</a><a href="/genre/Romance">Romance</a></div>
            </div>
          </div>
        </div>
        <div class="li-row">
          <div class="pic"><img src="https://cdn.example.com/cover2.jpg"></div>
          <div class="txt">
            <h3 class="tit"><a href="https://freewebnovel.com/novel/the-long-road">The Long Road</a></h3>
            <div class="desc"><div class="item"><span class="s1">Completed</span></div></div>
          </div>
        </div>
        <div class="li-row"><div class="txt"><h3 class="tit"><a href="">No Slug</a></h3></div></div>
      </div>
    </body></html>
    """


def render_novel_html(title: str, slug: str, chapter_count: int, author: str = "Jane Writer") -> str:
    items = "\n".join(
        f'<li><a href="/novel/{slug}/chapter-{i}" title="Chapter {i}">Chapter {i}</a></li>'
        for i in range(1, chapter_count + 1)
    )
    return f"""
    <html><head><meta name="description" content="A story about {title}."></head>
    <body>
      <div class="m-imgtxt">
        <div class="pic"><img src="/files/covers/{slug}.jpg"></div>
        <div class="txt">
          <h1 class="tit">{title}</h1>
          <div class="item"><span class="right"><a href="/author/jane">{author}</a></span></div>
          <div class="item"><span class="right"><a>Fantasy</a><a>Action</a></span></div>
        </div>
      </div>
      <ul id="idData">{items}</ul>
    </body></html>
    """


def render_chapter_html(title: str, paragraphs: List[str]) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return f"""
    <html><body>
      <h1 class="tit">Novel Title</h1>
      <div id="article">
        <h4>{title}</h4>
        {body}
        <script>var ad = 1;</script>
        <div class="ads"><p>Buy things</p></div>
        <ins class="adsbygoogle"></ins>
        <p>   </p>
      </div>
    </body></html>
    """


@pytest.fixture
def novel_html():
    return render_novel_html


@pytest.fixture
def chapter_html():
    return render_chapter_html


# Stub collaborators


def make_manifest(slug: str, count: int, title: Optional[str] = None) -> NovelManifest:
    return NovelManifest(
        slug=slug,
        title=title if title is not None else slug.replace("-", " ").title(),
        author="Jane Writer",
        genres=["Fantasy"],
        description="desc",
        cover_url="",
        chapters=[ChapterRef(title=f"Chapter {i + 1}", url=f"https://example.test/{slug}/{i + 1}")
                  for i in range(count)],
    )


class StubSource:
    """
    In-memory novel source.

    `failures` maps chapter URL -> number of times it fails before succeeding
    (use a large number to fail forever). Tracks concurrent chapter calls.
    """

    def __init__(self, manifests: Dict[str, object], failures: Optional[Dict[str, int]] = None,
                 empty: Optional[set] = None, hold: float = 0.0):
        self.manifests = manifests
        self.failures = dict(failures or {})
        self.empty = set(empty or ())
        self.hold = hold
        self.chapter_calls: List[str] = []
        self.manifest_calls: List[str] = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def fetch_manifest(self, slug: str) -> NovelManifest:
        self.manifest_calls.append(slug)
        value = self.manifests.get(slug)
        if value is None:
            return NovelManifest(slug=slug, title="")
        if isinstance(value, Exception):
            raise value
        return value

    def fetch_chapter(self, url: str) -> ChapterContent:
        with self._lock:
            self.chapter_calls.append(url)
            self.active += 1
            self.peak = max(self.peak, self.active)
            remaining = self.failures.get(url, 0)
            if remaining:
                self.failures[url] = remaining - 1
        try:
            if self.hold:
                time.sleep(self.hold)
            if remaining:
                raise TransientFetchError(f"HTTP 503 for {url}", url=url, status=503)
            if url in self.empty:
                return ChapterContent(title="", body="   \n ")
            return ChapterContent(title=f"Fetched {url.rsplit('/', 1)[-1]}", body=f"<p>{url}</p>")
        finally:
            with self._lock:
                self.active -= 1


class StubAssembler:
    """Records assemble() calls instead of writing EPUBs."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls = []
        self._lock = threading.Lock()

    def assemble(self, metadata, fragments) -> Path:
        if self.error is not None:
            raise self.error
        with self._lock:
            self.calls.append((metadata, list(fragments)))
        return Path("output") / f"{metadata.title}.epub"


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", headers: Optional[dict] = None,
                 content: Optional[bytes] = None):
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}
        self.content = content if content is not None else text.encode("utf-8")


class FakeSession:
    """
    requests.Session stand-in. Each route is a list of responses or
    exceptions consumed in order; the last entry repeats forever.
    """

    def __init__(self, routes: Dict[str, list]):
        self.routes = {url: list(seq) for url, seq in routes.items()}
        self.requests: List[str] = []
        self.kwargs: List[dict] = []
        self._lock = threading.Lock()

    def get(self, url, **kwargs):
        with self._lock:
            self.requests.append(url)
            self.kwargs.append(kwargs)
            seq = self.routes.get(url)
            if seq is None:
                item = FakeResponse(404, text="not found")
            elif len(seq) > 1:
                item = seq.pop(0)
            else:
                item = seq[0]
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        pass


@pytest.fixture
def manifest_factory():
    return make_manifest


@pytest.fixture
def stub_source_cls():
    return StubSource


@pytest.fixture
def stub_assembler_cls():
    return StubAssembler


@pytest.fixture
def fake_session_cls():
    return FakeSession


@pytest.fixture
def fake_response_cls():
    return FakeResponse
