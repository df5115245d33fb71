"""
freewebnovel.com scraper.

The ``parse_*`` functions are pure (HTML in, records out). Network access
goes through ``FreeWebNovelSource``, which pairs them with a Fetcher.
"""

import html as html_lib
import re
from typing import List, Optional

from ..errors import FetchError
from ..fetcher import Fetcher
from ..logger import get_logger
from ..models import ChapterContent, ChapterRef, ListingItem, NovelManifest
from ..normalize import absolute_url, slug_from_href
from .common import deduplicate, first_text, link_texts, make_soup

logger = get_logger()

BASE_URL = "https://freewebnovel.com"
LISTING_PATH = "/sort/completed-novel"

_AD_SELECTORS = "script, .ads, .ad, ins, .google-auto-placed"


def parse_listing(html: str, base_url: str = BASE_URL) -> List[ListingItem]:
    """Parse a completed-novel listing page into listing items."""
    soup = make_soup(html)
    novels = []

    for row in soup.select("div.li-row"):
        link = row.select_one("h3.tit a")
        if link is None:
            continue
        title = link.get_text(strip=True)
        href = link.get("href") or ""
        slug = slug_from_href(href)
        if not title or not slug:
            continue

        cover = row.select_one("div.pic img")
        cover_url = cover.get("src", "") if cover is not None else ""

        # Second description item holds the genre links
        genres: List[str] = []
        desc_items = row.select("div.desc div.item")
        if len(desc_items) > 1:
            genres = link_texts(desc_items[1], "a")

        chapter_match = re.search(r"(\d+)", first_text(row, "span.s1"))
        chapter_count = int(chapter_match.group(1)) if chapter_match else 0

        novels.append(ListingItem(
            id=slug,
            title=title,
            url=absolute_url(href, base_url),
            cover_url=cover_url,
            genres=genres,
            chapter_count=chapter_count,
        ))

    return novels


def parse_novel(html: str, slug: str, base_url: str = BASE_URL) -> NovelManifest:
    """Parse a novel detail page. Missing fields come back empty, never None."""
    soup = make_soup(html)

    title = first_text(soup, "h1.tit", "div.m-imgtxt h1")

    items = soup.select("div.m-imgtxt div.txt div.item")
    author = ""
    genres: List[str] = []
    if items:
        author = first_text(items[0], ".right a", ".right")
    if len(items) > 1:
        genres = link_texts(items[1], ".right a")

    meta = soup.select_one('meta[name="description"]')
    description = (meta.get("content") or "") if meta is not None else ""

    cover = soup.select_one("div.m-imgtxt div.pic img")
    cover_url = cover.get("src", "") if cover is not None else ""

    chapters = []
    for a in soup.select("ul#idData li a"):
        href = a.get("href") or ""
        if not href:
            continue
        chapters.append(ChapterRef(
            title=a.get("title") or a.get_text(strip=True),
            url=absolute_url(href, base_url),
        ))

    return NovelManifest(
        slug=slug,
        title=title,
        author=author,
        genres=deduplicate(genres),
        description=description,
        cover_url=cover_url,
        chapters=chapters,
    )


def parse_chapter(html: str) -> ChapterContent:
    """Extract a chapter title and its paragraphs as escaped ``<p>`` markup."""
    soup = make_soup(html)
    article = soup.select_one("div#article")
    if article is None:
        return ChapterContent(title=first_text(soup, "h1.tit"), body="")

    title = first_text(article, "h4") or first_text(soup, "h1.tit")

    for junk in article.select(_AD_SELECTORS):
        junk.decompose()

    paragraphs = []
    for p in article.find_all("p"):
        text = p.get_text(strip=True)
        if text:
            paragraphs.append(f"<p>{html_lib.escape(text, quote=False)}</p>")

    return ChapterContent(title=title, body="\n".join(paragraphs))


class FreeWebNovelSource:
    """Listing, novel, chapter and cover retrieval for freewebnovel.com."""

    def __init__(self, fetcher: Fetcher, base_url: str = BASE_URL):
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")

    def listing_url(self, page: int = 1) -> str:
        if page <= 1:
            return f"{self.base_url}{LISTING_PATH}"
        return f"{self.base_url}{LISTING_PATH}/{page}"

    def novel_url(self, slug: str) -> str:
        return f"{self.base_url}/novel/{slug}"

    def fetch_listing(self, page: int = 1) -> List[ListingItem]:
        return parse_listing(self.fetcher.fetch(self.listing_url(page)), self.base_url)

    def fetch_manifest(self, slug: str) -> NovelManifest:
        return parse_novel(self.fetcher.fetch(self.novel_url(slug)), slug, self.base_url)

    def fetch_chapter(self, url: str) -> ChapterContent:
        return parse_chapter(self.fetcher.fetch(url))

    def fetch_cover(self, cover_url: str) -> Optional[bytes]:
        """Download a cover image; failures are logged and yield None."""
        if not cover_url:
            return None
        url = absolute_url(cover_url, self.base_url)
        try:
            return self.fetcher.fetch_bytes(url)
        except FetchError as e:
            logger.warning("Failed to fetch cover image", url=url, error=str(e))
            return None
