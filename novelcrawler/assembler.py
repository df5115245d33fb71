"""
EPUB assembly from ordered chapter fragments.

Uses EbookLib to lay out one XHTML document per chapter, a shared
stylesheet, NCX and nav tables of contents and an optional cover.
"""

import html
import io
from pathlib import Path
from typing import Callable, List, Optional

from ebooklib import epub

from .errors import AssemblyError
from .logger import get_logger
from .models import Fragment, NovelMetadata
from .normalize import sanitize_filename

logger = get_logger()

BOOK_CSS = """
body { font-family: Georgia, serif; line-height: 1.6; margin: 1em; }
h1.chapter-title {
  page-break-before: always;
  margin-top: 2em;
  margin-bottom: 1em;
  font-size: 1.4em;
  text-align: center;
}
p { text-indent: 1.5em; margin: 0.4em 0; }
"""

EMPTY_BODY = "<p>No content available.</p>"


def bundle_filename(title: str) -> str:
    return f"{sanitize_filename(title)}.epub"


class EpubAssembler:
    """
    Build EPUB bundles and write them to `output_dir`.

    Args:
        output_dir: Directory that receives ``<title>.epub`` files
        cover_loader: Optional callable(cover_url) -> bytes | None
    """

    def __init__(self, output_dir: Path, cover_loader: Optional[Callable[[str], Optional[bytes]]] = None):
        self.output_dir = Path(output_dir)
        self.cover_loader = cover_loader

    def assemble(self, metadata: NovelMetadata, fragments: List[Fragment]) -> Path:
        """Build the bundle and write it; return the written path."""
        cover = None
        if self.cover_loader and metadata.cover_url:
            logger.debug("Downloading cover image", url=metadata.cover_url)
            cover = self.cover_loader(metadata.cover_url)

        data = self.build(metadata, fragments, cover=cover)

        output_path = self.output_dir / bundle_filename(metadata.title)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            output_path.write_bytes(data)
        except OSError as e:
            raise AssemblyError(f"Could not write {output_path}: {e}") from e

        logger.info(f"Saved: {output_path}", chapters=len(fragments), bytes=len(data))
        return output_path

    def build(self, metadata: NovelMetadata, fragments: List[Fragment], cover: Optional[bytes] = None) -> bytes:
        """Return the EPUB as bytes."""
        if not fragments:
            raise AssemblyError(f"No chapters to assemble for {metadata.title!r}")

        empty = sum(1 for f in fragments if not f.body or not f.body.strip())
        if empty:
            logger.warning(f"{empty} chapter(s) with empty content", title=metadata.title)

        try:
            book = self._make_book(metadata, fragments, cover)
            buffer = io.BytesIO()
            epub.write_epub(buffer, book, {})
        except Exception as e:
            raise AssemblyError(f"EPUB generation failed for {metadata.title!r}: {e}") from e
        return buffer.getvalue()

    def _make_book(self, metadata: NovelMetadata, fragments: List[Fragment], cover: Optional[bytes]) -> epub.EpubBook:
        book = epub.EpubBook()
        book.set_identifier(f"freewebnovel:{metadata.slug or sanitize_filename(metadata.title)}")
        book.set_title(metadata.title or "Unknown Title")
        book.set_language("en")
        book.add_author(metadata.author or "Unknown Author")
        if metadata.description:
            book.add_metadata("DC", "description", metadata.description)
        for genre in metadata.genres:
            book.add_metadata("DC", "subject", genre)

        if cover:
            book.set_cover("cover.jpg", cover)

        style = epub.EpubItem(uid="style_main", file_name="style/main.css", media_type="text/css", content=BOOK_CSS)
        book.add_item(style)

        chapters = []
        for position, fragment in enumerate(fragments):
            title = fragment.title or "Untitled Chapter"
            body = fragment.body if fragment.body and fragment.body.strip() else EMPTY_BODY
            chapter = epub.EpubHtml(title=title, file_name=f"chap_{position + 1:05d}.xhtml", lang="en")
            chapter.content = f'<h1 class="chapter-title">{html.escape(title, quote=False)}</h1>\n{body}'
            chapter.add_item(style)
            book.add_item(chapter)
            chapters.append(chapter)

        book.toc = chapters
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        book.spine = (["cover"] if cover else []) + ["nav"] + chapters
        return book
