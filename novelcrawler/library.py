"""
Library sync: publish finished EPUBs to the web library directory.

New bundles are copied under a slugified file name, recorded in the
library database and listed in ``manifest.json``. Bundles whose slug is
already recorded or listed in an existing manifest are left alone.
"""

import json
import shutil
import zipfile
from pathlib import Path
from typing import List, Optional

import ebooklib
from ebooklib import epub

from .database import Bundle, get_session, init_database
from .logger import get_logger
from .normalize import slugify

logger = get_logger()

_NON_CHAPTER_NAMES = ("nav", "toc", "cover")


def read_bundle_metadata(epub_path: Path) -> Optional[dict]:
    """Return title, author and chapter count of an EPUB, or None if unreadable."""
    try:
        book = epub.read_epub(str(epub_path), {"ignore_ncx": True})
    except (epub.EpubException, zipfile.BadZipFile, KeyError, OSError) as e:
        logger.warning("Could not read EPUB metadata", path=str(epub_path), error=str(e))
        return None

    titles = book.get_metadata("DC", "title")
    creators = book.get_metadata("DC", "creator")
    chapters = [
        item for item in book.get_items_of_type(ebooklib.ITEM_DOCUMENT)
        if not any(marker in item.get_name().lower() for marker in _NON_CHAPTER_NAMES)
    ]
    return {
        "title": titles[0][0] if titles and titles[0][0] else epub_path.stem,
        "author": creators[0][0] if creators and creators[0][0] else "Unknown Author",
        "chapters": len(chapters),
    }


def load_manifest(manifest_path: Path) -> List[dict]:
    """Return the entries of an existing manifest, or [] when it is missing or unreadable."""
    if not manifest_path.exists():
        return []
    try:
        with manifest_path.open("r", encoding="utf-8") as f:
            content = f.read().strip()
        if not content:
            return []
        data = json.loads(content)
    except (json.JSONDecodeError, IOError, ValueError) as e:
        logger.warning("Ignoring unreadable manifest", path=str(manifest_path), error=str(e))
        return []
    if not isinstance(data, list):
        logger.warning("Ignoring manifest that is not a list", path=str(manifest_path))
        return []
    return [entry for entry in data if isinstance(entry, dict) and entry.get("slug")]


def _bundle_from_entry(entry: dict) -> Bundle:
    slug = str(entry["slug"])
    return Bundle(
        slug=slug,
        file=entry.get("file") or f"{slug}.epub",
        title=entry.get("title") or slug,
        author=entry.get("author") or "Unknown Author",
        chapters=int(entry.get("chapters") or 0),
        size=int(entry.get("size") or 0),
    )


def write_manifest(manifest_path: Path, entries: List[dict]) -> None:
    manifest_path.parent.mkdir(parents=True, exist_ok=True)
    with manifest_path.open("w", encoding="utf-8") as f:
        json.dump(entries, f, indent=2, ensure_ascii=False)


def sync_library(input_dir: Path, library_dir: Path, db_path: Optional[Path] = None) -> List[dict]:
    """
    Copy new EPUBs from `input_dir` into `library_dir` and rewrite its manifest.

    Entries already listed in an existing ``manifest.json`` are kept in
    their original order, and recorded in the database if it lacks them.

    Args:
        input_dir: Directory the crawler writes bundles to
        library_dir: Published library directory
        db_path: Library database (default: library_dir/library.db)

    Returns:
        All manifest entries after the sync, oldest first
    """
    input_dir = Path(input_dir)
    library_dir = Path(library_dir)
    db_path = Path(db_path) if db_path else library_dir / "library.db"
    manifest_path = library_dir / "manifest.json"

    library_dir.mkdir(parents=True, exist_ok=True)
    init_database(db_path)
    session = get_session(db_path)
    engine = session.get_bind()

    try:
        known = {slug for (slug,) in session.query(Bundle.slug).all()}

        listed = []
        for entry in load_manifest(manifest_path):
            try:
                bundle = _bundle_from_entry(entry)
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed manifest entry", slug=str(entry.get("slug")), error=str(e))
                continue
            if bundle.slug in listed:
                continue
            listed.append(bundle.slug)
            if bundle.slug not in known:
                session.add(bundle)
                known.add(bundle.slug)
        session.commit()

        files = sorted(input_dir.glob("*.epub")) if input_dir.exists() else []
        if not files:
            logger.info(f"No EPUBs found in {input_dir}")

        new_count = 0
        for src_path in files:
            meta = read_bundle_metadata(src_path)
            if meta is None:
                logger.info(f"Skipping {src_path.name} - could not read metadata")
                continue

            slug = slugify(meta["title"])
            if not slug or slug in known:
                continue

            dest_file = f"{slug}.epub"
            shutil.copyfile(src_path, library_dir / dest_file)
            session.add(Bundle(
                slug=slug,
                file=dest_file,
                title=meta["title"],
                author=meta["author"],
                chapters=meta["chapters"],
                size=src_path.stat().st_size,
            ))
            session.commit()
            known.add(slug)
            new_count += 1
            logger.info(f"{meta['title']} -> {dest_file}")

        bundles = {
            bundle.slug: bundle
            for bundle in session.query(Bundle).order_by(Bundle.created_at, Bundle.slug).all()
        }
        # Previously published entries keep their place at the top
        ordered = [bundles.pop(slug) for slug in listed if slug in bundles]
        ordered.extend(bundles.values())
        entries = [bundle.to_manifest_entry() for bundle in ordered]
    finally:
        session.close()
        engine.dispose()

    write_manifest(manifest_path, entries)
    logger.info(f"Manifest written: {manifest_path} ({len(entries)} total, {new_count} new)")
    return entries
