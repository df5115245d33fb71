import json
from pathlib import Path
from typing import List, Optional

from .assembler import bundle_filename
from .logger import get_logger
from .models import ListingItem

logger = get_logger()


def load_listing_cache(path: Path) -> Optional[List[ListingItem]]:
    """Return cached listing items, or None when the cache is missing, unreadable or empty."""
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            content = f.read().strip()
        if not content:
            return None
        data = json.loads(content)
        if not isinstance(data, list) or not data:
            return None
        return [ListingItem.from_dict(entry) for entry in data]
    except (json.JSONDecodeError, IOError, KeyError, TypeError, ValueError) as e:
        logger.warning("Ignoring unreadable listing cache", path=str(path), error=str(e))
        return None


def save_listing_cache(path: Path, items: List[ListingItem]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump([item.to_dict() for item in items], f, indent=2, ensure_ascii=False)


def bundle_path(output_dir: Path, title: str) -> Path:
    return Path(output_dir) / bundle_filename(title)


def bundle_exists(output_dir: Path, title: str) -> bool:
    return bundle_path(output_dir, title).exists()


def pending_items(items: List[ListingItem], output_dir: Path) -> List[ListingItem]:
    """Items whose bundle has not been written yet, in listing order."""
    return [item for item in items if not bundle_exists(output_dir, item.title)]
