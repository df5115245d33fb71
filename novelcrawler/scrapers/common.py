"""Shared parsing helpers for site scrapers."""

from typing import List

from bs4 import BeautifulSoup, Tag


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def first_text(root, *selectors: str) -> str:
    """Return the stripped text of the first selector that yields any text."""
    for selector in selectors:
        el = root.select_one(selector)
        if el is not None:
            text = el.get_text(strip=True)
            if text:
                return text
    return ""


def link_texts(root: Tag, selector: str) -> List[str]:
    """Non-empty texts of all elements matching `selector`, in document order."""
    return [a.get_text(strip=True) for a in root.select(selector) if a.get_text(strip=True)]


def deduplicate(values: List[str]) -> List[str]:
    """Deduplicate while preserving order."""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
