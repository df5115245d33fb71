import re
from typing import Optional
from urllib.parse import urlparse


def normalize_text(s: str) -> str:
    return " ".join(s.split())


_FILENAME_FORBIDDEN = re.compile(r'[<>:"/\\|?*]')


def sanitize_filename(name: str) -> str:
    """Drop characters that are invalid in file names and collapse whitespace."""
    return normalize_text(_FILENAME_FORBIDDEN.sub("", name))


def slugify(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def absolute_url(href: str, base_url: str) -> str:
    """Resolve absolute, protocol-relative and site-relative links."""
    if not href:
        return ""
    if href.startswith("http://") or href.startswith("https://"):
        return href
    if href.startswith("//"):
        return f"https:{href}"
    base = base_url.rstrip("/")
    return f"{base}{href}" if href.startswith("/") else f"{base}/{href}"


def slug_from_url(url: str) -> Optional[str]:
    """Extract the novel slug from a ``.../novel/<slug>`` URL."""
    parsed = urlparse(url)
    parts = [x for x in parsed.path.split("/") if x]
    if len(parts) >= 2 and parts[0] == "novel":
        return parts[1]
    return None


def slug_from_href(href: str) -> str:
    """Slug part of a listing link such as ``/novel/omegas-rebirth/``."""
    path = urlparse(href).path if "://" in href else href
    return path.replace("/novel/", "", 1).strip("/")
