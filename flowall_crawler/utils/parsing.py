from __future__ import annotations

from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlparse, urlunparse


def normalize_url(url: str) -> str:
    """
    Normalize URL by removing fragments, resolving dot segments, etc.
    """
    parts = list(urlparse(url))
    parts[5] = ""  # strip fragment
    return urlunparse(parts)


def absolutize(url: Optional[str], base_url: str) -> str:
    """
    Resolve root-relative and protocol-relative URLs against `base_url`.
    Empty input stays empty.
    """
    if not url:
        return ""
    url = url.strip()
    if not url:
        return ""
    return normalize_url(urljoin(base_url.rstrip("/") + "/", url))


def slug_from_url(url: str) -> str:
    """
    Last non-empty path segment: https://site/some-item/ -> "some-item".
    """
    segments = [s for s in urlparse(url).path.split("/") if s]
    return segments[-1] if segments else ""


def same_host(url: str, base_url: str) -> bool:
    host = urlparse(url).netloc.lower()
    base_host = urlparse(base_url).netloc.lower()
    return host == base_host or host == f"www.{base_host}" or f"www.{host}" == base_host


def unique(values: Iterable[str]) -> List[str]:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    out: List[str] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out
