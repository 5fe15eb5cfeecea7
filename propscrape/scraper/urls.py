"""Listing URL helpers: base-path extraction, page URLs, URL filtering."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set
from urllib.parse import urlsplit

from . import config

_LIST_SEGMENT_RE = re.compile(r"/list-\d+")


@dataclass(frozen=True)
class BaseListingUrl:
    """A listing URL split around the page-index segment."""

    base_path: str
    search: str = ""


def extract_base_url(url: str) -> BaseListingUrl:
    """Strip any ``/list-N`` segment and keep the query string separately."""

    url = (url or "").strip()
    parts = urlsplit(url)
    if parts.scheme and parts.netloc:
        path = _LIST_SEGMENT_RE.sub("", parts.path, count=1)
        search = f"?{parts.query}" if parts.query else ""
        return BaseListingUrl(base_path=f"{parts.scheme}://{parts.netloc}{path}", search=search)

    list_index = url.find("/list-")
    if list_index != -1:
        query_index = url.find("?", list_index)
        search = url[query_index:] if query_index != -1 else ""
        return BaseListingUrl(base_path=url[:list_index], search=search)
    return BaseListingUrl(base_path=url, search="")


def construct_page_url(base: BaseListingUrl, page_number: int) -> str:
    """Re-insert the page segment before the stored query string."""

    if page_number < 1:
        raise ValueError(f"page_number must be positive, got {page_number}")
    return f"{base.base_path}/list-{page_number}{base.search}"


def filter_property_urls(urls: Iterable[object], *, exclude: Optional[Set[str]] = None) -> List[str]:
    """Trim, keep target-domain URLs, drop repeats and anything in ``exclude``."""

    seen: Set[str] = set(exclude or ())
    result: List[str] = []
    for raw in urls:
        if not isinstance(raw, str):
            continue
        url = raw.strip()
        if not url or not config.is_target_url(url) or url in seen:
            continue
        seen.add(url)
        result.append(url)
    return result


__all__ = ["BaseListingUrl", "extract_base_url", "construct_page_url", "filter_property_urls"]
