"""Tolerant RSS item extraction.

Feeds are parsed with BeautifulSoup's ``html.parser`` so malformed documents
still yield whatever items can be read. Items without a title are skipped.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional

from bs4 import BeautifulSoup

_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_IMAGE_EXT_RE = re.compile(r"\.(png|jpe?g|webp|gif|svg)(\?.*)?$", re.IGNORECASE)


@dataclass
class FeedItem:
    title: str
    link: Optional[str]
    published: Optional[datetime]
    description: str = ""
    image: Optional[str] = None


def parse_pub_date(raw: Optional[str]) -> Optional[datetime]:
    """RFC 822 date (with ISO 8601 as a fallback), always timezone-aware."""
    if not raw:
        return None
    raw = raw.strip()
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _text(tag) -> str:
    return tag.get_text(" ", strip=True) if tag is not None else ""


def _link(item) -> Optional[str]:
    # html.parser treats <link> as a void element; the URL ends up as its next sibling
    tag = item.find("link")
    if tag is not None:
        value = tag.get_text(strip=True) or tag.get("href")
        if not value and tag.next_sibling is not None:
            value = str(tag.next_sibling).strip()
        if value:
            return value
    guid = item.find("guid")
    value = _text(guid)
    return value if value.startswith("http") else None


def _image(item) -> Optional[str]:
    enclosure = item.find("enclosure")
    if enclosure is not None:
        url = enclosure.get("url") or ""
        if "image" in (enclosure.get("type") or "").lower() or _IMAGE_EXT_RE.search(url):
            return url

    for name in ("media:content", "media:thumbnail"):
        tag = item.find(name)
        if tag is not None and (tag.get("url") or tag.get("href")):
            return tag.get("url") or tag.get("href")

    for container in (item.find("content:encoded"), item.find("description")):
        if container is None:
            continue
        img = container.find("img")
        if img is None:
            # Escaped markup inside the element
            img = BeautifulSoup(container.get_text(), "html.parser").find("img")
        if img is not None:
            src = img.get("data-lazy-src") or img.get("data-src") or img.get("src")
            if src:
                return src
    return None


def parse_feed(xml: str) -> List[FeedItem]:
    """All readable items of an RSS document, in document order."""
    soup = BeautifulSoup(_CDATA_RE.sub(r"\1", xml or ""), "html.parser")
    items = []
    for item in soup.find_all("item"):
        title = _text(item.find("title"))
        if not title:
            continue
        items.append(FeedItem(
            title=title,
            link=_link(item),
            published=parse_pub_date(_text(item.find("pubdate"))),
            description=_text(item.find("description")),
            image=_image(item),
        ))
    return items
