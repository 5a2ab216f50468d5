"""Tests for RSS extraction and the news dataset."""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

from app.services.feeds import parse_feed, parse_pub_date
from app.services.fetcher import FetchError
from app.services.news import MAX_ITEMS, NewsSource

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def rss(*items):
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/" '
        'xmlns:content="http://purl.org/rss/1.0/modules/content/"><channel>'
        + "".join(items)
        + "</channel></rss>"
    )


def item(title, link, published, extra=""):
    return (
        f"<item><title><![CDATA[{title}]]></title><link>{link}</link>"
        f"<pubDate>{published}</pubDate>{extra}</item>"
    )


class TestPubDate:

    def test_rfc822(self):
        assert parse_pub_date("Sat, 01 Mar 2025 10:30:00 +0300") == datetime(2025, 3, 1, 7, 30, tzinfo=timezone.utc)

    def test_iso_fallback(self):
        assert parse_pub_date("2025-03-01T10:30:00Z") == datetime(2025, 3, 1, 10, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", [None, "", "yesterday"])
    def test_unparseable(self, raw):
        assert parse_pub_date(raw) is None


class TestParseFeed:
    """Tolerant item extraction."""

    def test_basic_fields(self):
        items = parse_feed(rss(item(
            "Bitcoin <b>rallies</b>",
            "https://news.example/btc",
            "Sat, 01 Mar 2025 10:00:00 GMT",
            "<description><![CDATA[<p>BTC is up.</p>]]></description>",
        )))

        assert len(items) == 1
        assert items[0].title == "Bitcoin rallies"
        assert items[0].link == "https://news.example/btc"
        assert items[0].published == datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert items[0].description == "BTC is up."

    def test_image_from_enclosure(self):
        extra = '<enclosure url="https://img.example/a.jpg" type="image/jpeg" length="1"/>'

        items = parse_feed(rss(item("A", "https://news.example/a", "Sat, 01 Mar 2025 10:00:00 GMT", extra)))

        assert items[0].image == "https://img.example/a.jpg"

    def test_image_from_media_content(self):
        extra = '<media:content url="https://img.example/m.png" medium="image"/>'

        items = parse_feed(rss(item("A", "https://news.example/a", "Sat, 01 Mar 2025 10:00:00 GMT", extra)))

        assert items[0].image == "https://img.example/m.png"

    def test_image_from_embedded_markup(self):
        extra = (
            "<content:encoded><![CDATA[<p><img data-lazy-src=\"https://img.example/lazy.webp\" "
            "src=\"data:image/gif;base64,R0l\"/></p>]]></content:encoded>"
        )

        items = parse_feed(rss(item("A", "https://news.example/a", "Sat, 01 Mar 2025 10:00:00 GMT", extra)))

        assert items[0].image == "https://img.example/lazy.webp"

    def test_guid_used_when_link_missing(self):
        feed = rss(
            "<item><title>A</title><guid>https://news.example/guid</guid>"
            "<pubDate>Sat, 01 Mar 2025 10:00:00 GMT</pubDate></item>"
        )

        assert parse_feed(feed)[0].link == "https://news.example/guid"

    def test_untitled_and_malformed_items_skipped(self):
        feed = rss(
            "<item><link>https://news.example/untitled</link></item>",
            item("Kept", "https://news.example/kept", "not a date"),
        )

        items = parse_feed(feed)

        assert [i.title for i in items] == ["Kept"]
        assert items[0].published is None

    def test_not_a_feed(self):
        assert parse_feed("<html><body>Service unavailable</body></html>") == []
        assert parse_feed("") == []


def news_source(feeds):
    """NewsSource over canned feed bodies; an exception value makes that feed fail."""

    async def fetch_text(url, **kwargs):
        body = feeds[url]
        if isinstance(body, Exception):
            raise body
        return body

    fetcher = Mock()
    fetcher.fetch_text = AsyncMock(side_effect=fetch_text)
    return NewsSource(fetcher, feeds={f"src{i}": url for i, url in enumerate(feeds)}, clock=lambda: NOW)


class TestNewsSource:
    """Merging, filtering and ordering across feeds."""

    async def test_merges_dedupes_and_sorts(self):
        source = news_source({
            "https://a.example/feed": rss(
                item("Old", "https://x.example/old", "Fri, 28 Feb 2025 09:00:00 GMT"),
                item("Shared", "https://x.example/shared", "Sat, 01 Mar 2025 08:00:00 GMT"),
            ),
            "https://b.example/feed": rss(
                item("Shared again", "https://x.example/shared", "Sat, 01 Mar 2025 08:30:00 GMT"),
                item("Newest", "https://x.example/new", "Sat, 01 Mar 2025 11:00:00 +0100"),
            ),
        })

        news = await source.get_data()

        assert [n["url"] for n in news] == [
            "https://x.example/new",
            "https://x.example/shared",
            "https://x.example/old",
        ]
        assert news[0]["publishedAt"] == "2025-03-01T10:00:00+00:00"
        assert news[1]["title"] == "Shared"
        assert news[1]["source"] == "src0"
        assert news[0]["category"] == "crypto"

    async def test_items_older_than_48_hours_dropped(self):
        source = news_source({
            "https://a.example/feed": rss(
                item("Fresh", "https://x.example/fresh", "Fri, 28 Feb 2025 12:00:00 GMT"),
                item("Stale", "https://x.example/stale", "Wed, 26 Feb 2025 11:59:00 GMT"),
            ),
        })

        news = await source.fetch()

        assert [n["title"] for n in news] == ["Fresh"]

    async def test_failing_feed_skipped(self):
        source = news_source({
            "https://a.example/feed": FetchError("HTTP 503"),
            "https://b.example/feed": rss(item("Ok", "https://x.example/ok", "Sat, 01 Mar 2025 08:00:00 GMT")),
        })

        news = await source.fetch()

        assert [n["title"] for n in news] == ["Ok"]

    async def test_nothing_recent_is_an_error(self):
        source = news_source({"https://a.example/feed": FetchError("down")})

        with pytest.raises(FetchError):
            await source.get_data()

    async def test_capped(self):
        items = [
            item(f"N{i}", f"https://x.example/{i}", f"Sat, 01 Mar 2025 {i // 60:02d}:{i % 60:02d}:00 GMT")
            for i in range(MAX_ITEMS + 20)
        ]
        source = news_source({"https://a.example/feed": rss(*items)})

        news = await source.fetch()

        assert len(news) == MAX_ITEMS
        assert news[0]["title"] == f"N{MAX_ITEMS + 19}"

    async def test_relative_images_made_absolute(self):
        extra = '<enclosure url="/wp-content/a.jpg" type="image/jpeg"/>'
        source = news_source({
            "https://a.example/feed": rss(item("A", "https://x.example/a", "Sat, 01 Mar 2025 08:00:00 GMT", extra)),
        })

        news = await source.fetch()

        assert news[0]["image"] == "https://a.example/wp-content/a.jpg"
