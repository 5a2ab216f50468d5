"""Tests for the Fed target range dataset."""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

from app.services.fed_rate import (
    FOMC_CALENDAR_URL,
    PRESS_RSS_URL,
    FedRateService,
    FedRateUnavailable,
    PreviousSource,
    parse_last_announcement,
    parse_next_decision,
    parse_observation_value,
    previous_from_observations,
)
from app.services.fetcher import FetchError

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

PRESS_RSS = """<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0"><channel>
<title>FRB: Press Release - Monetary Policy</title>
<item>
  <title><![CDATA[Federal Reserve issues FOMC statement]]></title>
  <link>https://www.federalreserve.gov/newsevents/pressreleases/monetary20250129a.htm</link>
  <pubDate>Wed, 29 Jan 2025 19:00:00 GMT</pubDate>
</item>
<item>
  <title><![CDATA[Implementation Note issued January 29, 2025]]></title>
  <link>https://www.federalreserve.gov/newsevents/pressreleases/monetary20250129a1.htm</link>
  <pubDate>Wed, 29 Jan 2025 19:00:00 GMT</pubDate>
</item>
<item>
  <title>Minutes of the Federal Open Market Committee</title>
  <link>https://www.federalreserve.gov/newsevents/pressreleases/monetary20250219a.htm</link>
  <pubDate>Wed, 19 Feb 2025 19:00:00 GMT</pubDate>
</item>
</channel></rss>
"""

CALENDAR = """<html><body>
<div class="panel">
  <h4><a id="a1">2024 FOMC Meetings</a></h4>
  <div class="fomc-meeting">
    <div class="fomc-meeting__month"><strong>December</strong></div>
    <div class="fomc-meeting__date">17-18</div>
  </div>
</div>
<div class="panel">
  <h4><a id="a2">2025 FOMC Meetings</a></h4>
  <div class="fomc-meeting">
    <div class="fomc-meeting__month"><strong>January</strong></div>
    <div class="fomc-meeting__date">28-29</div>
  </div>
  <div class="fomc-meeting">
    <div class="fomc-meeting__month"><strong>March</strong></div>
    <div class="fomc-meeting__date">18-19*</div>
  </div>
  <div class="fomc-meeting">
    <div class="fomc-meeting__month"><strong>Apr/May</strong></div>
    <div class="fomc-meeting__date">30-1</div>
  </div>
</div>
</body></html>
"""


def observations(*pairs):
    return [{"date": date, "value": value} for date, value in pairs]


def make_service(upper=None, lower=None, prior=None, fred_api_key="key", rss=PRESS_RSS, calendar=CALENDAR):
    series = {"DFEDTARU": upper or [], "DFEDTARL": lower or []}

    async def fetch_json(url, **kwargs):
        return {"observations": series[kwargs["params"]["series_id"]]}

    async def fetch_text(url, **kwargs):
        body = rss if url == PRESS_RSS_URL else calendar
        if isinstance(body, Exception):
            raise body
        return body

    fetcher = Mock()
    fetcher.fetch_json = AsyncMock(side_effect=fetch_json)
    fetcher.fetch_text = AsyncMock(side_effect=fetch_text)
    documents = Mock()
    documents.get_data = AsyncMock(return_value=prior)

    return FedRateService(fetcher, documents, fred_api_key=fred_api_key, clock=lambda: NOW)


class TestObservationParsing:

    @pytest.mark.parametrize("raw,expected", [("4.50", 4.5), (".", None), ("", None), (None, None), ("n/a", None)])
    def test_value(self, raw, expected):
        assert parse_observation_value(raw) == expected

    def test_previous_is_first_earlier_dated_valid_value(self):
        obs = observations(("2025-02-28", "4.50"), ("2025-02-27", "."), ("2025-02-26", "4.75"))

        assert previous_from_observations(obs) == 4.75

    def test_previous_falls_back_to_second_observation(self):
        obs = observations(("2025-02-28", "4.50"), ("2025-02-28", "4.75"))

        assert previous_from_observations(obs) == 4.75

    def test_single_observation_has_no_previous(self):
        assert previous_from_observations(observations(("2025-02-28", "4.50"))) is None


class TestPressFeed:

    def test_implementation_note_wins(self):
        assert parse_last_announcement(PRESS_RSS) == datetime(2025, 1, 29, 19, 0, tzinfo=timezone.utc)

    def test_latest_item_without_note(self):
        rss = PRESS_RSS.replace("Implementation Note", "Statement")

        assert parse_last_announcement(rss) == datetime(2025, 2, 19, 19, 0, tzinfo=timezone.utc)

    def test_unreadable_feed(self):
        assert parse_last_announcement("<html>maintenance</html>") is None


class TestCalendar:

    def test_next_meeting_decision_day(self):
        assert parse_next_decision(CALENDAR, NOW) == datetime(2025, 3, 19, 19, 0, tzinfo=timezone.utc)

    def test_meeting_spanning_two_months(self):
        after_march = datetime(2025, 3, 20, tzinfo=timezone.utc)

        assert parse_next_decision(CALENDAR, after_march) == datetime(2025, 5, 1, 19, 0, tzinfo=timezone.utc)

    def test_meeting_beyond_horizon_ignored(self):
        late = CALENDAR.replace("March", "December").replace("Apr/May", "December")

        assert parse_next_decision(late, NOW) is None

    def test_no_upcoming_meeting(self):
        assert parse_next_decision(CALENDAR, datetime(2025, 6, 1, tzinfo=timezone.utc)) is None


class TestFedRateService:
    """Document assembly and previous-range fallbacks."""

    async def test_full_document_from_observations(self):
        service = make_service(
            upper=observations(("2025-02-28", "4.50"), ("2025-02-27", "4.75")),
            lower=observations(("2025-02-28", "4.25"), ("2025-02-27", "4.50")),
        )

        data = await service.fetch()

        assert data == {
            "announcedUpper": 4.5,
            "announcedLower": 4.25,
            "previousUpper": 4.75,
            "previousLower": 4.5,
            "previousSource": PreviousSource.OBSERVATION,
            "lastAnnounceDate": "2025-01-29T19:00:00Z",
            "nextDecisionDate": "2025-03-19T19:00:00Z",
        }

    async def test_observation_request(self):
        service = make_service(upper=observations(("2025-02-28", "4.50")))

        await service.fetch_observations("DFEDTARU")

        call = service.fetcher.fetch_json.await_args
        assert call.kwargs["use_relay"] is False
        assert call.kwargs["params"]["sort_order"] == "desc"
        assert call.kwargs["params"]["limit"] == 50
        assert call.kwargs["params"]["observation_start"].startswith("2023-03")

    async def test_previous_from_differing_stored_announcement(self):
        service = make_service(
            upper=observations(("2025-02-28", "4.50")),
            lower=observations(("2025-02-28", "4.25")),
            prior={"announcedUpper": 4.75, "announcedLower": 4.5},
        )

        data = await service.fetch()

        assert (data["previousUpper"], data["previousLower"]) == (4.75, 4.5)
        assert data["previousSource"] == PreviousSource.PRIOR_PERSISTED

    async def test_previous_assumed_unchanged(self):
        service = make_service(
            upper=observations(("2025-02-28", "4.50")),
            lower=observations(("2025-02-28", "4.25")),
        )

        data = await service.fetch()

        assert (data["previousUpper"], data["previousLower"]) == (4.5, 4.25)
        assert data["previousSource"] == PreviousSource.ASSUMED_UNCHANGED

    async def test_no_observations_keeps_stored_document(self):
        prior = {
            "announcedUpper": 4.5,
            "announcedLower": 4.25,
            "previousUpper": 4.75,
            "previousLower": 4.5,
            "lastAnnounceDate": "2024-12-18T19:00:00Z",
        }
        service = make_service(fred_api_key=None, prior=prior, rss=FetchError("down"))

        data = await service.fetch()

        assert data["announcedUpper"] == 4.5
        assert data["previousUpper"] == 4.75
        assert data["previousSource"] == PreviousSource.PRIOR_PERSISTED
        assert data["lastAnnounceDate"] == "2024-12-18T19:00:00Z"
        service.fetcher.fetch_json.assert_not_awaited()

    async def test_nothing_available_raises(self):
        service = make_service(fred_api_key=None)

        with pytest.raises(FedRateUnavailable):
            await service.get_data()
        assert service.get_status().healthy is False

    async def test_fred_failure_treated_as_no_observations(self):
        service = make_service(prior={"announcedUpper": 4.5, "announcedLower": 4.25})
        service.fetcher.fetch_json = AsyncMock(side_effect=FetchError("HTTP 500"))

        data = await service.fetch()

        assert data["announcedUpper"] == 4.5
        assert data["previousSource"] == PreviousSource.ASSUMED_UNCHANGED

    async def test_calendar_failure_leaves_next_decision_empty(self):
        service = make_service(
            upper=observations(("2025-02-28", "4.50")),
            lower=observations(("2025-02-28", "4.25")),
            calendar=FetchError("timeout"),
        )

        data = await service.fetch()

        assert data["nextDecisionDate"] is None
        assert data["lastAnnounceDate"] == "2025-01-29T19:00:00Z"
