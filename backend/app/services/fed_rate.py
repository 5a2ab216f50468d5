"""Federal funds target range dataset.

Sources, all optional individually:
- FRED observations for DFEDTARU / DFEDTARL (current and previous bounds)
- Federal Reserve monetary press RSS (date of the last announcement)
- FOMC meeting calendar page (next decision date)

Page and feed layouts drift; anything that cannot be extracted is logged and
left as None rather than failing the dataset.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from .document_store import DocumentStore
from .fallback import first_available
from .feeds import parse_feed
from .fetcher import FetchError, ResilientFetcher
from .sources import BaseDataSource, Dataset

logger = logging.getLogger(__name__)

FRED_OBSERVATIONS_URL = "https://api.stlouisfed.org/fred/series/observations"
FRED_UPPER_SERIES = "DFEDTARU"
FRED_LOWER_SERIES = "DFEDTARL"
FRED_LIMIT = 50

PRESS_RSS_URL = "https://www.federalreserve.gov/feeds/press_monetary.xml"
FOMC_CALENDAR_URL = "https://www.federalreserve.gov/monetarypolicy/fomccalendars.htm"

SOURCE_TIMEOUT_SECONDS = 15.0
DECISION_HOUR_UTC = 19
DECISION_HORIZON = timedelta(days=180)

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_YEAR_HEADING_RE = re.compile(r"(\d{4})\s+FOMC\s+Meetings", re.IGNORECASE)
_MEETING_DAYS_RE = re.compile(r"(\d{1,2})(?:\s*(?:-|–|—|to)\s*(\d{1,2}))?")


class FedRateUnavailable(Exception):
    """No observation and no previously stored announcement."""


class PreviousSource:
    """Where the previous target range came from."""
    OBSERVATION = "observation"
    PRIOR_PERSISTED = "prior_persisted"
    ASSUMED_UNCHANGED = "assumed_unchanged"


@dataclass
class FedRateData:
    announcedUpper: Optional[float]
    announcedLower: Optional[float]
    previousUpper: Optional[float]
    previousLower: Optional[float]
    previousSource: Optional[str]
    lastAnnounceDate: Optional[str]
    nextDecisionDate: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_observation_value(value: Any) -> Optional[float]:
    """FRED uses "." for missing observations."""
    if value is None or value in (".", ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def previous_from_observations(observations: List[Dict[str, Any]]) -> Optional[float]:
    """Value of the first valid observation dated before the newest one.

    Falls back to the second observation when dates don't discriminate.
    `observations` is newest first.
    """
    if len(observations) < 2:
        return None

    current_date = observations[0].get("date")
    if current_date:
        for obs in observations[1:]:
            value = parse_observation_value(obs.get("value"))
            obs_date = obs.get("date")
            if value is not None and obs_date and obs_date < current_date:
                return value

    second = parse_observation_value(observations[1].get("value"))
    if second is not None:
        logger.warning(f"[FedRate] No earlier-dated observation, using second observation {second}")
    return second


def parse_last_announcement(rss_text: str) -> Optional[datetime]:
    """Latest "Implementation Note" item date, else the latest item date."""
    notes, dated = [], []
    for item in parse_feed(rss_text):
        if item.published is None:
            continue
        dated.append(item.published)
        if "implementation note" in item.title.lower():
            notes.append(item.published)

    if notes:
        return max(notes)
    if dated:
        return max(dated)
    logger.warning("[FedRate] No dated items found in press RSS")
    return None


def _month_number(text: str) -> Optional[int]:
    # Meetings spanning two months are labelled like "Apr/May"; the decision is on the later one
    label = text.strip().split("/")[-1].strip().lower()
    return MONTHS.get(label[:3])


def parse_next_decision(html: str, now: datetime) -> Optional[datetime]:
    """Next FOMC decision (19:00 UTC on the last meeting day) within 180 days."""
    soup = BeautifulSoup(html, "html.parser")
    valid_years = {now.year, now.year + 1}

    year = None
    month = None
    upcoming = None

    for element in soup.find_all(["h4", "div"]):
        if element.name == "h4":
            match = _YEAR_HEADING_RE.search(element.get_text())
            year = int(match.group(1)) if match else None
            continue

        classes = element.get("class") or []
        if "fomc-meeting__month" in classes:
            month = _month_number(element.get_text())
        elif "fomc-meeting__date" in classes:
            if year not in valid_years or month is None:
                continue
            match = _MEETING_DAYS_RE.search(element.get_text())
            if not match:
                continue
            day = int(match.group(2) or match.group(1))
            try:
                decision = datetime(year, month, day, DECISION_HOUR_UTC, tzinfo=timezone.utc)
            except ValueError:
                continue
            if decision > now and (upcoming is None or decision < upcoming):
                upcoming = decision

    if upcoming is None:
        logger.warning("[FedRate] No upcoming FOMC meeting found in calendar")
        return None
    if upcoming - now > DECISION_HORIZON:
        logger.warning(f"[FedRate] Next FOMC meeting {upcoming.isoformat()} is beyond the horizon, ignoring")
        return None
    return upcoming


def _iso(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class FedRateService(BaseDataSource):
    """Assembles the fed_rate document from its three sources."""

    dataset = Dataset.FED_RATE

    def __init__(
        self,
        fetcher: ResilientFetcher,
        documents: DocumentStore,
        fred_api_key: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(fetcher)
        self.documents = documents
        self.fred_api_key = fred_api_key
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def fetch_observations(self, series_id: str) -> List[Dict[str, Any]]:
        now = self._clock()
        data = await self.fetcher.fetch_json(
            FRED_OBSERVATIONS_URL,
            params={
                "series_id": series_id,
                "api_key": self.fred_api_key,
                "file_type": "json",
                "sort_order": "desc",
                "limit": FRED_LIMIT,
                "observation_start": (now - timedelta(days=730)).strftime("%Y-%m-%d"),
            },
            timeout=SOURCE_TIMEOUT_SECONDS,
            use_relay=False,
            label=f"FRED {series_id}",
        )
        observations = data.get("observations") if isinstance(data, dict) else None
        return observations if isinstance(observations, list) else []

    async def fetch_rates(self) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """Upper and lower observation series, newest first; empty on failure."""
        if not self.fred_api_key:
            logger.warning("[FedRate] No FRED API key configured, skipping observations")
            return [], []
        try:
            upper, lower = await asyncio.gather(
                self.fetch_observations(FRED_UPPER_SERIES),
                self.fetch_observations(FRED_LOWER_SERIES),
            )
        except FetchError as e:
            logger.warning(f"[FedRate] FRED request failed: {e}")
            return [], []
        return upper, lower

    async def fetch_last_announcement(self) -> Optional[datetime]:
        try:
            text = await self.fetcher.fetch_text(
                PRESS_RSS_URL,
                headers={"Accept": "application/xml, application/rss+xml, text/xml, */*"},
                timeout=SOURCE_TIMEOUT_SECONDS,
            )
        except FetchError as e:
            logger.warning(f"[FedRate] Press RSS unavailable: {e}")
            return None
        return parse_last_announcement(text)

    async def fetch_next_decision(self) -> Optional[datetime]:
        try:
            html = await self.fetcher.fetch_text(
                FOMC_CALENDAR_URL,
                headers={"Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"},
                timeout=SOURCE_TIMEOUT_SECONDS,
            )
        except FetchError as e:
            logger.warning(f"[FedRate] FOMC calendar unavailable: {e}")
            return None
        return parse_next_decision(html, self._clock())

    async def build(self) -> FedRateData:
        """Fetch all sources and resolve the document.

        Raises:
            FedRateUnavailable: No observation and nothing stored before.
        """
        (upper_obs, lower_obs), last_announce, next_decision = await asyncio.gather(
            self.fetch_rates(),
            self.fetch_last_announcement(),
            self.fetch_next_decision(),
        )
        prior = await self.documents.get_data(self.dataset.value) or {}

        announced_upper = parse_observation_value(upper_obs[0].get("value")) if upper_obs else None
        announced_lower = parse_observation_value(lower_obs[0].get("value")) if lower_obs else None

        if announced_upper is None or announced_lower is None:
            if prior.get("announcedUpper") is None:
                raise FedRateUnavailable("No FRED observations and no stored announcement")
            logger.warning("[FedRate] No current observations, keeping stored announcement")
            announced_upper = prior["announcedUpper"]
            announced_lower = prior.get("announcedLower")

        def from_observations():
            upper = previous_from_observations(upper_obs)
            lower = previous_from_observations(lower_obs)
            return (upper, lower) if upper is not None and lower is not None else None

        def from_prior():
            if prior.get("announcedUpper") is None:
                return None
            # A stored announcement that differs from today's is the previous range
            if prior.get("announcedUpper") != announced_upper or prior.get("announcedLower") != announced_lower:
                return prior["announcedUpper"], prior.get("announcedLower")
            if prior.get("previousUpper") is not None and prior.get("previousLower") is not None:
                return prior["previousUpper"], prior["previousLower"]
            return None

        source, (previous_upper, previous_lower) = await first_available(
            (PreviousSource.OBSERVATION, from_observations),
            (PreviousSource.PRIOR_PERSISTED, from_prior),
            (PreviousSource.ASSUMED_UNCHANGED, lambda: (announced_upper, announced_lower)),
        )
        if source != PreviousSource.OBSERVATION:
            logger.warning(f"[FedRate] Previous range resolved from {source}")

        return FedRateData(
            announcedUpper=announced_upper,
            announcedLower=announced_lower,
            previousUpper=previous_upper,
            previousLower=previous_lower,
            previousSource=source,
            lastAnnounceDate=_iso(last_announce) or prior.get("lastAnnounceDate"),
            nextDecisionDate=_iso(next_decision),
        )

    async def fetch(self) -> Dict[str, Any]:
        return (await self.build()).to_dict()
