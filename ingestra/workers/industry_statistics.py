"""
industry_statistics worker: Census County Business Patterns by NAICS sector.

Replaces `industry_statistics` with national establishment, employment and
payroll figures per 2-digit NAICS sector. Falls back to a synthetic snapshot
when the first sector cannot be fetched or fewer than ten rows come back.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from ingestra.loader import ColumnType
from ingestra.schemas import JobType, PARPerception
from ingestra.utils import utc_now
from ingestra.workers.public_data import PublicData, PublicDataWorker

logger = logging.getLogger(__name__)


CBP_URL = "https://api.census.gov/data/{year}/cbp"
CBP_FIELDS = "NAICS2017,NAICS2017_LABEL,ESTAB,EMP,PAYANN"
DEFAULT_YEAR = 2021
SYNTHETIC_YEAR = 2023
MIN_ROWS = 10

NAICS_SECTORS = (
    ("11", "Agriculture, Forestry, Fishing and Hunting"),
    ("21", "Mining, Quarrying, and Oil and Gas Extraction"),
    ("22", "Utilities"),
    ("23", "Construction"),
    ("31-33", "Manufacturing"),
    ("42", "Wholesale Trade"),
    ("44-45", "Retail Trade"),
    ("48-49", "Transportation and Warehousing"),
    ("51", "Information"),
    ("52", "Finance and Insurance"),
    ("53", "Real Estate and Rental and Leasing"),
    ("54", "Professional, Scientific, and Technical Services"),
    ("55", "Management of Companies and Enterprises"),
    ("56", "Administrative and Support Services"),
    ("61", "Educational Services"),
    ("62", "Health Care and Social Assistance"),
    ("71", "Arts, Entertainment, and Recreation"),
    ("72", "Accommodation and Food Services"),
    ("81", "Other Services (except Public Administration)"),
)
SECTOR_TITLES = dict(NAICS_SECTORS)

# (NAICS code, establishments, employment, annual payroll in $1000s)
SYNTHETIC_SECTORS = (
    ("11", 21000, 1200000, 45000000),
    ("21", 8500, 600000, 60000000),
    ("22", 7200, 550000, 55000000),
    ("23", 730000, 7800000, 450000000),
    ("31-33", 250000, 12500000, 750000000),
    ("42", 300000, 5800000, 400000000),
    ("44-45", 650000, 15500000, 520000000),
    ("48-49", 230000, 6500000, 350000000),
    ("51", 90000, 3000000, 350000000),
    ("52", 280000, 6700000, 650000000),
    ("53", 350000, 2400000, 130000000),
    ("54", 950000, 10000000, 950000000),
    ("55", 50000, 2700000, 350000000),
    ("56", 400000, 10000000, 400000000),
    ("61", 95000, 3800000, 200000000),
    ("62", 900000, 21000000, 1100000000),
    ("71", 140000, 2500000, 90000000),
    ("72", 700000, 14000000, 300000000),
    ("81", 550000, 5500000, 180000000),
)

HEADERS = [
    "naics_code", "naics_title", "year", "establishments", "employment",
    "annual_payroll", "average_wage", "state", "source", "fetched_at",
]
COLUMN_TYPES = {
    "naics_code": ColumnType.TEXT,
    "naics_title": ColumnType.TEXT,
    "year": ColumnType.INTEGER,
    "establishments": ColumnType.INTEGER,
    "employment": ColumnType.INTEGER,
    "annual_payroll": ColumnType.DECIMAL,
    "average_wage": ColumnType.INTEGER,
    "state": ColumnType.TEXT,
    "source": ColumnType.TEXT,
    "fetched_at": ColumnType.TEXT,
}


@dataclass
class IndustryStat:
    naics_code: str
    naics_title: str
    year: int
    establishments: Optional[int] = None
    employment: Optional[int] = None
    annual_payroll: Optional[float] = None
    state: Optional[str] = None

    @property
    def average_wage(self) -> Optional[int]:
        # CBP reports payroll in thousands of dollars
        if not self.employment or self.annual_payroll is None:
            return None
        return round(self.annual_payroll * 1000 / self.employment)


def _int(value: Any) -> Optional[int]:
    return int(value) if value not in (None, "") else None


def _float(value: Any) -> Optional[float]:
    return float(value) if value not in (None, "") else None


def parse_cbp(naics_code: str, year: int, payload: Any) -> list[IndustryStat]:
    """
    Rows from a CBP response: a header row followed by value rows.

    Raises:
        ValueError: On a non-numeric count
    """
    if not isinstance(payload, list) or len(payload) < 2:
        return []
    header = payload[0]
    stats = []
    for values in payload[1:]:
        record = dict(zip(header, values))
        stats.append(IndustryStat(
            naics_code=naics_code,
            naics_title=record.get("NAICS2017_LABEL") or SECTOR_TITLES.get(naics_code, naics_code),
            year=year,
            establishments=_int(record.get("ESTAB")),
            employment=_int(record.get("EMP")),
            annual_payroll=_float(record.get("PAYANN")),
        ))
    return stats


def synthetic_statistics() -> list[IndustryStat]:
    return [
        IndustryStat(
            naics_code=code,
            naics_title=SECTOR_TITLES[code],
            year=SYNTHETIC_YEAR,
            establishments=establishments,
            employment=employment,
            annual_payroll=float(payroll),
        )
        for code, establishments, employment, payroll in SYNTHETIC_SECTORS
    ]


@dataclass
class IndustryData(PublicData):
    statistics: list[IndustryStat] = field(default_factory=list)


class IndustryStatisticsWorker(PublicDataWorker[IndustryData]):
    """
    Parameters (top-level job keys):
        year: CBP vintage to query (default: 2021)
        sectors: NAICS sector codes to fetch (default: all sectors)
        tableName: Destination table (default: industry_statistics)

    Success depends on the insert rate only; sector coverage is reported
    as improvements.
    """

    job_type = JobType.INDUSTRY_STATISTICS
    default_table = "industry_statistics"
    headers = HEADERS
    column_types = COLUMN_TYPES
    item_label = "sectors"
    fetch_threshold = None

    def __init__(self, definition, context, request_delay: float = 0.1):
        super().__init__(definition, context)
        self.request_delay = request_delay

    def sectors(self) -> list[str]:
        codes = self.definition.extras.get("sectors")
        if not codes:
            return [code for code, _ in NAICS_SECTORS]
        unknown = [c for c in codes if c not in SECTOR_TITLES]
        if unknown:
            raise ValueError(f"Unknown NAICS sectors: {unknown}")
        return list(codes)

    def fetch_sector(self, naics_code: str, year: int) -> list[IndustryStat]:
        """
        Raises:
            requests.RequestException: On transport or HTTP errors
            ValueError: On an unparseable response body
        """
        response = self.context.http.get(
            CBP_URL.format(year=year),
            params={"get": CBP_FIELDS, "for": "us:*", "NAICS2017": naics_code},
            timeout=30,
        )
        response.raise_for_status()
        return parse_cbp(naics_code, year, response.json())

    def perceive(self) -> PARPerception[IndustryData, None]:
        year = int(self.definition.extras.get("year", DEFAULT_YEAR))
        sectors = self.sectors()
        data = IndustryData(requested=len(sectors))

        for position, code in enumerate(sectors):
            if position and self.request_delay:
                time.sleep(self.request_delay)
            try:
                stats = self.fetch_sector(code, year)
            except (requests.RequestException, ValueError) as e:
                data.fetch_errors.append(f"API error for {code}: {e}")
                stats = None
            else:
                if not stats:
                    data.fetch_errors.append(f"No data for {code}")
            if stats:
                data.statistics.extend(stats)
            elif position == 0:
                logger.info("Census CBP unavailable")
                break

        if len(data.statistics) < MIN_ROWS:
            logger.info("Using synthetic industry data")
            data.statistics = synthetic_statistics()
            data.use_synthetic(len(data.statistics))

        return PARPerception(
            data=data,
            context={
                "year": year,
                "sectorCount": len(sectors),
                "fetchedCount": len(data.statistics),
                "usedSyntheticData": data.used_synthetic,
            },
        )

    def build_rows(self, data: IndustryData) -> list[dict[str, Any]]:
        fetched_at = utc_now().isoformat()
        source = "synthetic" if data.used_synthetic else "census_bureau"
        return [
            {
                "naics_code": stat.naics_code,
                "naics_title": stat.naics_title,
                "year": stat.year,
                "establishments": stat.establishments,
                "employment": stat.employment,
                "annual_payroll": stat.annual_payroll,
                "average_wage": stat.average_wage,
                "state": stat.state,
                "source": source,
                "fetched_at": fetched_at,
            }
            for stat in data.statistics
        ]

    def describe_row(self, row) -> str:
        return f"NAICS {row['naics_code']}"

    def success_lesson(self, records_processed: int, data: IndustryData) -> str:
        return f"Successfully loaded {records_processed} industry statistics for {data.requested} sectors"
