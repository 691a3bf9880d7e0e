"""
public_companies worker: company profiles and quotes from Yahoo Finance.

Upserts one row per ticker into `public_companies`. The first ticker doubles
as a reachability check; when it fails, or fewer than five companies come
back, a built-in synthetic snapshot is loaded instead.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from ingestra.loader import ColumnType
from ingestra.schemas import JobType, LoadMode, PARPerception
from ingestra.utils import utc_now
from ingestra.workers.public_data import PublicData, PublicDataWorker

logger = logging.getLogger(__name__)


QUOTE_SUMMARY_URL = "https://query1.finance.yahoo.com/v10/finance/quoteSummary/{ticker}"
QUOTE_MODULES = "price,summaryProfile,financialData,defaultKeyStatistics"
USER_AGENT = "Mozilla/5.0 (compatible; ingestra)"
MIN_COMPANIES = 5
DESCRIPTION_LIMIT = 1000

COMPANY_TICKERS = (
    "AAPL", "MSFT", "GOOGL", "AMZN", "META", "NVDA", "TSLA",
    "CRM", "ORCL", "SAP", "IBM", "ADBE",
    "WMT", "TGT", "COST", "HD", "NKE",
    "JPM", "BAC", "GS", "V", "MA",
    "JNJ", "UNH", "PFE", "MRK",
    "CAT", "BA", "GE", "MMM",
)

HEADERS = [
    "ticker", "name", "sector", "industry", "market_cap", "pe_ratio", "revenue", "net_income",
    "employees", "country", "website", "description", "last_price", "price_change",
    "price_change_percent", "source", "last_updated",
]
COLUMN_TYPES = {
    "ticker": ColumnType.TEXT,
    "name": ColumnType.TEXT,
    "sector": ColumnType.TEXT,
    "industry": ColumnType.TEXT,
    "market_cap": ColumnType.DECIMAL,
    "pe_ratio": ColumnType.DECIMAL,
    "revenue": ColumnType.DECIMAL,
    "net_income": ColumnType.DECIMAL,
    "employees": ColumnType.INTEGER,
    "country": ColumnType.TEXT,
    "website": ColumnType.TEXT,
    "description": ColumnType.TEXT,
    "last_price": ColumnType.DECIMAL,
    "price_change": ColumnType.DECIMAL,
    "price_change_percent": ColumnType.DECIMAL,
    "source": ColumnType.TEXT,
    "last_updated": ColumnType.TEXT,
}


@dataclass
class Company:
    ticker: str
    name: str
    sector: Optional[str] = None
    industry: Optional[str] = None
    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    employees: Optional[int] = None
    country: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    last_price: Optional[float] = None
    price_change: Optional[float] = None
    price_change_percent: Optional[float] = None


# (ticker, name, sector, industry, market cap, P/E, revenue, net income, employees, last price, change, change %)
SYNTHETIC_COMPANIES = (
    ("AAPL", "Apple Inc.", "Technology", "Consumer Electronics",
     3.1e12, 28.5, 394328e6, 99803e6, 164000, 195.27, 1.23, 0.63),
    ("MSFT", "Microsoft Corporation", "Technology", "Software - Infrastructure",
     2.9e12, 35.2, 211915e6, 72361e6, 221000, 389.46, 2.15, 0.55),
    ("GOOGL", "Alphabet Inc.", "Technology", "Internet Content & Information",
     2.1e12, 26.8, 307394e6, 73795e6, 182502, 170.21, 0.87, 0.51),
    ("AMZN", "Amazon.com, Inc.", "Consumer Cyclical", "Internet Retail",
     1.9e12, 62.3, 574785e6, 30425e6, 1541000, 185.63, -0.45, -0.24),
    ("META", "Meta Platforms, Inc.", "Technology", "Internet Content & Information",
     1.3e12, 32.1, 134902e6, 39098e6, 67317, 510.92, 3.21, 0.63),
    ("NVDA", "NVIDIA Corporation", "Technology", "Semiconductors",
     1.8e12, 65.4, 60922e6, 29760e6, 29600, 735.23, 12.45, 1.72),
    ("TSLA", "Tesla, Inc.", "Consumer Cyclical", "Auto Manufacturers",
     780e9, 72.5, 96773e6, 14974e6, 127855, 245.67, -2.34, -0.94),
    ("CRM", "Salesforce, Inc.", "Technology", "Software - Application",
     265e9, 45.2, 34857e6, 4136e6, 73000, 272.45, 1.56, 0.58),
    ("ORCL", "Oracle Corporation", "Technology", "Software - Infrastructure",
     340e9, 33.8, 52961e6, 10137e6, 150000, 125.32, 0.89, 0.72),
    ("IBM", "International Business Machines", "Technology", "Information Technology Services",
     165e9, 22.1, 61860e6, 7502e6, 288300, 180.45, 0.34, 0.19),
    ("WMT", "Walmart Inc.", "Consumer Defensive", "Discount Stores",
     430e9, 26.3, 611289e6, 11680e6, 2100000, 159.87, 0.78, 0.49),
    ("HD", "The Home Depot, Inc.", "Consumer Cyclical", "Home Improvement Retail",
     350e9, 21.5, 157403e6, 15143e6, 471600, 352.67, 1.23, 0.35),
    ("JPM", "JPMorgan Chase & Co.", "Financial Services", "Banks - Diversified",
     550e9, 11.2, 158104e6, 49552e6, 293723, 190.23, 0.67, 0.35),
    ("V", "Visa Inc.", "Financial Services", "Credit Services",
     530e9, 30.5, 32653e6, 17273e6, 26500, 275.89, 1.45, 0.53),
    ("JNJ", "Johnson & Johnson", "Healthcare", "Drug Manufacturers",
     380e9, 16.8, 85159e6, 35153e6, 134500, 157.34, 0.23, 0.15),
    ("UNH", "UnitedHealth Group Incorporated", "Healthcare", "Healthcare Plans",
     480e9, 21.3, 359900e6, 22381e6, 400000, 520.12, 2.34, 0.45),
    ("CAT", "Caterpillar Inc.", "Industrials", "Farm & Heavy Construction Machinery",
     165e9, 16.2, 67060e6, 10335e6, 114233, 340.56, 1.89, 0.56),
    ("BA", "The Boeing Company", "Industrials", "Aerospace & Defense",
     130e9, -15.3, 77794e6, -2222e6, 170000, 215.78, -1.23, -0.57),
    ("GE", "GE Aerospace", "Industrials", "Aerospace & Defense",
     180e9, 35.6, 67954e6, 9482e6, 125000, 165.43, 0.87, 0.53),
)


def synthetic_companies() -> list[Company]:
    return [
        Company(
            ticker=ticker, name=name, sector=sector, industry=industry, market_cap=cap,
            pe_ratio=pe, revenue=revenue, net_income=income, employees=employees, country="USA",
            last_price=price, price_change=change, price_change_percent=change_pct,
        )
        for ticker, name, sector, industry, cap, pe, revenue, income, employees, price, change, change_pct
        in SYNTHETIC_COMPANIES
    ]


def _raw(module: dict, key: str) -> Any:
    # Yahoo wraps numbers as {"raw": 1.0, "fmt": "1.00"}
    value = module.get(key)
    return value.get("raw") if isinstance(value, dict) else None


def parse_quote_summary(ticker: str, payload: Any) -> Optional[Company]:
    """Company from a quoteSummary response body, or None when it holds no result."""
    results = ((payload or {}).get("quoteSummary") or {}).get("result") or []
    if not results:
        return None
    result = results[0]
    price = result.get("price") or {}
    profile = result.get("summaryProfile") or {}
    financials = result.get("financialData") or {}
    stats = result.get("defaultKeyStatistics") or {}

    description = profile.get("longBusinessSummary")
    return Company(
        ticker=ticker,
        name=price.get("shortName") or price.get("longName") or ticker,
        sector=profile.get("sector"),
        industry=profile.get("industry"),
        market_cap=_raw(price, "marketCap"),
        pe_ratio=_raw(stats, "forwardPE") or _raw(stats, "trailingPE"),
        revenue=_raw(financials, "totalRevenue"),
        net_income=_raw(financials, "netIncomeToCommon"),
        employees=profile.get("fullTimeEmployees"),
        country=profile.get("country"),
        website=profile.get("website"),
        description=description[:DESCRIPTION_LIMIT] if description else None,
        last_price=_raw(price, "regularMarketPrice"),
        price_change=_raw(price, "regularMarketChange"),
        price_change_percent=_raw(price, "regularMarketChangePercent"),
    )


@dataclass
class CompanyData(PublicData):
    companies: list[Company] = field(default_factory=list)


class PublicCompaniesWorker(PublicDataWorker[CompanyData]):
    """
    Parameters (top-level job keys):
        tickers: Ticker symbols to fetch (default: COMPANY_TICKERS)
        tableName: Destination table (default: public_companies)
    """

    job_type = JobType.PUBLIC_COMPANIES
    default_table = "public_companies"
    headers = HEADERS
    column_types = COLUMN_TYPES
    load_mode = LoadMode.UPSERT
    key_column = "ticker"
    item_label = "companies"

    def __init__(self, definition, context, request_delay: float = 0.2):
        super().__init__(definition, context)
        self.request_delay = request_delay

    def tickers(self) -> list[str]:
        return [t.upper() for t in self.definition.extras.get("tickers") or COMPANY_TICKERS]

    def fetch_company(self, ticker: str) -> Optional[Company]:
        """
        Raises:
            requests.RequestException: On transport or HTTP errors
            ValueError: On an unparseable response body
        """
        response = self.context.http.get(
            QUOTE_SUMMARY_URL.format(ticker=ticker),
            params={"modules": QUOTE_MODULES},
            headers={"User-Agent": USER_AGENT},
            timeout=30,
        )
        response.raise_for_status()
        return parse_quote_summary(ticker, response.json())

    def perceive(self) -> PARPerception[CompanyData, None]:
        tickers = self.tickers()
        data = CompanyData(requested=len(tickers))

        for position, ticker in enumerate(tickers):
            if position and self.request_delay:
                time.sleep(self.request_delay)
            try:
                company = self.fetch_company(ticker)
            except (requests.RequestException, ValueError) as e:
                data.fetch_errors.append(f"Failed to fetch {ticker}: {e}")
                if position == 0:
                    logger.info(f"Yahoo Finance unreachable: {e}")
                    break
                continue
            if company is None:
                data.fetch_errors.append(f"No data for {ticker}")
                if position == 0:
                    break
            else:
                data.companies.append(company)

        if len(data.companies) < MIN_COMPANIES:
            logger.info("Using synthetic company data")
            data.companies = synthetic_companies()
            data.use_synthetic(len(data.companies))

        return PARPerception(
            data=data,
            context={
                "tickerCount": len(tickers),
                "fetchedCount": len(data.companies),
                "usedSyntheticData": data.used_synthetic,
            },
        )

    def build_rows(self, data: CompanyData) -> list[dict[str, Any]]:
        updated = utc_now().isoformat()
        source = "synthetic" if data.used_synthetic else "yahoo_finance"
        return [
            {**vars(company), "source": source, "last_updated": updated}
            for company in data.companies
        ]

    def describe_row(self, row) -> str:
        return row["ticker"]

    def success_lesson(self, records_processed: int, data: CompanyData) -> str:
        return f"Successfully loaded {records_processed} company profiles"
