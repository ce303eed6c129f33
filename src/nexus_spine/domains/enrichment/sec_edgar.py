"""
SEC EDGAR filings for public space companies.

Pulls ``data.sec.gov/submissions/CIK##########.json`` per company and keeps
the recent 10-K / 10-Q family of filings plus the company profile fields.
SEC fair-access policy asks for a descriptive ``User-Agent`` and at most
10 requests per second; a 1.5 s delay stays well under that.

Tags:
    sec, edgar, filings, 10-K, 10-Q, enrichment

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from nexus_spine.core.errors import ParseError
from nexus_spine.core.logging import get_logger
from nexus_spine.framework.registry import register_adapter
from nexus_spine.framework.sources.protocol import (
    EnrichmentAdapter,
    EnrichmentResult,
    SourceConfig,
)

logger = get_logger(__name__)

EDGAR_SUBMISSIONS_URL = "https://data.sec.gov/submissions"
EDGAR_SOURCE_URL = "https://efts.sec.gov/LATEST/"
TARGET_FORMS = frozenset({"10-K", "10-Q", "10-K/A", "10-Q/A"})
MAX_FILINGS = 20


@dataclass(frozen=True)
class PublicCompany:
    ticker: str
    name: str
    cik: str


SPACE_COMPANY_TICKERS: tuple[PublicCompany, ...] = (
    PublicCompany("RKLB", "Rocket Lab USA", "0001819994"),
    PublicCompany("PL", "Planet Labs", "0001836935"),
    PublicCompany("SPIR", "Spire Global", "0001835567"),
    PublicCompany("ASTS", "AST SpaceMobile", "0001780312"),
    PublicCompany("SATL", "Satellogic", "0001866757"),
    PublicCompany("BKSY", "BlackSky Technology", "0001753706"),
    PublicCompany("RDW", "Redwire Corporation", "0001819796"),
    PublicCompany("BA", "Boeing", "0000012927"),
    PublicCompany("LMT", "Lockheed Martin", "0000936468"),
    PublicCompany("NOC", "Northrop Grumman", "0001133421"),
    PublicCompany("LHX", "L3Harris Technologies", "0000202058"),
    PublicCompany("RTX", "RTX Corporation", "0000101829"),
    PublicCompany("VSAT", "Viasat", "0000797721"),
    PublicCompany("GSAT", "Globalstar", "0001176316"),
)


@dataclass
class SecFiling:
    accession_number: str
    filing_date: str
    report_date: str
    form: str
    primary_document: str
    file_number: str


@dataclass
class CompanyFinancialSummary:
    ticker: str
    company_name: str
    cik: str
    recent_filings: list[SecFiling] = field(default_factory=list)
    latest_annual_filing: SecFiling | None = None
    latest_quarterly_filing: SecFiling | None = None
    fiscal_year_end: str | None = None
    state_of_incorporation: str | None = None
    sic: str | None = None
    sic_description: str | None = None
    edgar_url: str = ""


def padded_cik(cik: str) -> str:
    """Zero-pad a CIK to the 10 digits EDGAR URLs use."""
    return cik.lstrip("0").rjust(10, "0")


def extract_filings(data: dict[str, Any]) -> list[SecFiling]:
    """Pick up to 20 10-K/10-Q family filings from a submissions document."""
    recent = (data.get("filings") or {}).get("recent")
    if not isinstance(recent, dict):
        return []

    def column(name: str) -> list[Any]:
        return recent.get(name) or []

    forms = column("form")
    accession_numbers = column("accessionNumber")
    filing_dates = column("filingDate")
    report_dates = column("reportDate")
    primary_documents = column("primaryDocument")
    file_numbers = column("fileNumber")

    def at(values: list[Any], i: int) -> str:
        return values[i] if i < len(values) and values[i] else ""

    filings: list[SecFiling] = []
    for i, form in enumerate(forms):
        if len(filings) >= MAX_FILINGS:
            break
        if form in TARGET_FORMS:
            filings.append(
                SecFiling(
                    accession_number=at(accession_numbers, i),
                    filing_date=at(filing_dates, i),
                    report_date=at(report_dates, i),
                    form=form,
                    primary_document=at(primary_documents, i),
                    file_number=at(file_numbers, i),
                )
            )
    return filings


@register_adapter("sec-edgar")
class SecEdgarAdapter(EnrichmentAdapter[PublicCompany, CompanyFinancialSummary]):
    """10-K / 10-Q filing summaries for public space companies."""

    description = "SEC EDGAR 10-K/10-Q filings for public space companies"
    default_config = SourceConfig(
        name="sec-edgar",
        delay_seconds=1.5,
        request_timeout=15.0,
        section="sec-filings",
        source_url=EDGAR_SOURCE_URL,
    )

    def entities(self) -> tuple[PublicCompany, ...]:
        return SPACE_COMPANY_TICKERS

    def entity_key(self, entity: PublicCompany) -> str:
        return entity.ticker

    def content_key(self, result: EnrichmentResult[CompanyFinancialSummary]) -> str:
        return f"sec-financials:{result.record.ticker}"

    async def fetch_one(
        self, entity: PublicCompany
    ) -> EnrichmentResult[CompanyFinancialSummary] | None:
        url = f"{EDGAR_SUBMISSIONS_URL}/CIK{padded_cik(entity.cik)}.json"
        data = await self.client.get_json(
            url,
            headers={"User-Agent": self.settings.user_agent, "Accept": "application/json"},
            timeout=self.config.request_timeout,
        )
        if data is None:
            logger.warning("sec_edgar.cik_not_found", ticker=entity.ticker, cik=entity.cik)
            return None
        if not isinstance(data, dict):
            raise ParseError(f"Unexpected submissions payload for CIK {entity.cik}")

        filings = extract_filings(data)
        latest_annual = next((f for f in filings if f.form in ("10-K", "10-K/A")), None)
        latest_quarterly = next((f for f in filings if f.form in ("10-Q", "10-Q/A")), None)

        summary = CompanyFinancialSummary(
            ticker=entity.ticker,
            company_name=data.get("name") or entity.name,
            cik=entity.cik,
            recent_filings=filings,
            latest_annual_filing=latest_annual,
            latest_quarterly_filing=latest_quarterly,
            fiscal_year_end=data.get("fiscalYearEnd") or None,
            state_of_incorporation=data.get("stateOfIncorporation") or None,
            sic=data.get("sic") or None,
            sic_description=data.get("sicDescription") or None,
            edgar_url=(
                "https://www.sec.gov/cgi-bin/browse-edgar?action=getcompany"
                f"&CIK={entity.cik}&type=10-K&dateb=&owner=include&count=40"
            ),
        )

        logger.info(
            "sec_edgar.fetched",
            ticker=entity.ticker,
            filings=len(filings),
            latest_annual=latest_annual.filing_date if latest_annual else "none",
        )
        return self.result(entity, summary)
