"""
FCC ULS spectrum licenses for satellite operators.

Queries the FCC License View ``basicSearch/getLicenses`` endpoint per
operator search term. The API nests results as
``SearchResult → Licenses → License`` and returns a bare object instead of
a list when exactly one license matches; both shapes are handled.

Tags:
    fcc, uls, spectrum, licenses, satellite, enrichment

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
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

FCC_LICENSE_API = "https://data.fcc.gov/api/license-view/basicSearch/getLicenses"
ULS_LICENSE_URL = "https://wireless2.fcc.gov/UlsApp/UlsSearch/license.jsp?licKey="


@dataclass(frozen=True)
class FccOperator:
    search_term: str
    display_name: str


SPACE_FCC_OPERATORS: tuple[FccOperator, ...] = (
    FccOperator("SPACEX", "SpaceX"),
    FccOperator("STARLINK", "Starlink (SpaceX)"),
    FccOperator("KUIPER", "Project Kuiper (Amazon)"),
    FccOperator("ONEWEB", "OneWeb"),
    FccOperator("SES", "SES S.A."),
    FccOperator("TELESAT", "Telesat"),
    FccOperator("VIASAT", "Viasat"),
    FccOperator("IRIDIUM", "Iridium Communications"),
    FccOperator("GLOBALSTAR", "Globalstar"),
    FccOperator("HUGHESNET", "Hughes Network Systems"),
    FccOperator("ECHOSTAR", "EchoStar"),
    FccOperator("INTELSAT", "Intelsat"),
    FccOperator("ORBCOMM", "ORBCOMM"),
    FccOperator("PLANET LABS", "Planet Labs"),
    FccOperator("SPIRE", "Spire Global"),
    FccOperator("BLACKSKY", "BlackSky Technology"),
)


@dataclass
class FccLicense:
    license_name: str
    frn: str | None = None
    call_sign: str | None = None
    category: str | None = None
    service_type: str | None = None
    status: str | None = None
    issue_date: str | None = None
    effective_date: str | None = None
    expiration_date: str | None = None
    cancellation_date: str | None = None
    last_action_date: str | None = None
    license_id: str | None = None
    fcc_url: str | None = None

    @property
    def is_active(self) -> bool:
        return bool(self.status) and "active" in self.status.lower()


@dataclass
class CompanyLicenseSummary:
    search_term: str
    display_name: str
    total_licenses: int
    active_licenses: int
    licenses: list[FccLicense] = field(default_factory=list)
    service_types: list[dict[str, Any]] = field(default_factory=list)
    latest_issue_date: str | None = None
    earliest_expiration_date: str | None = None


def map_license(raw: dict[str, Any]) -> FccLicense:
    license_id = raw.get("licenseID") or None
    return FccLicense(
        license_name=raw.get("licName") or "Unknown",
        frn=raw.get("frn") or None,
        call_sign=raw.get("callsign") or None,
        category=raw.get("categoryDesc") or None,
        service_type=raw.get("serviceDesc") or None,
        status=raw.get("statusDesc") or None,
        issue_date=raw.get("issueDate") or None,
        effective_date=raw.get("effectiveDate") or None,
        expiration_date=raw.get("expiredDate") or None,
        cancellation_date=raw.get("cancellationDate") or None,
        last_action_date=raw.get("lastActionDate") or None,
        license_id=license_id,
        fcc_url=f"{ULS_LICENSE_URL}{license_id}" if license_id else None,
    )


def extract_licenses(data: dict[str, Any]) -> tuple[list[dict[str, Any]], int]:
    """Unwrap the raw license list and the reported total row count."""
    search_result = data.get("SearchResult") or data.get("searchResult") or data
    wrapper = search_result.get("Licenses") or search_result.get("licenses") or {}
    raw = wrapper.get("License")
    if isinstance(raw, list):
        licenses = raw
    elif isinstance(raw, dict):
        licenses = [raw]
    else:
        licenses = []

    total = search_result.get("totalRows") or wrapper.get("totalRows") or len(licenses)
    try:
        total = int(total)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid totalRows value: {total!r}", cause=e) from e
    return licenses, total


def fcc_date_key(value: str) -> str:
    """Sortable form of an FCC date; ULS reports ``MM/DD/YYYY``."""
    try:
        return datetime.strptime(value, "%m/%d/%Y").date().isoformat()
    except ValueError:
        return value


def service_type_breakdown(licenses: list[FccLicense]) -> list[dict[str, Any]]:
    counts = Counter(lic.service_type or "Unknown" for lic in licenses)
    return [{"type": kind, "count": count} for kind, count in counts.most_common()]


@register_adapter("fcc-licenses")
class FccLicensesAdapter(EnrichmentAdapter[FccOperator, CompanyLicenseSummary]):
    """Spectrum license portfolio per satellite operator."""

    description = "FCC ULS licenses for satellite operators"
    default_config = SourceConfig(
        name="fcc-licenses",
        delay_seconds=1.5,
        request_timeout=15.0,
        section="fcc-licenses",
        source_url="https://data.fcc.gov/api/license-view/",
    )

    def entities(self) -> tuple[FccOperator, ...]:
        return SPACE_FCC_OPERATORS

    def entity_key(self, entity: FccOperator) -> str:
        return entity.search_term

    def describe(self, entity: FccOperator) -> str:
        return f"licenses for {entity.display_name}"

    async def fetch_one(self, entity: FccOperator) -> EnrichmentResult[CompanyLicenseSummary] | None:
        data = await self.client.get_json(
            FCC_LICENSE_API,
            params={"searchValue": entity.search_term, "format": "json", "limit": 100},
            headers={"Accept": "application/json", "User-Agent": self.settings.user_agent},
            timeout=self.config.request_timeout,
        )
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ParseError(f"Unexpected license payload for {entity.search_term!r}")

        raw_licenses, total = extract_licenses(data)
        licenses = [map_license(raw) for raw in raw_licenses]
        active = [lic for lic in licenses if lic.is_active]
        issue_dates = [lic.issue_date for lic in licenses if lic.issue_date]
        expirations = [lic.expiration_date for lic in active if lic.expiration_date]

        summary = CompanyLicenseSummary(
            search_term=entity.search_term,
            display_name=entity.display_name,
            total_licenses=total,
            active_licenses=len(active),
            licenses=licenses,
            service_types=service_type_breakdown(licenses),
            latest_issue_date=max(issue_dates, key=fcc_date_key) if issue_dates else None,
            earliest_expiration_date=min(expirations, key=fcc_date_key) if expirations else None,
        )

        logger.info(
            "fcc.fetched",
            search_term=entity.search_term,
            total=total,
            active=len(active),
        )
        return self.result(entity, summary)
