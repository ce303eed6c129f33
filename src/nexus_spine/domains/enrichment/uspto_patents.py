"""
USPTO PatentsView patents by assignee.

POSTs one PatentsView query per space company (assignee organization
contains the search name, newest grants first, 50 per page) and summarizes
the returned patents.

Tags:
    uspto, patentsview, patents, cpc, enrichment

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections import Counter
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

PATENTS_API_URL = "https://api.patentsview.org/patents/query"
PATENT_FIELDS = [
    "patent_number",
    "patent_title",
    "patent_abstract",
    "patent_date",
    "app_date",
    "cpc_subgroup_id",
    "inventor_first_name",
    "inventor_last_name",
    "citedby_patent_number",
]
PER_PAGE = 50
TOP_N = 10


@dataclass(frozen=True)
class PatentAssignee:
    search_name: str
    display_name: str


SPACE_PATENT_ASSIGNEES: tuple[PatentAssignee, ...] = (
    PatentAssignee("SpaceX", "SpaceX"),
    PatentAssignee("Rocket Lab", "Rocket Lab"),
    PatentAssignee("Blue Origin", "Blue Origin"),
    PatentAssignee("Planet Labs", "Planet Labs"),
    PatentAssignee("Spire Global", "Spire Global"),
    PatentAssignee("AST SpaceMobile", "AST SpaceMobile"),
    PatentAssignee("BlackSky", "BlackSky Technology"),
    PatentAssignee("Redwire", "Redwire Corporation"),
    PatentAssignee("Relativity Space", "Relativity Space"),
    PatentAssignee("Astra Space", "Astra Space"),
    PatentAssignee("Viasat", "Viasat"),
    PatentAssignee("Globalstar", "Globalstar"),
    PatentAssignee("Boeing", "Boeing"),
    PatentAssignee("Lockheed Martin", "Lockheed Martin"),
    PatentAssignee("Northrop Grumman", "Northrop Grumman"),
    PatentAssignee("L3Harris", "L3Harris Technologies"),
    PatentAssignee("Raytheon", "RTX / Raytheon"),
    PatentAssignee("Sierra Nevada Corporation", "Sierra Space"),
    PatentAssignee("Maxar", "Maxar Technologies"),
    PatentAssignee("Iridium", "Iridium Communications"),
)


@dataclass
class PatentRecord:
    patent_number: str
    title: str
    abstract: str | None
    grant_date: str
    application_date: str | None
    cpc_codes: list[str] = field(default_factory=list)
    inventors: list[str] = field(default_factory=list)
    citation_count: int = 0
    patent_url: str = ""


@dataclass
class CompanyPatentSummary:
    assignee_name: str
    display_name: str
    total_patents: int
    patents: list[PatentRecord] = field(default_factory=list)
    top_cpc_codes: list[dict[str, Any]] = field(default_factory=list)
    latest_patent_date: str | None = None


def build_patents_query(assignee_name: str) -> dict[str, Any]:
    return {
        "q": {"_and": [{"_contains": {"assignee_organization": assignee_name}}]},
        "f": PATENT_FIELDS,
        "o": {"per_page": PER_PAGE, "page": 1},
        "s": [{"patent_date": "desc"}],
    }


def parse_patent(raw: dict[str, Any]) -> PatentRecord:
    cpc_codes = [c.get("cpc_subgroup_id") for c in raw.get("cpcs") or [] if c.get("cpc_subgroup_id")]
    inventors = [
        f"{inv.get('inventor_first_name') or ''} {inv.get('inventor_last_name') or ''}".strip()
        for inv in raw.get("inventors") or []
    ]
    patent_number = raw.get("patent_number") or ""
    return PatentRecord(
        patent_number=patent_number,
        title=raw.get("patent_title") or "Untitled Patent",
        abstract=raw.get("patent_abstract") or None,
        grant_date=raw.get("patent_date") or "",
        application_date=raw.get("app_date") or None,
        cpc_codes=list(dict.fromkeys(cpc_codes)),
        inventors=[name for name in inventors if name],
        citation_count=len(raw.get("citedby_patents") or []),
        patent_url=f"https://patents.google.com/patent/US{patent_number}",
    )


def top_cpc_codes(patents: list[PatentRecord], limit: int = TOP_N) -> list[dict[str, Any]]:
    """Most frequent CPC main groups (first four characters, e.g. ``B64G``)."""
    counts = Counter(code[:4] for patent in patents for code in patent.cpc_codes)
    return [{"code": code, "count": count} for code, count in counts.most_common(limit)]


@register_adapter("uspto-patents")
class UsptoPatentsAdapter(EnrichmentAdapter[PatentAssignee, CompanyPatentSummary]):
    """Recent patent grants per space-company assignee."""

    description = "USPTO PatentsView patents for space companies"
    default_config = SourceConfig(
        name="uspto-patents",
        delay_seconds=2.0,
        request_timeout=20.0,
        section="patents",
        source_url="https://api.patentsview.org/",
    )

    def entities(self) -> tuple[PatentAssignee, ...]:
        return SPACE_PATENT_ASSIGNEES

    def entity_key(self, entity: PatentAssignee) -> str:
        return entity.search_name

    def describe(self, entity: PatentAssignee) -> str:
        return f"patents for {entity.display_name}"

    async def fetch_one(
        self, entity: PatentAssignee
    ) -> EnrichmentResult[CompanyPatentSummary] | None:
        data = await self.client.post_json(
            PATENTS_API_URL,
            json=build_patents_query(entity.search_name),
            headers={"Accept": "application/json"},
            timeout=self.config.request_timeout,
        )
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ParseError(f"Unexpected PatentsView payload for {entity.search_name!r}")

        patents = [parse_patent(raw) for raw in data.get("patents") or []]
        summary = CompanyPatentSummary(
            assignee_name=entity.search_name,
            display_name=entity.display_name,
            total_patents=data.get("total_patent_count") or 0,
            patents=patents,
            top_cpc_codes=top_cpc_codes(patents),
            latest_patent_date=patents[0].grant_date if patents else None,
        )

        logger.info(
            "uspto.fetched",
            assignee=entity.search_name,
            total=summary.total_patents,
            returned=len(patents),
        )
        return self.result(entity, summary)
