"""
GitHub public activity for space-industry organizations.

Two calls per org: ``/orgs/{org}`` then its public repos sorted by stars.
Unauthenticated GitHub allows 60 requests per hour, so this is the one
source whose batch stops at the first rate-limit response instead of
burning the remaining budget (``abort_on_rate_limit=True``). Setting
``NEXUS_GITHUB_TOKEN`` raises the limit to 5000 per hour.

Tags:
    github, open-source, activity, rate-limit, enrichment

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from nexus_spine.core.logging import get_logger
from nexus_spine.framework.registry import register_adapter
from nexus_spine.framework.sources.protocol import (
    EnrichmentAdapter,
    EnrichmentResult,
    SourceConfig,
)

logger = get_logger(__name__)

GITHUB_API_URL = "https://api.github.com"
TOP_N = 10


@dataclass(frozen=True)
class GitHubOrg:
    org_name: str
    display_name: str


SPACE_GITHUB_ORGS: tuple[GitHubOrg, ...] = (
    GitHubOrg("nasa", "NASA"),
    GitHubOrg("esa", "European Space Agency"),
    GitHubOrg("RocketLabUSA", "Rocket Lab"),
    GitHubOrg("planetlabs", "Planet Labs"),
    GitHubOrg("spire-data", "Spire Global"),
    GitHubOrg("DigitalGlobe", "Maxar Technologies"),
    GitHubOrg("Azure", "Azure Orbital (Microsoft)"),
    GitHubOrg("astropy", "AstroPy Project"),
    GitHubOrg("poliastro", "Poliastro"),
    GitHubOrg("cesium", "Cesium (CesiumJS)"),
    GitHubOrg("OpenMCT", "Open MCT (NASA JPL)"),
    GitHubOrg("nasa-jpl", "NASA JPL"),
    GitHubOrg("nasa-gibs", "NASA GIBS"),
    GitHubOrg("NASAWorldWind", "NASA World Wind"),
    GitHubOrg("SatNOGS", "SatNOGS"),
    GitHubOrg("libre-space", "Libre Space Foundation"),
)


@dataclass
class RepoSummary:
    name: str
    description: str | None
    url: str
    stars: int
    forks: int
    language: str | None
    last_push: str | None
    topics: list[str] = field(default_factory=list)


@dataclass
class OrgActivitySummary:
    org_name: str
    display_name: str
    org_description: str | None
    org_url: str | None
    avatar_url: str | None
    public_repo_count: int
    total_stars: int
    total_forks: int
    total_open_issues: int
    top_languages: list[dict[str, Any]] = field(default_factory=list)
    top_repos: list[RepoSummary] = field(default_factory=list)
    last_push_date: str | None = None
    created_at: str | None = None


def top_languages(repos: list[dict[str, Any]], limit: int = TOP_N) -> list[dict[str, Any]]:
    """Most common primary languages across non-archived repos."""
    counts = Counter(
        repo["language"] for repo in repos if repo.get("language") and not repo.get("archived")
    )
    return [{"language": lang, "count": count} for lang, count in counts.most_common(limit)]


def summarize_org(org: GitHubOrg, details: dict[str, Any], repos: list[dict[str, Any]]) -> OrgActivitySummary:
    """Aggregate org details and its repo list into an activity summary."""
    active = [repo for repo in repos if not repo.get("archived")]
    pushes = [repo["pushed_at"] for repo in active if repo.get("pushed_at")]

    return OrgActivitySummary(
        org_name=details.get("login") or org.org_name,
        display_name=org.display_name,
        org_description=details.get("description"),
        org_url=details.get("html_url"),
        avatar_url=details.get("avatar_url"),
        public_repo_count=details.get("public_repos") or 0,
        total_stars=sum(repo.get("stargazers_count") or 0 for repo in active),
        total_forks=sum(repo.get("forks_count") or 0 for repo in active),
        total_open_issues=sum(repo.get("open_issues_count") or 0 for repo in active),
        top_languages=top_languages(active),
        top_repos=[
            RepoSummary(
                name=repo.get("name", ""),
                description=repo.get("description"),
                url=repo.get("html_url", ""),
                stars=repo.get("stargazers_count") or 0,
                forks=repo.get("forks_count") or 0,
                language=repo.get("language"),
                last_push=repo.get("pushed_at"),
                topics=list(repo.get("topics") or []),
            )
            for repo in active[:TOP_N]
        ],
        last_push_date=max(pushes) if pushes else None,
        created_at=details.get("created_at"),
    )


@register_adapter("github-activity")
class GitHubActivityAdapter(EnrichmentAdapter[GitHubOrg, OrgActivitySummary]):
    """Open-source activity (stars, forks, languages) per GitHub org."""

    description = "GitHub public activity for space organizations"
    default_config = SourceConfig(
        name="github-activity",
        delay_seconds=2.0,
        request_timeout=15.0,
        abort_on_rate_limit=True,
        section="github",
        source_url="https://api.github.com/",
    )

    # Pause between the org and repos requests of one entity.
    request_pause_seconds: float = 0.5

    def entities(self) -> tuple[GitHubOrg, ...]:
        return SPACE_GITHUB_ORGS

    def entity_key(self, entity: GitHubOrg) -> str:
        return entity.org_name

    def describe(self, entity: GitHubOrg) -> str:
        return f"{entity.display_name} ({entity.org_name})"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": self.settings.user_agent,
        }
        if self.settings.github_token:
            headers["Authorization"] = f"Bearer {self.settings.github_token}"
        return headers

    async def fetch_one(self, entity: GitHubOrg) -> EnrichmentResult[OrgActivitySummary] | None:
        headers = self._headers()
        details = await self.client.get_json(
            f"{GITHUB_API_URL}/orgs/{entity.org_name}",
            headers=headers,
            timeout=self.config.request_timeout,
        )
        if details is None:
            logger.warning("github.org_not_found", org=entity.org_name)
            return None

        if self.request_pause_seconds:
            await asyncio.sleep(self.request_pause_seconds)

        repos = await self.client.get_json(
            f"{GITHUB_API_URL}/orgs/{entity.org_name}/repos",
            params={"per_page": 100, "sort": "stars", "direction": "desc", "type": "public"},
            headers=headers,
            timeout=self.config.request_timeout,
        )
        summary = summarize_org(entity, details, list(repos or []))

        logger.info(
            "github.fetched",
            org=entity.org_name,
            repos=summary.public_repo_count,
            stars=summary.total_stars,
        )
        return self.result(entity, summary)
