"""
Gitee repositories.

Shows stars, forks, open issues and the latest release for each configured
``owner/repo``.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel

from feedboard.datasource.base import BaseWidget, WidgetConfigError
from feedboard.services.errors import ServiceError
from feedboard.services.types import APIRequest

if TYPE_CHECKING:
    from feedboard.services.manager import ServiceManager


class GiteeRepo(BaseModel):
    name: str
    full_name: str
    description: str = ""
    url: str = ""
    language: str = ""
    stars: int = 0
    forks: int = 0
    issues: int = 0
    last_commit: datetime | None = None
    latest_release: str | None = None
    release_url: str | None = None


class GiteeReposWidget(BaseWidget[GiteeRepo]):
    widget_type = "gitee-repos"
    api_source = "gitee"
    default_title = "Gitee Repositories"

    def __init__(
        self,
        repositories: list[str] | None = None,
        show_issues: bool = True,
        show_prs: bool = True,
        include_releases: bool = True,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.repositories = list(repositories or [])
        self.show_issues = show_issues
        self.show_prs = show_prs
        self.include_releases = include_releases

    def cache_key(self) -> str:
        return f"{self.widget_type}:{self.name}:{','.join(self.repositories)}"

    def validate(self) -> None:
        super().validate()
        if not self.repositories:
            raise WidgetConfigError("gitee-repos: at least one repository is required")
        for repo in self.repositories:
            if len(repo.split("/")) != 2:
                raise WidgetConfigError(f"gitee-repos: expected owner/repo, got {repo!r}")

    def extra(self) -> dict[str, Any]:
        return {"show_issues": self.show_issues, "show_prs": self.show_prs}

    async def fetch(
        self, manager: "ServiceManager", timeout: float | None = None
    ) -> list[GiteeRepo]:
        repos: list[GiteeRepo] = []
        for repo in self.repositories:
            try:
                repos.append(await self._fetch_repository(manager, repo, timeout))
            except Exception as e:
                logger.warning(f"Skipping gitee repository {repo}: {e}")
        return repos[: self.limit]

    async def _fetch_repository(
        self, manager: "ServiceManager", repo: str, timeout: float | None
    ) -> GiteeRepo:
        data = await self.request_json(
            manager, APIRequest(path=f"/repos/{repo}", timeout=10.0), timeout
        )
        updated_at = data.get("updated_at")
        result = GiteeRepo(
            name=data.get("name", repo.split("/")[-1]),
            full_name=data.get("full_name", repo),
            description=data.get("description") or "",
            url=data.get("html_url", ""),
            language=data.get("language") or "",
            stars=data.get("stargazers_count", 0),
            forks=data.get("forks_count", 0),
            issues=data.get("open_issues_count", 0),
            last_commit=datetime.fromisoformat(updated_at) if updated_at else None,
        )

        if self.include_releases:
            try:
                release = await self.request_json(
                    manager,
                    APIRequest(path=f"/repos/{repo}/releases/latest", timeout=5.0),
                    timeout,
                )
            except ServiceError as e:
                logger.debug(f"No release info for {repo}: {e}")
            else:
                if isinstance(release, dict) and release.get("tag_name"):
                    result.latest_release = release["tag_name"]
                    result.release_url = release.get("html_url")
        return result
