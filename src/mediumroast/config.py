"""Configuration for Mediumroast clients and connectors."""

from __future__ import annotations

from dataclasses import dataclass, field


def _default_object_files() -> dict[str, str]:
    return {
        "Studies": "studies.json",
        "Companies": "companies.json",
        "Interactions": "interactions.json",
    }


@dataclass
class MediumroastConfig:
    """Configuration passed explicitly to connectors and entity clients."""

    process_name: str = "mediumroast"
    lock_file_name: str = "mediumroast.lock"
    lock_lease_ms: int = 30000
    work_dir: str | None = None
    cache_ttl_s: float = 300.0
    request_timeout_s: float = 10.0
    github_org: str | None = None
    github_repo: str | None = None
    github_branch: str = "main"
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    s3_region: str | None = None
    s3_endpoint_url: str | None = None
    actions_bundle_url: str | None = None
    actions_bundle_path: str | None = None
    object_files: dict[str, str] = field(default_factory=_default_object_files)

    def object_file(self, container: str) -> str:
        return self.object_files.get(container, f"{container.lower()}.json")

    def repo_name(self) -> str:
        if self.github_repo:
            return self.github_repo
        return f"{self.github_org}_discovery"
