"""Domain models for change, deployment and lead time data.

These dataclasses model only the subset of platform payload fields that the
lead time computation and reporting need.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

DEPLOYMENT_TYPES = ("release", "tag", "workflow", "pipeline")

MATCH_EXACT = "exact"
MATCH_APPROXIMATE = "approximate"
MATCH_NONE = "none"


@dataclass(frozen=True, slots=True)
class RepositoryKey:
    """Identifies a repository by hosting platform, owner and name."""

    platform: str
    owner: str
    name: str

    def __str__(self) -> str:
        return f"{self.platform}:{self.owner}/{self.name}"


@dataclass(frozen=True, slots=True)
class RepoConfig:
    """A tracked repository and how its deployments are detected."""

    key: RepositoryKey
    deployment_method: str = "auto"
    branch: str = "main"


@dataclass(slots=True)
class ChangeEvent:
    """Represents a pull request or merge request observed on a platform."""

    repository: RepositoryKey
    change_number: int
    change_id: str
    created_at: Optional[datetime]
    merged_at: Optional[datetime]
    first_commit_at: Optional[datetime] = None
    last_commit_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    head_commit: Optional[str] = None
    merge_commit: Optional[str] = None
    is_merged: bool = False
    title: Optional[str] = None
    author: Optional[str] = None
    base_branch: Optional[str] = None
    head_branch: Optional[str] = None
    commits_count: int = 0


@dataclass(slots=True)
class DeploymentEvent:
    """Represents a release, tag, workflow run or pipeline treated as a deployment."""

    repository: RepositoryKey
    deployment_id: str
    deployed_at: datetime
    commit_sha: Optional[str]
    deployment_type: str
    environment: Optional[str] = None
    tag_name: Optional[str] = None
    branch: Optional[str] = None
    status: Optional[str] = None


@dataclass(slots=True)
class LeadTimeMetric:
    """Phase durations, in hours, for one change from first commit to deployment."""

    repository: RepositoryKey
    change_id: str
    change_number: int
    coding_time_hours: float
    review_time_hours: float
    deployment_time_hours: float
    total_lead_time_hours: float
    commit_to_merge_hours: float
    merge_to_deploy_hours: float
    first_commit_at: datetime
    created_at: Optional[datetime]
    merged_at: datetime
    deployed_at: datetime
    deployment_id: Optional[str] = None
    match_confidence: str = MATCH_NONE


@dataclass(slots=True)
class Percentiles:
    """Nearest-rank percentiles of total lead time in hours."""

    p50: Optional[float] = None
    p75: Optional[float] = None
    p90: Optional[float] = None
    p95: Optional[float] = None


@dataclass(slots=True)
class RepoSummary:
    """Aggregated lead time statistics for one repository."""

    repository: RepositoryKey
    change_count: int
    avg_lead_time_hours: float
    min_lead_time_hours: float
    max_lead_time_hours: float
    avg_commit_to_merge_hours: float
    avg_merge_to_deploy_hours: float
    under_24h_count: int
    under_1week_count: int
    exact_match_count: int = 0
    percentiles: Percentiles = field(default_factory=Percentiles)

    @property
    def avg_lead_time_days(self) -> float:
        return self.avg_lead_time_hours / 24


class PerformanceCategory(str, Enum):
    """DORA lead time performance bands, best first."""

    ELITE = "Elite"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def description(self) -> str:
        return _CATEGORY_DESCRIPTIONS[self]


_CATEGORY_DESCRIPTIONS = {
    PerformanceCategory.ELITE: "Less than 1 day",
    PerformanceCategory.HIGH: "1-7 days",
    PerformanceCategory.MEDIUM: "1-4 weeks",
    PerformanceCategory.LOW: "More than 1 month",
}


@dataclass(slots=True)
class LeadTimeInsights:
    """Performance classification and recommendations for a repository.

    ``category`` is ``None`` when there is no lead time data; ``message`` then
    explains why and the recommendations cover getting data flowing.
    """

    repository: Optional[RepositoryKey]
    category: Optional[PerformanceCategory]
    avg_lead_time_days: Optional[float]
    percentiles: Percentiles
    recommendations: List[str]
    message: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return self.category is not None
