"""Match merged changes to the deployment that first shipped them.

Matching is two-staged:

1. Exact: the earliest deployment at or after the merge whose commit is the
   change's head or merge commit.
2. Approximate: when no deployment carries either commit, the earliest
   deployment at or after the merge ("next release after merge").

An approximate match can misattribute lead time when several changes land
before the next deployment. The stage used is reported with the deployment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .models import (
    MATCH_APPROXIMATE,
    MATCH_EXACT,
    MATCH_NONE,
    ChangeEvent,
    DeploymentEvent,
    RepositoryKey,
)
from .store import LeadTimeStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeploymentMatch:
    """A resolved deployment and how confidently it belongs to the change."""

    deployment: Optional[DeploymentEvent]
    confidence: str = MATCH_NONE


class DeploymentMatcher:
    """Finds the first deployment containing a change, backed by the event store."""

    def __init__(self, store: LeadTimeStore) -> None:
        self._store = store

    def resolve(self, repository: RepositoryKey, change: ChangeEvent) -> DeploymentMatch:
        """Resolve the deployment for ``change`` and report the matching stage used.

        Changes without a merge timestamp never match.
        """
        if change.merged_at is None:
            return DeploymentMatch(deployment=None)

        exact = self._store.query_deployments(
            repository,
            since=change.merged_at,
            commit_shas=[change.head_commit, change.merge_commit],
        )
        if exact:
            return DeploymentMatch(deployment=exact[0], confidence=MATCH_EXACT)

        following = self._store.query_deployments(repository, since=change.merged_at)
        if following:
            logger.debug(
                "No deployment carries the change's commits; using next deployment after merge",
                extra={
                    "repository": str(repository),
                    "change_number": change.change_number,
                    "deployment_id": following[0].deployment_id,
                },
            )
            return DeploymentMatch(deployment=following[0], confidence=MATCH_APPROXIMATE)

        return DeploymentMatch(deployment=None)

    def match(self, repository: RepositoryKey, change: ChangeEvent) -> Optional[DeploymentEvent]:
        """Return the deployment that first shipped ``change``, or ``None``."""
        return self.resolve(repository, change).deployment
