"""
Resumable review of proposed clusters.

``review_clusters`` is a generator: it yields one ``ReviewPrompt`` per
cluster and expects the caller to ``send()`` back a ``ClusterDecision``.
When the clusters run out it returns a ``ReviewOutcome`` (delivered as
``StopIteration.value``). ``drive_review`` wraps that protocol for callers
that already have an async decision function.

Clusters whose items were all rejected before are never yielded.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Collection, Generator, List, Sequence

from trailbook.trips.clustering import TripCluster
from trailbook.trips.items import ItemKey


class ClusterDecision(str, Enum):
    ACCEPT = "accept"
    SKIP = "skip"
    REJECT = "reject"


@dataclass(frozen=True)
class ReviewPrompt:
    index: int  # 1-based position among presented clusters
    total: int
    cluster: TripCluster


@dataclass
class ReviewOutcome:
    accepted: List[TripCluster] = field(default_factory=list)
    rejected: List[TripCluster] = field(default_factory=list)
    skipped: List[TripCluster] = field(default_factory=list)


def pending_clusters(
    clusters: Sequence[TripCluster],
    rejected_keys: Collection[ItemKey],
) -> List[TripCluster]:
    return [c for c in clusters if not all(k in rejected_keys for k in c.keys)]


def review_clusters(
    clusters: Sequence[TripCluster],
    rejected_keys: Collection[ItemKey] = (),
) -> Generator[ReviewPrompt, ClusterDecision, ReviewOutcome]:
    pending = pending_clusters(clusters, rejected_keys)
    outcome = ReviewOutcome()
    for index, cluster in enumerate(pending, start=1):
        decision = yield ReviewPrompt(index=index, total=len(pending), cluster=cluster)
        decision = ClusterDecision(decision) if decision is not None else ClusterDecision.SKIP
        if decision is ClusterDecision.ACCEPT:
            outcome.accepted.append(cluster)
        elif decision is ClusterDecision.REJECT:
            outcome.rejected.append(cluster)
        else:
            outcome.skipped.append(cluster)
    return outcome


async def drive_review(
    clusters: Sequence[TripCluster],
    rejected_keys: Collection[ItemKey],
    decide: Callable[[ReviewPrompt], Awaitable[ClusterDecision]],
) -> ReviewOutcome:
    """Run the review generator to completion, awaiting ``decide`` for each prompt."""
    workflow = review_clusters(clusters, rejected_keys)
    try:
        prompt = next(workflow)
        while True:
            decision = await decide(prompt)
            prompt = workflow.send(decision)
    except StopIteration as done:
        return done.value
