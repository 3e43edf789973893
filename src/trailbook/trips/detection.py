"""
TripDetectionService — batch discovery of unorganized trips.

Flow for one run:
  1. Load the user's activities and spots from the lookback window
  2. Drop items already in a trip or individually rejected
  3. Cluster the rest (trailbook.trips.clustering)
  4. Ask about each cluster in turn: create / skip / don't ask again
     ("don't ask again" writes a rejection per item right away)
  5. Create a Trip with its items for every accepted cluster, leaving out
     items that joined another trip while the questions were open

A failure in one cluster (rejection write or trip creation) is reported and
the run continues with the next one.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from trailbook.errors import DetectionError, user_message
from trailbook.models.trip import Trip
from trailbook.trips.clustering import ClusterRules, TripCluster, build_clusters
from trailbook.trips.dates import anchor
from trailbook.trips.items import TrackedItem, track_activity, track_spot
from trailbook.trips.review import ClusterDecision, ReviewPrompt, drive_review

logger = logging.getLogger(__name__)

DECISION_OPTIONS = [
    (ClusterDecision.ACCEPT.value, "Create trip"),
    (ClusterDecision.SKIP.value, "Skip"),
    (ClusterDecision.REJECT.value, "Don't ask again"),
]


@dataclass
class DetectionReport:
    proposed: int = 0
    created: List[Trip] = field(default_factory=list)
    rejected: int = 0
    skipped: int = 0
    failed: int = 0


def describe_cluster(cluster: TripCluster) -> str:
    counts = cluster.counts
    parts = []
    if counts["activity"]:
        parts.append(f"{counts['activity']} activit{'y' if counts['activity'] == 1 else 'ies'}")
    if counts["spot"]:
        parts.append(f"{counts['spot']} place{'' if counts['spot'] == 1 else 's'}")
    text = f"{cluster.suggested_name}\n{' and '.join(parts)} over {cluster.span_days} day(s)"
    if cluster.total_distance_m > 0:
        text += f", {cluster.total_distance_m / 1000:.1f} km"
    return text


class TripDetectionService:
    def __init__(
        self,
        store,
        prompter=None,
        *,
        user_id: str,
        rules: ClusterRules = ClusterRules(),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.prompter = prompter
        self.user_id = user_id
        self.rules = rules
        self._clock = clock
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, store, prompter, settings) -> "TripDetectionService":
        return cls(store, prompter, user_id=settings.user_id, rules=ClusterRules.from_settings(settings))

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def unassigned_items(self, now: Optional[datetime] = None) -> List[TrackedItem]:
        now = now or self._clock()
        since = now - timedelta(days=self.rules.lookback_days)
        excluded = self.store.assigned_keys() | self.store.rejected_keys(self.user_id)
        items = [track_activity(a) for a in self.store.list_activities(self.user_id, since=since)]
        items += [track_spot(s) for s in self.store.list_spots(self.user_id, since=since)]
        return [i for i in items if i.key not in excluded]

    def discover_clusters(self, now: Optional[datetime] = None) -> List[TripCluster]:
        """Clusters worth proposing, without asking anything. Raises DetectionError."""
        now = now or self._clock()
        try:
            items = self.unassigned_items(now)
        except SQLAlchemyError as exc:
            logger.error("Loading items for detection failed: %s", exc)
            raise DetectionError() from exc
        return build_clusters(items, now, self.rules)

    async def run_detection(self) -> DetectionReport:
        """Interactive detection run. A call made while another run is active returns an empty report."""
        if self._lock.locked():
            logger.info("Detection already running for %s", self.user_id)
            return DetectionReport()
        async with self._lock:
            return await self._run()

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _run(self) -> DetectionReport:
        report = DetectionReport()
        try:
            clusters = self.discover_clusters()
            rejected_keys = self.store.rejected_keys(self.user_id)
        except (DetectionError, SQLAlchemyError) as exc:
            await self._notify(user_message(exc))
            return report

        report.proposed = len(clusters)
        if not clusters:
            await self._notify("No new trips found.")
            return report

        failed_rejections: List[TripCluster] = []

        async def decide(prompt: ReviewPrompt) -> ClusterDecision:
            decision = await self._ask(prompt)
            if decision is ClusterDecision.REJECT and not self._reject_cluster(prompt.cluster):
                failed_rejections.append(prompt.cluster)
                await self._notify(user_message(DetectionError()))
            return decision

        outcome = await drive_review(clusters, rejected_keys, decide)
        report.skipped = len(outcome.skipped)
        report.rejected = len(outcome.rejected) - len(failed_rejections)
        report.failed = len(failed_rejections)

        for cluster in outcome.accepted:
            try:
                trip = self._materialize(cluster)
            except SQLAlchemyError as exc:
                logger.exception("Creating trip for %s failed", cluster.suggested_name)
                report.failed += 1
                await self._notify(f"{cluster.suggested_name}: {user_message(exc)}")
                continue
            if trip is None:
                report.skipped += 1
                await self._notify(
                    f"{cluster.suggested_name}: its items were added to other trips meanwhile, skipped."
                )
                continue
            report.created.append(trip)

        if report.created:
            n = len(report.created)
            await self._notify(f"Created {n} trip{'' if n == 1 else 's'}.")
        logger.info(
            "Detection for %s: %d proposed, %d created, %d rejected, %d skipped, %d failed",
            self.user_id, report.proposed, len(report.created), report.rejected,
            report.skipped, report.failed,
        )
        return report

    async def _ask(self, prompt: ReviewPrompt) -> ClusterDecision:
        if self.prompter is None:
            return ClusterDecision.SKIP
        choice = await self.prompter.choose(
            f"Possible trip {prompt.index}/{prompt.total}",
            describe_cluster(prompt.cluster),
            DECISION_OPTIONS,
        )
        return ClusterDecision(choice) if choice else ClusterDecision.SKIP

    def _reject_cluster(self, cluster: TripCluster) -> bool:
        try:
            for item_type, item_id in cluster.keys:
                self.store.add_rejection(self.user_id, item_type, item_id)
        except SQLAlchemyError as exc:
            logger.error("Storing rejections for %s failed: %s", cluster.suggested_name, exc)
            return False
        return True

    def _materialize(self, cluster: TripCluster) -> Optional[Trip]:
        """
        Create the trip for an accepted cluster.

        Items assigned to another trip while the question was open are left
        out; returns None when fewer than ``rules.min_items`` remain.
        """
        assigned = self.store.assigned_keys()
        remaining = [i for i in cluster.items if i.key not in assigned]
        if len(remaining) < self.rules.min_items:
            logger.info("%s no longer has enough unassigned items", cluster.suggested_name)
            return None
        cluster = TripCluster(items=remaining)
        trip = Trip(
            name=cluster.suggested_name,
            start_date=anchor(cluster.start_date),
            end_date=anchor(cluster.end_date),
            created_by=self.user_id,
            auto_generated=True,
        )
        items = [
            (i.item_type.value, i.item_id, i.payload.model_dump(mode="json"))
            for i in cluster.items
        ]
        return self.store.create_trip(trip, items=items)

    async def _notify(self, message: str) -> None:
        logger.info(message)
        if self.prompter is not None:
            await self.prompter.notify(message)
