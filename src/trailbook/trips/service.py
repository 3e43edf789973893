"""
TripService — trip membership, auto-trip matching, trip CRUD and merging.

Interactive paths go through a prompter with the async interface

    choose(title, message, options: [(key, label), ...]) -> Optional[key]
    confirm(title, message) -> bool
    notify(message) -> None

(see trailbook.bot.prompter.TelegramPrompter). Without a prompter every
question is answered "no" and notifications only go to the log.

Activities and spots are persisted before any of this runs; a failure here
raises TripUpdateError and never touches the underlying records.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from trailbook.errors import InvalidInputError, TripUpdateError
from trailbook.models.trip import Trip
from trailbook.trips.clustering import format_day
from trailbook.trips.dates import anchor, expand_range, recompute_range
from trailbook.trips.items import TrackedItem, TripSnapshot
from trailbook.trips.matching import MatchRules, find_candidate_trips, is_near_home
from trailbook.trips.merge import items_to_copy, suggested_merges

logger = logging.getLogger(__name__)

NO_TRIP = "none"


@contextmanager
def _trip_update(action: str):
    """Turn database errors raised inside the block into TripUpdateError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Failed to %s: %s", action, exc)
        raise TripUpdateError() from exc


class TripService:
    def __init__(
        self,
        store,
        prompter=None,
        *,
        user_id: str,
        rules: MatchRules = MatchRules(),
        merge_radius_km: float = 100.0,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.prompter = prompter
        self.user_id = user_id
        self.rules = rules
        self.merge_radius_km = merge_radius_km
        self._clock = clock

    @classmethod
    def from_settings(cls, store, prompter, settings) -> "TripService":
        return cls(
            store,
            prompter,
            user_id=settings.user_id,
            rules=MatchRules.from_settings(settings),
            merge_radius_km=settings.merge_radius_km,
        )

    # ─── Trip CRUD ────────────────────────────────────────────────────────────

    def create_trip(
        self,
        name: str,
        start_date: datetime,
        end_date: datetime,
        *,
        tagged: Sequence[str] = (),
        auto_generated: bool = False,
        dates_locked: bool = False,
    ) -> Trip:
        if not name or not name.strip():
            raise InvalidInputError("Trip name is required")
        start, end = anchor(start_date), anchor(end_date)
        if start > end:
            raise InvalidInputError("Trip start date must not be after its end date")
        trip = Trip(
            name=name.strip(),
            start_date=start,
            end_date=end,
            created_by=self.user_id,
            auto_generated=auto_generated,
            dates_locked=dates_locked,
        )
        with _trip_update("create trip"):
            return self.store.create_trip(trip, tagged=tagged)

    def update_trip(self, trip_id: int, **changes) -> Trip:
        current = self._require_trip(trip_id)
        for key in ("start_date", "end_date"):
            if changes.get(key) is not None:
                changes[key] = anchor(changes[key])
        start = changes.get("start_date", current.start_date)
        end = changes.get("end_date", current.end_date)
        if start > end:
            raise InvalidInputError("Trip start date must not be after its end date")
        with _trip_update("update trip"):
            return self.store.update_trip(trip_id, **changes)

    def delete_trip(self, trip_id: int) -> bool:
        with _trip_update("delete trip"):
            return self.store.delete_trip(trip_id)

    def tag_user(self, trip_id: int, user_id: str) -> bool:
        self._require_trip(trip_id)
        with _trip_update("tag user"):
            return self.store.tag_user(trip_id, user_id)

    def untag_user(self, trip_id: int, user_id: str) -> bool:
        with _trip_update("untag user"):
            return self.store.untag_user(trip_id, user_id)

    def my_trips(self) -> List[TripSnapshot]:
        return [s for s in self.store.list_trip_snapshots(self.user_id)
                if s.trip.created_by == self.user_id]

    def shared_trips(self) -> List[TripSnapshot]:
        return [s for s in self.store.list_trip_snapshots(self.user_id)
                if s.trip.created_by != self.user_id]

    # ─── Membership ───────────────────────────────────────────────────────────

    async def add_to_trip(self, trip_id: int, item: TrackedItem) -> bool:
        """
        Add an item to a trip and, unless dates are locked, widen the trip
        range to include the item's date.

        Returns False (after telling the user) when the trip already holds it.
        """
        trip = self._require_trip(trip_id)
        with _trip_update("add item"):
            added = self.store.add_item_if_absent(
                trip_id,
                item.item_type.value,
                item.item_id,
                item.payload.model_dump(mode="json"),
                added_by=self.user_id,
            )
            if added is None:
                await self._notify(f"{item.name} is already added to {trip.name}.")
                return False
            if not trip.dates_locked:
                start, end, changed = expand_range(trip.start_date, trip.end_date, item.date)
                if changed:
                    self.store.update_trip(trip_id, start_date=start, end_date=end)
                    logger.info("Trip %s range now %s..%s", trip_id, start.date(), end.date())
        return True

    async def remove_from_trip(self, trip_id: int, item_type: str, item_id: int) -> bool:
        """Remove an item; unless dates are locked, shrink the range to the remaining items."""
        trip = self._require_trip(trip_id)
        with _trip_update("remove item"):
            removed = self.store.remove_item(trip_id, item_type, item_id)
            if not removed or trip.dates_locked:
                return removed
            remaining = self.store.get_snapshot(trip_id)
            bounds = recompute_range(t.date for t in remaining.tracked)
            if bounds is not None:
                self.store.update_trip(trip_id, start_date=bounds[0], end_date=bounds[1])
        return removed

    # ─── Auto-trip matching ───────────────────────────────────────────────────

    async def check_for_auto_trip(self, item: TrackedItem) -> Optional[Trip]:
        """
        Find the trip an item belongs in, or offer to start one.

        Returns the first matching candidate trip (the item is not added), a
        newly created empty trip if the user confirmed one, or None.
        """
        if self.store.find_trip_for_item(item.item_type.value, item.item_id) is not None:
            return None
        if self._is_near_home(item):
            logger.debug("%s %s is near home; not a trip", *item.key)
            return None

        candidates = self._candidates(item)
        if candidates:
            return candidates[0].trip
        return await self._offer_new_trip(item)

    async def smart_add_to_trip(self, item: TrackedItem) -> Optional[Trip]:
        """check_for_auto_trip, then add the item to whatever trip it returned."""
        if item.key in self.store.rejected_keys(self.user_id):
            return None
        trip = await self.check_for_auto_trip(item)
        if trip is None:
            return None
        await self.add_to_trip(trip.id, item)
        return self.store.get_trip(trip.id)

    async def suggest_trip(self, item: TrackedItem) -> Optional[Trip]:
        """
        Interactive variant: the user picks among candidates or declines.

        Declining a candidate stores a rejection so the item is not offered again.
        """
        if item.key in self.store.rejected_keys(self.user_id):
            return None
        if self.store.find_trip_for_item(item.item_type.value, item.item_id) is not None:
            return None
        if self._is_near_home(item):
            return None

        candidates = self._candidates(item)
        if not candidates:
            trip = await self._offer_new_trip(item)
            if trip is not None:
                await self.add_to_trip(trip.id, item)
            return trip

        if len(candidates) > 1:
            options = [(str(c.trip.id), c.trip.name) for c in candidates[:2]]
            options.append((NO_TRIP, "Don't add to trips"))
            choice = await self._choose(
                "Add to trip?",
                f"{item.name} could belong to more than one trip.",
                options,
            )
            if choice is None:
                return None
            if choice == NO_TRIP:
                self._reject(item)
                return None
            chosen = next(c.trip for c in candidates if str(c.trip.id) == choice)
        else:
            chosen = candidates[0].trip
            ok = await self._confirm("Add to trip?", f"Add {item.name} to {chosen.name}?")
            if not ok:
                self._reject(item, trip_id=chosen.id)
                return None

        await self.add_to_trip(chosen.id, item)
        return self.store.get_trip(chosen.id)

    async def force_add_to_trip(self, trip_id: int, item: TrackedItem) -> bool:
        """Add regardless of earlier rejections, clearing them for this item."""
        self.store.clear_rejections(self.user_id, item_ids=[item.item_id], item_type=item.item_type.value)
        return await self.add_to_trip(trip_id, item)

    def clear_rejections(self, item_ids: Optional[Sequence[int]] = None, item_type: Optional[str] = None) -> int:
        cleared = self.store.clear_rejections(self.user_id, item_ids=item_ids, item_type=item_type)
        logger.info("Cleared %d rejections for %s", cleared, self.user_id)
        return cleared

    # ─── Merging ──────────────────────────────────────────────────────────────

    def suggested_merges(self) -> List[Tuple[TripSnapshot, TripSnapshot]]:
        return suggested_merges(
            self.store.list_trip_snapshots(self.user_id),
            self.user_id,
            self.merge_radius_km,
        )

    def merge_trips(self, source_id: int, destination_id: int) -> Trip:
        """Copy items missing from the destination and record the source in merged_from."""
        if source_id == destination_id:
            raise InvalidInputError("Cannot merge a trip into itself")
        source = self.store.get_snapshot(source_id)
        destination = self.store.get_snapshot(destination_id)
        if source is None or destination is None:
            raise InvalidInputError("Trip not found")

        with _trip_update("merge trips"):
            copied = 0
            for item in items_to_copy(source, destination):
                if self.store.add_item_if_absent(
                    destination_id, item.item_type, item.item_id, item.data, added_by=self.user_id
                ) is not None:
                    copied += 1

            changes = {"merged_from": list(destination.trip.merged_from or []) + [source_id]}
            if not destination.trip.dates_locked:
                merged = self.store.get_snapshot(destination_id)
                bounds = recompute_range(
                    [destination.trip.start_date, destination.trip.end_date]
                    + [t.date for t in merged.tracked]
                )
                changes["start_date"], changes["end_date"] = bounds
            trip = self.store.update_trip(destination_id, **changes)

        logger.info("Merged trip %s into %s (%d items copied)", source_id, destination_id, copied)
        return trip

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _candidates(self, item: TrackedItem) -> List[TripSnapshot]:
        return find_candidate_trips(
            item, self.store.list_trip_snapshots(self.user_id), self._clock(), self.rules
        )

    def _is_near_home(self, item: TrackedItem) -> bool:
        return is_near_home(
            item.location,
            self.store.get_profile(self.user_id),
            self.rules.default_home_radius_km,
        )

    async def _offer_new_trip(self, item: TrackedItem) -> Optional[Trip]:
        name = f"Trip on {format_day(item.date)}"
        ok = await self._confirm("Create a trip?", f"{item.name} is not part of any trip. Start “{name}”?")
        if not ok:
            return None
        return self.create_trip(name, item.date, item.date, auto_generated=True)

    def _reject(self, item: TrackedItem, trip_id: Optional[int] = None) -> None:
        self.store.add_rejection(self.user_id, item.item_type.value, item.item_id, trip_id=trip_id)

    def _require_trip(self, trip_id: int) -> Trip:
        trip = self.store.get_trip(trip_id)
        if trip is None:
            raise InvalidInputError(f"Trip {trip_id} not found")
        return trip

    async def _confirm(self, title: str, message: str) -> bool:
        if self.prompter is None:
            return False
        return bool(await self.prompter.confirm(title, message))

    async def _choose(self, title: str, message: str, options) -> Optional[str]:
        if self.prompter is None:
            return None
        return await self.prompter.choose(title, message, options)

    async def _notify(self, message: str) -> None:
        logger.info(message)
        if self.prompter is not None:
            await self.prompter.notify(message)

