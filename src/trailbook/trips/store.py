"""
TripStore: the persistence gateway for activities, spots, trips and rejections.

Every method opens its own Session and returns detached rows refreshed after
the write, so callers always see what the database holds rather than an
in-memory copy.

Uniqueness that the engine relies on:
  - TripItem (trip_id, item_type, item_id): add_item_if_absent is a no-op on repeat
  - TripItemRejection (user_id, item_id, item_type): add_rejection is idempotent
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from trailbook.models.activity import Activity
from trailbook.models.profile import UserProfile
from trailbook.models.spot import SavedSpot
from trailbook.models.trip import Trip, TripItem, TripItemRejection, TripTag
from trailbook.trips.items import ItemKey, TripSnapshot

logger = logging.getLogger(__name__)

NewItem = Tuple[str, int, Dict[str, Any]]  # (item_type, item_id, payload data)

_ACTIVITY_FIELDS = {
    "name", "activity_type", "activity_date", "start_time", "end_time",
    "duration_seconds", "distance_meters", "route", "average_speed_kmh",
    "max_speed_kmh", "notes", "photos",
}
_TRIP_FIELDS = {"name", "start_date", "end_date", "dates_locked", "cover_photo", "merged_from"}


class TripStore:
    def __init__(self, engine):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
        """
        self.engine = engine

    # ─── Activities ───────────────────────────────────────────────────────────

    def save_activity(self, activity: Activity) -> Activity:
        with Session(self.engine) as s:
            s.add(activity)
            s.commit()
            s.refresh(activity)
            return activity

    def get_activity(self, activity_id: int) -> Optional[Activity]:
        with Session(self.engine) as s:
            return s.get(Activity, activity_id)

    def list_activities(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Activity]:
        """Activities for a user, newest first, optionally only those dated >= since."""
        with Session(self.engine) as s:
            query = select(Activity).where(Activity.user_id == user_id)
            if since is not None:
                query = query.where(Activity.activity_date >= since)
            query = query.order_by(Activity.activity_date.desc(), Activity.id.desc())
            if limit is not None:
                query = query.limit(limit)
            return list(s.exec(query).all())

    def update_activity(self, activity_id: int, **changes) -> Optional[Activity]:
        unknown = set(changes) - _ACTIVITY_FIELDS
        if unknown:
            raise ValueError(f"Cannot update activity fields: {sorted(unknown)}")
        with Session(self.engine) as s:
            activity = s.get(Activity, activity_id)
            if activity is None:
                return None
            for k, v in changes.items():
                setattr(activity, k, v)
            s.add(activity)
            s.commit()
            s.refresh(activity)
            return activity

    def delete_activity(self, activity_id: int) -> bool:
        with Session(self.engine) as s:
            activity = s.get(Activity, activity_id)
            if activity is None:
                return False
            s.delete(activity)
            s.commit()
            return True

    # ─── Saved spots ──────────────────────────────────────────────────────────

    def save_spot(self, spot: SavedSpot) -> SavedSpot:
        with Session(self.engine) as s:
            s.add(spot)
            s.commit()
            s.refresh(spot)
            return spot

    def get_spot(self, spot_id: int) -> Optional[SavedSpot]:
        with Session(self.engine) as s:
            return s.get(SavedSpot, spot_id)

    def list_spots(self, user_id: str, since: Optional[datetime] = None) -> List[SavedSpot]:
        with Session(self.engine) as s:
            query = select(SavedSpot).where(SavedSpot.user_id == user_id)
            if since is not None:
                query = query.where(SavedSpot.location_date >= since)
            query = query.order_by(SavedSpot.location_date.desc(), SavedSpot.id.desc())
            return list(s.exec(query).all())

    def delete_spot(self, spot_id: int) -> bool:
        with Session(self.engine) as s:
            spot = s.get(SavedSpot, spot_id)
            if spot is None:
                return False
            s.delete(spot)
            s.commit()
            return True

    # ─── Profiles ─────────────────────────────────────────────────────────────

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with Session(self.engine) as s:
            return s.get(UserProfile, user_id)

    def save_home(
        self,
        user_id: str,
        latitude: Optional[float],
        longitude: Optional[float],
        radius_km: Optional[float] = None,
    ) -> UserProfile:
        with Session(self.engine) as s:
            profile = s.get(UserProfile, user_id) or UserProfile(user_id=user_id)
            profile.home_latitude = latitude
            profile.home_longitude = longitude
            profile.home_radius_km = radius_km
            s.add(profile)
            s.commit()
            s.refresh(profile)
            return profile

    # ─── Trips ────────────────────────────────────────────────────────────────

    def create_trip(
        self,
        trip: Trip,
        tagged: Iterable[str] = (),
        items: Iterable[NewItem] = (),
    ) -> Trip:
        """Insert a trip with its tags and initial items in one transaction."""
        with Session(self.engine) as s:
            s.add(trip)
            s.flush()
            for user_id in dict.fromkeys(tagged):
                s.add(TripTag(trip_id=trip.id, user_id=user_id))
            seen: Set[ItemKey] = set()
            for item_type, item_id, data in items:
                if (item_type, item_id) in seen:
                    continue
                seen.add((item_type, item_id))
                s.add(TripItem(
                    trip_id=trip.id,
                    item_type=item_type,
                    item_id=item_id,
                    data=data,
                    added_by=trip.created_by,
                ))
            s.commit()
            s.refresh(trip)
            return trip

    def get_trip(self, trip_id: int) -> Optional[Trip]:
        with Session(self.engine) as s:
            return s.get(Trip, trip_id)

    def get_snapshot(self, trip_id: int) -> Optional[TripSnapshot]:
        with Session(self.engine) as s:
            trip = s.get(Trip, trip_id)
            if trip is None:
                return None
            return self._snapshot(s, trip)

    def list_trip_snapshots(self, user_id: str) -> List[TripSnapshot]:
        """Trips the user created or is tagged on, newest first."""
        with Session(self.engine) as s:
            tagged_ids = select(TripTag.trip_id).where(TripTag.user_id == user_id)
            trips = s.exec(
                select(Trip)
                .where((Trip.created_by == user_id) | (Trip.id.in_(tagged_ids)))
                .order_by(Trip.created_at.desc(), Trip.id.desc())
            ).all()
            return [self._snapshot(s, t) for t in trips]

    def update_trip(self, trip_id: int, **changes) -> Optional[Trip]:
        unknown = set(changes) - _TRIP_FIELDS
        if unknown:
            raise ValueError(f"Cannot update trip fields: {sorted(unknown)}")
        with Session(self.engine) as s:
            trip = s.get(Trip, trip_id)
            if trip is None:
                return None
            for k, v in changes.items():
                setattr(trip, k, v)
            s.add(trip)
            s.commit()
            s.refresh(trip)
            return trip

    def delete_trip(self, trip_id: int) -> bool:
        """Delete a trip together with its items and tags."""
        with Session(self.engine) as s:
            trip = s.get(Trip, trip_id)
            if trip is None:
                return False
            for item in s.exec(select(TripItem).where(TripItem.trip_id == trip_id)).all():
                s.delete(item)
            for tag in s.exec(select(TripTag).where(TripTag.trip_id == trip_id)).all():
                s.delete(tag)
            s.flush()
            s.delete(trip)
            s.commit()
            return True

    # ─── Trip items ───────────────────────────────────────────────────────────

    def add_item_if_absent(
        self,
        trip_id: int,
        item_type: str,
        item_id: int,
        data: Dict[str, Any],
        added_by: Optional[str] = None,
    ) -> Optional[TripItem]:
        """Insert the item unless the trip already holds it. Returns None on repeat."""
        with Session(self.engine) as s:
            existing = s.exec(
                select(TripItem).where(
                    TripItem.trip_id == trip_id,
                    TripItem.item_type == item_type,
                    TripItem.item_id == item_id,
                )
            ).first()
            if existing:
                return None
            item = TripItem(
                trip_id=trip_id,
                item_type=item_type,
                item_id=item_id,
                data=data,
                added_by=added_by,
            )
            s.add(item)
            try:
                s.commit()
            except IntegrityError:
                # Inserted concurrently between the select and the commit
                s.rollback()
                return None
            s.refresh(item)
            return item

    def get_trip_item(self, trip_item_id: int) -> Optional[TripItem]:
        with Session(self.engine) as s:
            return s.get(TripItem, trip_item_id)

    def remove_item(self, trip_id: int, item_type: str, item_id: int) -> bool:
        with Session(self.engine) as s:
            item = s.exec(
                select(TripItem).where(
                    TripItem.trip_id == trip_id,
                    TripItem.item_type == item_type,
                    TripItem.item_id == item_id,
                )
            ).first()
            if item is None:
                return False
            s.delete(item)
            s.commit()
            return True

    def list_items(self, trip_id: int) -> List[TripItem]:
        with Session(self.engine) as s:
            return list(s.exec(
                select(TripItem).where(TripItem.trip_id == trip_id).order_by(TripItem.id)
            ).all())

    def find_trip_for_item(self, item_type: str, item_id: int) -> Optional[Trip]:
        with Session(self.engine) as s:
            item = s.exec(
                select(TripItem).where(
                    TripItem.item_type == item_type,
                    TripItem.item_id == item_id,
                )
            ).first()
            if item is None:
                return None
            return s.get(Trip, item.trip_id)

    def assigned_keys(self) -> Set[ItemKey]:
        """Every (item_type, item_id) currently inside some trip."""
        with Session(self.engine) as s:
            rows = s.exec(select(TripItem.item_type, TripItem.item_id)).all()
            return {(t, i) for t, i in rows}

    # ─── Tags ─────────────────────────────────────────────────────────────────

    def tag_user(self, trip_id: int, user_id: str) -> bool:
        with Session(self.engine) as s:
            s.add(TripTag(trip_id=trip_id, user_id=user_id))
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                return False
            return True

    def untag_user(self, trip_id: int, user_id: str) -> bool:
        with Session(self.engine) as s:
            tag = s.exec(
                select(TripTag).where(TripTag.trip_id == trip_id, TripTag.user_id == user_id)
            ).first()
            if tag is None:
                return False
            s.delete(tag)
            s.commit()
            return True

    # ─── Rejections ───────────────────────────────────────────────────────────

    def add_rejection(
        self,
        user_id: str,
        item_type: str,
        item_id: int,
        trip_id: Optional[int] = None,
    ) -> None:
        """Record that the user declined auto-grouping for this item. Repeats are no-ops."""
        with Session(self.engine) as s:
            s.add(TripItemRejection(
                user_id=user_id,
                item_type=item_type,
                item_id=item_id,
                trip_id=trip_id,
            ))
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                logger.debug("Rejection for %s %s already recorded", item_type, item_id)

    def rejected_keys(self, user_id: str) -> Set[ItemKey]:
        with Session(self.engine) as s:
            rows = s.exec(
                select(TripItemRejection.item_type, TripItemRejection.item_id)
                .where(TripItemRejection.user_id == user_id)
            ).all()
            return {(t, i) for t, i in rows}

    def clear_rejections(
        self,
        user_id: str,
        item_ids: Optional[Iterable[int]] = None,
        item_type: Optional[str] = None,
    ) -> int:
        """Delete the user's rejections, optionally narrowed by item ids and type."""
        with Session(self.engine) as s:
            query = select(TripItemRejection).where(TripItemRejection.user_id == user_id)
            if item_ids is not None:
                query = query.where(TripItemRejection.item_id.in_(list(item_ids)))
            if item_type is not None:
                query = query.where(TripItemRejection.item_type == item_type)
            rows = s.exec(query).all()
            for row in rows:
                s.delete(row)
            s.commit()
            return len(rows)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _snapshot(s: Session, trip: Trip) -> TripSnapshot:
        items = s.exec(
            select(TripItem).where(TripItem.trip_id == trip.id).order_by(TripItem.id)
        ).all()
        tags = s.exec(select(TripTag.user_id).where(TripTag.trip_id == trip.id)).all()
        return TripSnapshot(trip=trip, items=list(items), tagged=list(tags))
