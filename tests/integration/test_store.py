"""Integration tests for TripStore against in-memory SQLite."""
from datetime import datetime

import pytest
from sqlmodel import Session, select

from trailbook.models.trip import Trip, TripItem, TripTag
from trailbook.trips.items import track_activity

JUNE_1 = datetime(2024, 6, 1, 9)
JUNE_2 = datetime(2024, 6, 2, 9)


def new_trip(name="Alps", created_by="local", **kw):
    return Trip(
        name=name,
        start_date=kw.pop("start_date", datetime(2024, 6, 1, 12)),
        end_date=kw.pop("end_date", datetime(2024, 6, 2, 12)),
        created_by=created_by,
        **kw,
    )


def item_row(activity):
    tracked = track_activity(activity)
    return (tracked.item_type.value, tracked.item_id, tracked.payload.model_dump(mode="json"))


class TestActivities:
    def test_list_newest_first(self, store, add_activity):
        add_activity(JUNE_1)
        add_activity(JUNE_2)
        dates = [a.activity_date for a in store.list_activities("local")]
        assert dates == [JUNE_2, JUNE_1]

    def test_list_since_and_limit(self, store, add_activity):
        add_activity(datetime(2024, 5, 1))
        add_activity(JUNE_1)
        add_activity(JUNE_2)
        assert len(store.list_activities("local", since=datetime(2024, 5, 15))) == 2
        assert len(store.list_activities("local", limit=1)) == 1

    def test_list_filters_by_user(self, store, add_activity):
        add_activity(JUNE_1, user_id="someone-else")
        assert store.list_activities("local") == []

    def test_update_whitelisted_field(self, store, add_activity):
        activity = add_activity(JUNE_1)
        updated = store.update_activity(activity.id, name="Eiger trail", notes="windy")
        assert updated.name == "Eiger trail"
        assert store.get_activity(activity.id).notes == "windy"

    def test_update_rejects_unknown_field(self, store, add_activity):
        activity = add_activity(JUNE_1)
        with pytest.raises(ValueError):
            store.update_activity(activity.id, user_id="other")

    def test_update_missing_returns_none(self, store):
        assert store.update_activity(999, name="x") is None

    def test_delete(self, store, add_activity):
        activity = add_activity(JUNE_1)
        assert store.delete_activity(activity.id)
        assert store.get_activity(activity.id) is None
        assert not store.delete_activity(activity.id)


class TestSpots:
    def test_save_and_list(self, store, add_spot):
        add_spot(JUNE_1, name="Harder Kulm")
        spots = store.list_spots("local")
        assert [s.name for s in spots] == ["Harder Kulm"]

    def test_list_since(self, store, add_spot):
        add_spot(datetime(2024, 1, 1))
        add_spot(JUNE_1)
        assert len(store.list_spots("local", since=datetime(2024, 5, 1))) == 1

    def test_delete(self, store, add_spot):
        spot = add_spot(JUNE_1)
        assert store.delete_spot(spot.id)
        assert store.get_spot(spot.id) is None


class TestProfiles:
    def test_missing_profile(self, store):
        assert store.get_profile("local") is None

    def test_save_home_creates_then_updates(self, store):
        store.save_home("local", 46.9, 7.4)
        profile = store.save_home("local", 47.0, 7.5, radius_km=5.0)
        assert (profile.home_latitude, profile.home_longitude, profile.home_radius_km) == (47.0, 7.5, 5.0)


class TestTrips:
    def test_create_with_tags_and_items(self, store, add_activity):
        activity = add_activity(JUNE_1)
        trip = store.create_trip(new_trip(), tagged=["ana", "ana", "ben"], items=[item_row(activity)])
        snapshot = store.get_snapshot(trip.id)
        assert sorted(snapshot.tagged) == ["ana", "ben"]
        assert [(i.item_type, i.item_id) for i in snapshot.items] == [("activity", activity.id)]
        assert snapshot.items[0].added_by == "local"

    def test_create_dedupes_items(self, store, add_activity):
        activity = add_activity(JUNE_1)
        trip = store.create_trip(new_trip(), items=[item_row(activity), item_row(activity)])
        assert len(store.list_items(trip.id)) == 1

    def test_snapshot_of_missing_trip(self, store):
        assert store.get_snapshot(42) is None

    def test_list_snapshots_created_or_tagged(self, store):
        mine = store.create_trip(new_trip("Mine"))
        shared = store.create_trip(new_trip("Shared", created_by="ana"), tagged=["local"])
        store.create_trip(new_trip("Unrelated", created_by="ana"))
        names = {s.trip.name for s in store.list_trip_snapshots("local")}
        assert names == {mine.name, shared.name}

    def test_list_snapshots_newest_first(self, store):
        store.create_trip(new_trip("Older", created_at=datetime(2024, 1, 1)))
        store.create_trip(new_trip("Newer", created_at=datetime(2024, 2, 1)))
        assert [s.trip.name for s in store.list_trip_snapshots("local")] == ["Newer", "Older"]

    def test_update_trip(self, store):
        trip = store.create_trip(new_trip())
        updated = store.update_trip(trip.id, name="Bernese Oberland", dates_locked=True)
        assert updated.name == "Bernese Oberland"
        assert updated.dates_locked is True

    def test_update_trip_rejects_unknown_field(self, store):
        trip = store.create_trip(new_trip())
        with pytest.raises(ValueError):
            store.update_trip(trip.id, created_by="ana")

    def test_delete_cascades(self, store, engine, add_activity):
        activity = add_activity(JUNE_1)
        trip = store.create_trip(new_trip(), tagged=["ana"], items=[item_row(activity)])
        assert store.delete_trip(trip.id)

        with Session(engine) as s:
            assert s.exec(select(TripItem)).all() == []
            assert s.exec(select(TripTag)).all() == []
        assert store.get_trip(trip.id) is None
        assert not store.delete_trip(trip.id)


class TestTripItems:
    def test_add_item_if_absent(self, store, add_activity):
        trip = store.create_trip(new_trip())
        activity = add_activity(JUNE_1)
        _, item_id, data = item_row(activity)

        first = store.add_item_if_absent(trip.id, "activity", item_id, data, added_by="local")
        again = store.add_item_if_absent(trip.id, "activity", item_id, data, added_by="local")

        assert first is not None and first.id is not None
        assert again is None
        assert len(store.list_items(trip.id)) == 1

    def test_same_item_allowed_in_different_trips(self, store, add_activity):
        a = store.create_trip(new_trip("A"))
        b = store.create_trip(new_trip("B"))
        _, item_id, data = item_row(add_activity(JUNE_1))
        assert store.add_item_if_absent(a.id, "activity", item_id, data) is not None
        assert store.add_item_if_absent(b.id, "activity", item_id, data) is not None

    def test_remove_item(self, store, add_activity):
        activity = add_activity(JUNE_1)
        trip = store.create_trip(new_trip(), items=[item_row(activity)])
        assert store.remove_item(trip.id, "activity", activity.id)
        assert not store.remove_item(trip.id, "activity", activity.id)
        assert store.list_items(trip.id) == []

    def test_find_trip_for_item(self, store, add_activity):
        activity = add_activity(JUNE_1)
        loose = add_activity(JUNE_2)
        trip = store.create_trip(new_trip(), items=[item_row(activity)])
        assert store.find_trip_for_item("activity", activity.id).id == trip.id
        assert store.find_trip_for_item("activity", loose.id) is None

    def test_assigned_keys(self, store, add_activity):
        activity = add_activity(JUNE_1)
        add_activity(JUNE_2)
        store.create_trip(new_trip(), items=[item_row(activity)])
        assert store.assigned_keys() == {("activity", activity.id)}

    def test_get_trip_item(self, store, add_activity):
        activity = add_activity(JUNE_1)
        trip = store.create_trip(new_trip(), items=[item_row(activity)])
        row = store.list_items(trip.id)[0]
        assert store.get_trip_item(row.id).item_id == activity.id


class TestTags:
    def test_tag_once(self, store):
        trip = store.create_trip(new_trip())
        assert store.tag_user(trip.id, "ana")
        assert not store.tag_user(trip.id, "ana")
        assert store.get_snapshot(trip.id).tagged == ["ana"]

    def test_untag(self, store):
        trip = store.create_trip(new_trip(), tagged=["ana"])
        assert store.untag_user(trip.id, "ana")
        assert not store.untag_user(trip.id, "ana")


class TestRejections:
    def test_add_is_idempotent(self, store):
        store.add_rejection("local", "activity", 7)
        store.add_rejection("local", "activity", 7, trip_id=3)
        assert store.rejected_keys("local") == {("activity", 7)}

    def test_rejections_are_per_user(self, store):
        store.add_rejection("ana", "spot", 1)
        assert store.rejected_keys("local") == set()

    def test_same_id_different_type(self, store):
        store.add_rejection("local", "activity", 1)
        store.add_rejection("local", "spot", 1)
        assert store.rejected_keys("local") == {("activity", 1), ("spot", 1)}

    def test_clear_all(self, store):
        store.add_rejection("local", "activity", 1)
        store.add_rejection("local", "spot", 2)
        store.add_rejection("ana", "spot", 2)
        assert store.clear_rejections("local") == 2
        assert store.rejected_keys("local") == set()
        assert store.rejected_keys("ana") == {("spot", 2)}

    def test_clear_by_ids(self, store):
        store.add_rejection("local", "activity", 1)
        store.add_rejection("local", "activity", 2)
        assert store.clear_rejections("local", item_ids=[1]) == 1
        assert store.rejected_keys("local") == {("activity", 2)}

    def test_clear_by_type(self, store):
        store.add_rejection("local", "activity", 1)
        store.add_rejection("local", "spot", 1)
        assert store.clear_rejections("local", item_ids=[1], item_type="spot") == 1
        assert store.rejected_keys("local") == {("activity", 1)}
