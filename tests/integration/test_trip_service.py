"""Integration tests for TripService: membership, auto-trip matching and merging."""
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from trailbook.errors import InvalidInputError, TripUpdateError
from trailbook.models.trip import Trip
from trailbook.trips.items import track_activity, track_spot
from trailbook.trips.service import NO_TRIP, TripService

INTERLAKEN = (46.686, 7.863)
GRINDELWALD = (46.624, 8.041)     # ~15 km from Interlaken
MUNICH = (48.137, 11.575)

NOW = datetime(2024, 7, 12, 9)


def noon(day, month=7):
    return datetime(2024, month, day, 12)


def item_row(tracked):
    return (tracked.item_type.value, tracked.item_id, tracked.payload.model_dump(mode="json"))


@pytest.fixture(name="service")
def service_fixture(store, prompter):
    return TripService(store, prompter, user_id="local", clock=lambda: NOW)


@pytest.fixture(name="july_trip")
def july_trip_fixture(store, add_activity):
    """Trip spanning Jul 8..9 with one hike near Interlaken."""
    hike = track_activity(add_activity(datetime(2024, 7, 8, 10), INTERLAKEN))
    return store.create_trip(
        Trip(name="Oberland", start_date=noon(8), end_date=noon(9), created_by="local"),
        items=[item_row(hike)],
    )


class TestAutoTripMatching:
    @pytest.mark.asyncio
    async def test_nearby_activity_extends_trip(self, service, store, july_trip, add_activity):
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))

        trip = await service.check_for_auto_trip(item)
        assert trip.id == july_trip.id

        assert await service.add_to_trip(trip.id, item)
        updated = store.get_trip(trip.id)
        assert updated.start_date == noon(8)
        assert updated.end_date == noon(10)

    @pytest.mark.asyncio
    async def test_item_already_in_a_trip_is_not_matched(self, service, store, july_trip):
        snapshot = store.get_snapshot(july_trip.id)
        assert await service.check_for_auto_trip(snapshot.tracked[0]) is None

    @pytest.mark.asyncio
    async def test_near_home_is_never_a_trip(self, service, store, prompter, july_trip, add_activity):
        store.save_home("local", *GRINDELWALD)
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))
        assert await service.check_for_auto_trip(item) is None
        assert prompter.confirmations == []

    @pytest.mark.asyncio
    async def test_home_radius_from_profile(self, service, store, july_trip, add_activity):
        store.save_home("local", *INTERLAKEN, radius_km=20.0)
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))
        assert await service.check_for_auto_trip(item) is None

    @pytest.mark.asyncio
    async def test_offers_new_trip_when_nothing_matches(self, store, make_prompter, july_trip, add_activity):
        prompter = make_prompter(confirms=[True])
        service = TripService(store, prompter, user_id="local", clock=lambda: NOW)
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), MUNICH))

        trip = await service.check_for_auto_trip(item)

        assert trip.name == "Trip on Jul 10, 2024"
        assert trip.auto_generated is True
        assert (trip.start_date, trip.end_date) == (noon(10), noon(10))
        assert store.list_items(trip.id) == []
        assert len(prompter.confirmations) == 1

    @pytest.mark.asyncio
    async def test_declined_new_trip(self, service, store, july_trip, add_activity):
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), MUNICH))
        assert await service.check_for_auto_trip(item) is None
        assert len(store.list_trip_snapshots("local")) == 1

    @pytest.mark.asyncio
    async def test_without_prompter_nothing_is_created(self, store, july_trip, add_activity):
        service = TripService(store, None, user_id="local", clock=lambda: NOW)
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), MUNICH))
        assert await service.check_for_auto_trip(item) is None

    @pytest.mark.asyncio
    async def test_smart_add_adds_to_match(self, service, store, july_trip, add_activity):
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))
        trip = await service.smart_add_to_trip(item)
        assert trip.end_date == noon(10)
        assert store.find_trip_for_item("activity", item.item_id).id == july_trip.id

    @pytest.mark.asyncio
    async def test_smart_add_skips_rejected(self, service, store, july_trip, add_activity):
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))
        store.add_rejection("local", "activity", item.item_id)
        assert await service.smart_add_to_trip(item) is None
        assert store.find_trip_for_item("activity", item.item_id) is None


class TestMembership:
    @pytest.mark.asyncio
    async def test_earlier_item_moves_start(self, service, store, july_trip, add_spot):
        spot = track_spot(add_spot(datetime(2024, 7, 6, 18), GRINDELWALD))
        await service.add_to_trip(july_trip.id, spot)
        assert store.get_trip(july_trip.id).start_date == noon(6)

    @pytest.mark.asyncio
    async def test_locked_dates_unchanged(self, service, store, july_trip, add_activity):
        store.update_trip(july_trip.id, dates_locked=True)
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))
        assert await service.add_to_trip(july_trip.id, item)
        trip = store.get_trip(july_trip.id)
        assert (trip.start_date, trip.end_date) == (noon(8), noon(9))

    @pytest.mark.asyncio
    async def test_duplicate_add_notifies(self, service, store, prompter, july_trip, add_activity):
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))
        assert await service.add_to_trip(july_trip.id, item)
        assert not await service.add_to_trip(july_trip.id, item)
        assert len(store.list_items(july_trip.id)) == 2
        assert prompter.notifications == [f"{item.name} is already added to Oberland."]

    @pytest.mark.asyncio
    async def test_add_to_missing_trip(self, service, add_activity):
        item = track_activity(add_activity(datetime(2024, 7, 10, 15)))
        with pytest.raises(InvalidInputError):
            await service.add_to_trip(999, item)

    @pytest.mark.asyncio
    async def test_remove_shrinks_range(self, service, store, july_trip, add_activity):
        item = track_activity(add_activity(datetime(2024, 7, 11, 15), GRINDELWALD))
        await service.add_to_trip(july_trip.id, item)
        assert store.get_trip(july_trip.id).end_date == noon(11)

        assert await service.remove_from_trip(july_trip.id, "activity", item.item_id)
        trip = store.get_trip(july_trip.id)
        assert (trip.start_date, trip.end_date) == (noon(8), noon(8))

    @pytest.mark.asyncio
    async def test_remove_from_locked_trip_keeps_range(self, service, store, july_trip):
        store.update_trip(july_trip.id, dates_locked=True)
        only = store.list_items(july_trip.id)[0]
        assert await service.remove_from_trip(july_trip.id, only.item_type, only.item_id)
        trip = store.get_trip(july_trip.id)
        assert (trip.start_date, trip.end_date) == (noon(8), noon(9))

    @pytest.mark.asyncio
    async def test_removing_last_item_keeps_range(self, service, store, july_trip):
        only = store.list_items(july_trip.id)[0]
        await service.remove_from_trip(july_trip.id, only.item_type, only.item_id)
        trip = store.get_trip(july_trip.id)
        assert (trip.start_date, trip.end_date) == (noon(8), noon(9))

    @pytest.mark.asyncio
    async def test_remove_absent_item(self, service, july_trip):
        assert not await service.remove_from_trip(july_trip.id, "spot", 12345)

    @pytest.mark.asyncio
    async def test_database_failure_becomes_trip_update_error(self, add_activity):
        store = MagicMock()
        store.get_trip.return_value = Trip(id=1, name="T", start_date=noon(8), end_date=noon(9), created_by="local")
        store.add_item_if_absent.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))
        service = TripService(store, None, user_id="local", clock=lambda: NOW)
        item = track_activity(add_activity(datetime(2024, 7, 10, 15)))

        with pytest.raises(TripUpdateError):
            await service.add_to_trip(1, item)


class TestSuggestTrip:
    @pytest.mark.asyncio
    async def test_single_candidate_confirmed(self, store, make_prompter, july_trip, add_activity):
        prompter = make_prompter(confirms=[True])
        service = TripService(store, prompter, user_id="local", clock=lambda: NOW)
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))

        trip = await service.suggest_trip(item)

        assert trip.id == july_trip.id
        assert trip.end_date == noon(10)
        assert "Oberland" in prompter.confirmations[0][1]

    @pytest.mark.asyncio
    async def test_single_candidate_declined_is_remembered(self, service, store, prompter, july_trip, add_activity):
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))

        assert await service.suggest_trip(item) is None
        assert store.rejected_keys("local") == {("activity", item.item_id)}

        assert await service.suggest_trip(item) is None
        assert len(prompter.confirmations) == 1

    @pytest.mark.asyncio
    async def test_multiple_candidates_user_picks(self, store, make_prompter, july_trip, add_activity):
        other = store.create_trip(
            Trip(name="Lakes", start_date=noon(9), end_date=noon(11), created_by="local")
        )
        prompter = make_prompter()
        service = TripService(store, prompter, user_id="local", clock=lambda: NOW)
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))

        async def pick_lakes(title, message, options):
            prompter.questions.append((title, message, list(options)))
            return str(other.id)
        prompter.choose = pick_lakes

        trip = await service.suggest_trip(item)

        assert trip.id == other.id
        options = prompter.questions[0][2]
        assert {key for key, _ in options} == {str(july_trip.id), str(other.id), NO_TRIP}
        assert options[-1] == (NO_TRIP, "Don't add to trips")

    @pytest.mark.asyncio
    async def test_multiple_candidates_none_rejects(self, store, make_prompter, july_trip, add_activity):
        store.create_trip(Trip(name="Lakes", start_date=noon(9), end_date=noon(11), created_by="local"))
        service = TripService(store, make_prompter(choices=[NO_TRIP]), user_id="local", clock=lambda: NOW)
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))

        assert await service.suggest_trip(item) is None
        assert ("activity", item.item_id) in store.rejected_keys("local")

    @pytest.mark.asyncio
    async def test_multiple_candidates_timeout_leaves_no_trace(self, service, store, july_trip, add_activity):
        store.create_trip(Trip(name="Lakes", start_date=noon(9), end_date=noon(11), created_by="local"))
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))

        assert await service.suggest_trip(item) is None
        assert store.rejected_keys("local") == set()
        assert store.find_trip_for_item("activity", item.item_id) is None

    @pytest.mark.asyncio
    async def test_no_candidates_new_trip_holds_item(self, store, make_prompter, add_spot):
        service = TripService(store, make_prompter(confirms=[True]), user_id="local", clock=lambda: NOW)
        spot = track_spot(add_spot(datetime(2024, 7, 3, 17), MUNICH, name="Englischer Garten"))

        trip = await service.suggest_trip(spot)

        assert trip.name == "Trip on Jul 3, 2024"
        assert store.find_trip_for_item("spot", spot.item_id).id == trip.id

    @pytest.mark.asyncio
    async def test_force_add_clears_rejection(self, service, store, july_trip, add_activity):
        item = track_activity(add_activity(datetime(2024, 7, 10, 15), GRINDELWALD))
        store.add_rejection("local", "activity", item.item_id)

        assert await service.force_add_to_trip(july_trip.id, item)
        assert store.rejected_keys("local") == set()
        assert store.find_trip_for_item("activity", item.item_id).id == july_trip.id

    def test_clear_rejections(self, service, store):
        store.add_rejection("local", "activity", 1)
        store.add_rejection("local", "spot", 2)
        assert service.clear_rejections(item_type="spot") == 1
        assert service.clear_rejections() == 1


class TestTripCrud:
    def test_create_anchors_dates(self, service):
        trip = service.create_trip("  Ticino  ", datetime(2024, 8, 1, 23, 30), datetime(2024, 8, 3, 1))
        assert trip.name == "Ticino"
        assert (trip.start_date, trip.end_date) == (noon(1, 8), noon(3, 8))

    def test_create_requires_name(self, service):
        with pytest.raises(InvalidInputError):
            service.create_trip(" ", noon(1), noon(2))

    def test_create_rejects_reversed_range(self, service):
        with pytest.raises(InvalidInputError):
            service.create_trip("Backwards", noon(3), noon(1))

    def test_update_validates_range(self, service, july_trip):
        with pytest.raises(InvalidInputError):
            service.update_trip(july_trip.id, start_date=noon(20))

    def test_update_anchors(self, service, july_trip):
        trip = service.update_trip(july_trip.id, end_date=datetime(2024, 7, 12, 6))
        assert trip.end_date == noon(12)

    def test_update_missing_trip(self, service):
        with pytest.raises(InvalidInputError):
            service.update_trip(404, name="x")

    def test_delete(self, service, store, july_trip):
        assert service.delete_trip(july_trip.id)
        assert store.get_trip(july_trip.id) is None

    def test_tagging_and_shared_lists(self, service, store, july_trip):
        theirs = store.create_trip(Trip(name="Ana's", start_date=noon(1), end_date=noon(2), created_by="ana"))
        assert service.tag_user(theirs.id, "local")
        assert [s.trip.name for s in service.my_trips()] == ["Oberland"]
        assert [s.trip.name for s in service.shared_trips()] == ["Ana's"]

        assert service.untag_user(theirs.id, "local")
        assert service.shared_trips() == []

    def test_tag_missing_trip(self, service):
        with pytest.raises(InvalidInputError):
            service.tag_user(404, "ana")


class TestMerging:
    @pytest.fixture(name="pair")
    def pair_fixture(self, store, add_activity):
        shared_hike = track_activity(add_activity(datetime(2024, 7, 8, 10), INTERLAKEN))
        my_hike = track_activity(add_activity(datetime(2024, 7, 10, 10), GRINDELWALD))
        mine = store.create_trip(
            Trip(name="Trip on Jul 8, 2024", start_date=noon(8), end_date=noon(10),
                 created_by="local", auto_generated=True),
            items=[item_row(shared_hike), item_row(my_hike)],
        )
        theirs = store.create_trip(
            Trip(name="Ana's Oberland", start_date=noon(7), end_date=noon(8), created_by="ana"),
            tagged=["local"],
            items=[item_row(shared_hike)],
        )
        return mine, theirs, my_hike

    def test_suggested_merges(self, service, pair):
        mine, theirs, _ = pair
        suggestions = service.suggested_merges()
        assert [(a.trip.id, b.trip.id) for a, b in suggestions] == [(mine.id, theirs.id)]

    def test_merge_copies_missing_items(self, service, store, pair):
        mine, theirs, my_hike = pair

        merged = service.merge_trips(mine.id, theirs.id)

        keys = store.get_snapshot(theirs.id).item_keys
        assert ("activity", my_hike.item_id) in keys
        assert len(keys) == 2
        assert merged.merged_from == [mine.id]
        assert (merged.start_date, merged.end_date) == (noon(7), noon(10))
        assert store.get_trip(mine.id) is not None

    def test_merge_into_locked_trip_keeps_range(self, service, store, pair):
        mine, theirs, _ = pair
        store.update_trip(theirs.id, dates_locked=True)
        merged = service.merge_trips(mine.id, theirs.id)
        assert (merged.start_date, merged.end_date) == (noon(7), noon(8))

    def test_merge_into_itself(self, service, pair):
        mine, _, _ = pair
        with pytest.raises(InvalidInputError):
            service.merge_trips(mine.id, mine.id)

    def test_merge_missing_trip(self, service, pair):
        mine, _, _ = pair
        with pytest.raises(InvalidInputError):
            service.merge_trips(mine.id, 404)
