"""
TrackRecorder — owns one GPS tracking session from start to saved Activity.

State machine:

    IDLE ──start──▶ TRACKING ──pause──▶ PAUSED ──resume──▶ TRACKING
      ▲                │                   │
      └──── stop / discard (FINALIZING) ◀──┘

All live state (route, distance, clock bookkeeping, GPS status, signal
alerts) hangs off a TrackingSession object held by the recorder; nothing is
module-global. Fixes arrive through the location service stream and are fed
to handle_fix(), which is synchronous and can be driven directly in tests.

Duration is wall-clock time from start minus every paused interval, each
paused interval being subtracted exactly once on resume (or on stop while
paused).
"""
import asyncio
import contextlib
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

from trailbook.errors import (
    ActivitySaveError,
    InvalidInputError,
    LocationPermissionError,
    LocationUnavailableError,
    NoActivityDataError,
    TrackingStartError,
)
from trailbook.geo import implied_speed_kmh
from trailbook.models.activity import Activity, ActivityType
from trailbook.tracking.fixes import LocationFix
from trailbook.tracking.profiles import TrackingTuning
from trailbook.tracking.route import FixDecision, RouteBuilder
from trailbook.tracking.signal import SignalAlert, SignalMonitor

logger = logging.getLogger(__name__)

WATCH_ACCURACY_PROFILE = "best_for_navigation"


class TrackingState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    PAUSED = "paused"
    FINALIZING = "finalizing"


class GpsStatus(str, Enum):
    ACTIVE = "active"
    SEARCHING = "searching"
    STALE = "stale"
    ERROR = "error"


@dataclass
class TrackingSession:
    """Everything accumulated for the activity currently being recorded."""

    activity_type: ActivityType
    started_at: float                       # recorder clock, epoch seconds
    route: RouteBuilder
    signal: SignalMonitor
    paused_total_s: float = 0.0
    pause_started_at: Optional[float] = None
    last_fix_at: float = 0.0                # last fix that passed the accuracy gate
    location: Optional[LocationFix] = None  # latest fix seen, accepted or not
    gps_status: GpsStatus = GpsStatus.SEARCHING
    alerts: List[SignalAlert] = field(default_factory=list)

    def elapsed_seconds(self, now: float) -> int:
        """Whole seconds tracked so far, excluding paused time."""
        paused = self.paused_total_s
        if self.pause_started_at is not None:
            paused += now - self.pause_started_at
        return max(0, int(now - self.started_at - paused))


def _utc(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


class TrackRecorder:
    """
    Drives a TrackingSession against a location service.

    Args:
        location: Device Location Service (see trailbook.tracking.location).
        store: object with ``save_activity(activity) -> Activity`` (TripStore),
               or None to return unsaved activities.
        user_id: owner stamped on produced activities.
        tuning: recorder heuristics; defaults to TrackingTuning().
        clock: returns epoch seconds; injectable for tests.
        media: optional Photo/Media Gateway with async ``upload(refs) -> refs``.
        on_alert: optional callback receiving SignalAlert notifications.
    """

    def __init__(
        self,
        location,
        store=None,
        *,
        user_id: str = "local",
        tuning: Optional[TrackingTuning] = None,
        clock: Callable[[], float] = time.time,
        media=None,
        on_alert: Optional[Callable[[SignalAlert], None]] = None,
    ):
        self._location = location
        self._store = store
        self.user_id = user_id
        self.tuning = tuning or TrackingTuning()
        self._clock = clock
        self._media = media
        self._on_alert = on_alert

        self._state = TrackingState.IDLE
        self._session: Optional[TrackingSession] = None
        self._consumer: Optional[asyncio.Task] = None

    # ─── Read-only view for callers ───────────────────────────────────────────

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def session(self) -> Optional[TrackingSession]:
        return self._session

    @property
    def gps_status(self) -> GpsStatus:
        return self._session.gps_status if self._session else GpsStatus.SEARCHING

    @property
    def current_distance_m(self) -> float:
        return self._session.route.distance_m if self._session else 0.0

    @property
    def current_speed_kmh(self) -> float:
        return self._session.route.current_speed_kmh if self._session else 0.0

    @property
    def current_duration_s(self) -> int:
        if self._session is None:
            return 0
        return self._session.elapsed_seconds(self._clock())

    # ─── Transitions ──────────────────────────────────────────────────────────

    async def start(self, activity_type: Union[ActivityType, str]) -> TrackingSession:
        """
        Begin recording. Never blocks indefinitely on the first fix: falls back
        to a degraded last-known position, then a fresh request, then starts
        with no position at all.

        Raises:
            InvalidInputError: already tracking, or unknown activity type.
            LocationPermissionError: location permission denied.
            TrackingStartError: the location subscription could not be opened.
        """
        if self._state is not TrackingState.IDLE:
            raise InvalidInputError("Tracking is already in progress")
        try:
            kind = ActivityType(activity_type)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown activity type: {activity_type}") from exc

        logger.info("Starting %s tracking", kind.value)
        try:
            initial = await self._acquire_initial_fix()

            now = self._clock()
            route = RouteBuilder(kind, self.tuning)
            self._session = TrackingSession(
                activity_type=kind,
                started_at=now,
                route=route,
                signal=SignalMonitor(route.accuracy_threshold_m, self.tuning),
                last_fix_at=now,
            )
            self._state = TrackingState.TRACKING

            if initial is not None:
                # The fallback fix may be up to a minute old; it marks the start
                self.handle_fix(dataclasses.replace(initial, timestamp_ms=int(now * 1000)))

            await self._start_watching()
        except LocationPermissionError:
            await self._reset()
            raise
        except Exception as exc:
            logger.exception("Tracking failed to start")
            await self._reset()
            raise TrackingStartError(str(exc)) from exc

        return self._session

    def handle_fix(self, fix: LocationFix) -> Optional[FixDecision]:
        """
        Offer one fix to the route. Returns None when not tracking (idle,
        paused, finalizing); those fixes are ignored.
        """
        session = self._session
        if session is None or self._state is not TrackingState.TRACKING:
            return None

        now = self._clock()
        session.location = fix
        decision = session.route.add_fix(fix)

        if decision is FixDecision.LOW_ACCURACY:
            session.gps_status = GpsStatus.SEARCHING
        else:
            session.last_fix_at = now
            session.gps_status = GpsStatus.ACTIVE

        alert = session.signal.observe(fix.accuracy_m, now)
        if alert is not None:
            logger.info("GPS signal alert: %s", alert.value)
            session.alerts.append(alert)
            if self._on_alert is not None:
                self._on_alert(alert)

        return decision

    async def pause(self) -> None:
        if self._state is not TrackingState.TRACKING:
            raise InvalidInputError("Can only pause while tracking")
        logger.info("Pausing tracking")
        self._session.pause_started_at = self._clock()
        self._state = TrackingState.PAUSED
        await self._stop_watching()

    async def resume(self) -> None:
        """Resume after a pause. A failed re-subscription shows as GpsStatus.ERROR."""
        if self._state is not TrackingState.PAUSED:
            raise InvalidInputError("Can only resume while paused")
        logger.info("Resuming tracking")
        session = self._session
        now = self._clock()
        session.paused_total_s += now - session.pause_started_at
        session.pause_started_at = None
        session.last_fix_at = now
        session.gps_status = GpsStatus.SEARCHING
        self._state = TrackingState.TRACKING

        try:
            await self._start_watching()
        except Exception:
            logger.exception("Could not resume location updates")
            session.gps_status = GpsStatus.ERROR

    async def stop(
        self,
        name: str = "",
        notes: Optional[str] = None,
        photos: Optional[Sequence[str]] = None,
        *,
        discard: bool = False,
    ) -> Optional[Activity]:
        """
        Finalize the session into an Activity (saved when a store is set) and
        return to IDLE. With ``discard=True`` nothing is produced.

        Raises:
            NoActivityDataError: nothing was ever started.
            ActivitySaveError: persistence failed; the session is kept intact
                so the caller can retry.
        """
        if discard:
            await self.discard()
            return None

        session = self._session
        if session is None or self._state is TrackingState.IDLE:
            raise NoActivityDataError()
        if self._state is TrackingState.FINALIZING:
            raise InvalidInputError("Activity is already being saved")

        previous = self._state
        self._state = TrackingState.FINALIZING
        logger.info("Stopping tracking")

        activity = self._build_activity(session, self._clock(), name, notes)
        if photos:
            activity.photos = await self._upload_photos(photos)

        if self._store is not None:
            try:
                activity = self._store.save_activity(activity)
            except Exception as exc:
                logger.exception("Saving activity failed")
                self._state = previous
                raise ActivitySaveError() from exc

        await self._reset()
        logger.info(
            "Activity saved: %.0fm in %ds", activity.distance_meters, activity.duration_seconds
        )
        return activity

    async def discard(self) -> None:
        """Drop the session without producing an Activity. Always succeeds."""
        logger.info("Discarding tracking session")
        await self._reset()

    def check_liveness(self) -> GpsStatus:
        """
        Periodic staleness check (scheduled every ~10s while tracking):
        no usable fix for > stale_after_seconds → STALE, for
        > degraded_after_seconds → SEARCHING.
        """
        session = self._session
        if session is None:
            return GpsStatus.SEARCHING
        if self._state is not TrackingState.TRACKING or session.gps_status is GpsStatus.ERROR:
            return session.gps_status

        since = self._clock() - session.last_fix_at
        if since > self.tuning.stale_after_seconds:
            session.gps_status = GpsStatus.STALE
        elif since > self.tuning.degraded_after_seconds:
            session.gps_status = GpsStatus.SEARCHING
        return session.gps_status

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _acquire_initial_fix(self) -> Optional[LocationFix]:
        timeout = self.tuning.initial_fix_timeout_seconds
        try:
            return await asyncio.wait_for(self._location.get_current_fix("best"), timeout)
        except (asyncio.TimeoutError, LocationUnavailableError):
            logger.info("No initial fix, trying last known position")

        fix = await self._location.get_best_effort_fix(
            self.tuning.degraded_fix_max_age_ms,
            self.tuning.degraded_fix_max_accuracy_m,
        )
        if fix is not None:
            return fix

        try:
            return await asyncio.wait_for(self._location.get_current_fix("high"), timeout)
        except (asyncio.TimeoutError, LocationUnavailableError):
            logger.warning("Starting without an initial fix")
            return None

    def _build_activity(
        self,
        session: TrackingSession,
        now: float,
        name: str,
        notes: Optional[str],
    ) -> Activity:
        duration = session.elapsed_seconds(now)
        distance = session.route.distance_m
        avg_speed = implied_speed_kmh(distance, duration) if distance > 0 else 0.0
        started = _utc(session.started_at)
        return Activity(
            user_id=self.user_id,
            activity_type=session.activity_type.value,
            name=name or f"{session.activity_type.value} activity",
            activity_date=started,
            start_time=started,
            end_time=_utc(now),
            duration_seconds=duration,
            distance_meters=distance,
            route=session.route.route_points(),
            average_speed_kmh=avg_speed,
            max_speed_kmh=session.route.max_speed_kmh,
            notes=notes,
            photos=[],
            is_manual_entry=False,
        )

    async def _upload_photos(self, photos: Sequence[str]) -> List[str]:
        if self._media is None:
            return list(photos)
        try:
            return list(await self._media.upload(list(photos)))
        except Exception:
            # Photos are best-effort; the activity itself must still be saved
            logger.warning("Photo upload failed, saving activity without photos", exc_info=True)
            return []

    async def _start_watching(self) -> None:
        stream = await self._location.start_watching(
            WATCH_ACCURACY_PROFILE,
            self.tuning.watch_interval_ms,
            self.tuning.watch_distance_m,
        )
        self._consumer = asyncio.create_task(self._consume(stream))

    async def _consume(self, stream) -> None:
        try:
            async for fix in stream:
                self.handle_fix(fix)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Location stream failed")
            if self._session is not None:
                self._session.gps_status = GpsStatus.ERROR

    async def _stop_watching(self) -> None:
        task, self._consumer = self._consumer, None
        try:
            await self._location.stop_watching()
        except Exception:
            logger.warning("Error stopping location updates", exc_info=True)
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _reset(self) -> None:
        await self._stop_watching()
        self._session = None
        self._state = TrackingState.IDLE
