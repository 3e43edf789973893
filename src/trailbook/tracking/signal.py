"""Sustained poor-accuracy tracking for advisory "poor signal" / "restored" notices."""
from enum import Enum
from typing import Optional

from trailbook.tracking.profiles import TrackingTuning


class SignalAlert(str, Enum):
    POOR_SIGNAL = "poor_signal"
    SIGNAL_RESTORED = "signal_restored"


class SignalMonitor:
    """
    Watches reported accuracy against ``factor * threshold``.

    POOR_SIGNAL fires on a poor fix unless one already fired within the quiet
    period. SIGNAL_RESTORED fires when accuracy recovers after being poor for
    longer than ``signal_restored_after_seconds`` without a break.
    """

    def __init__(self, accuracy_threshold_m: float, tuning: Optional[TrackingTuning] = None):
        self.tuning = tuning or TrackingTuning()
        self.poor_threshold_m = accuracy_threshold_m * self.tuning.poor_signal_factor
        self._poor_since: Optional[float] = None
        self._last_poor_alert_at: Optional[float] = None

    @property
    def is_poor(self) -> bool:
        return self._poor_since is not None

    def observe(self, accuracy_m: Optional[float], now_s: float) -> Optional[SignalAlert]:
        if accuracy_m is None:
            return None

        if accuracy_m > self.poor_threshold_m:
            if self._poor_since is None:
                self._poor_since = now_s
            quiet = self.tuning.poor_signal_quiet_seconds
            if self._last_poor_alert_at is None or now_s - self._last_poor_alert_at >= quiet:
                self._last_poor_alert_at = now_s
                return SignalAlert.POOR_SIGNAL
            return None

        if self._poor_since is not None:
            poor_for = now_s - self._poor_since
            self._poor_since = None
            if poor_for > self.tuning.signal_restored_after_seconds:
                return SignalAlert.SIGNAL_RESTORED
        return None
