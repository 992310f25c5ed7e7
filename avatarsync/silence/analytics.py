"""Per-session silence and nudge analytics."""

import logging
import time
from typing import List, Optional

from ..models.silence import NudgeRecord, SilenceAnalytics
from .state import is_plausible_elapsed

logger = logging.getLogger(__name__)


class SilenceAnalyticsAggregator:
    """Collects silence periods and nudge records; derives statistics on demand."""

    def __init__(self, session_start_time: Optional[float] = None):
        self.session_start_time = session_start_time if session_start_time is not None else time.time()
        self.silence_periods: List[float] = []
        self.nudge_records: List[NudgeRecord] = []

    def record_silence_period(self, duration: float) -> bool:
        """Add a completed silence period.

        Returns:
            False if the duration was implausible and discarded
        """
        if not is_plausible_elapsed(duration):
            logger.warning(f"Invalid silence duration {duration:.2f}s, not recording")
            return False
        self.silence_periods.append(duration)
        logger.debug(f"Silence period recorded: {duration:.2f}s")
        return True

    def record_nudge(self, nudge_time: float) -> NudgeRecord:
        record = NudgeRecord(nudge_time=nudge_time)
        self.nudge_records.append(record)
        return record

    def record_response(self, response_time: float, window_seconds: float) -> bool:
        """Credit the latest unanswered nudge if the user answered within the window.

        Returns:
            True if a nudge was credited
        """
        if not self.nudge_records:
            return False
        last_nudge = self.nudge_records[-1]
        if last_nudge.responded:
            return False
        elapsed = response_time - last_nudge.nudge_time
        if not 0 <= elapsed < window_seconds:
            logger.debug(f"Speech {elapsed:.1f}s after last nudge is outside the response window")
            return False
        last_nudge.response_time = response_time
        logger.info(f"User responded to nudge after {elapsed:.1f}s")
        return True

    def snapshot(self) -> SilenceAnalytics:
        periods = self.silence_periods
        total_nudges = len(self.nudge_records)
        responded = sum(1 for record in self.nudge_records if record.responded)
        return SilenceAnalytics(
            total_nudges=total_nudges,
            average_silence_duration=sum(periods) / len(periods) if periods else 0.0,
            longest_silence_period=max(periods) if periods else 0.0,
            nudge_success_rate=responded / total_nudges if total_nudges else 0.0,
            session_start_time=self.session_start_time,
            total_silence_time=sum(periods),
            silence_periods=len(periods),
            nudge_records=[NudgeRecord(r.nudge_time, r.response_time) for r in self.nudge_records],
        )
