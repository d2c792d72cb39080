"""
Timing helpers for aggregation reports
"""
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from dashboard.shared import CourseTiming, ReportTiming, SectionTiming


def format_time(ms: float) -> str:
    """Render a duration in milliseconds as '1h 2m 3s', '2m 3s' or '3s'."""
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        return f"{hours}h {minutes % 60}m {seconds % 60}s"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


class Stopwatch:
    """
    Wall-clock start plus a monotonic duration.

    The end timestamp is derived from start + duration, so start <= end and
    duration == end - start hold even if the system clock moves.
    """

    def __init__(self):
        self.started_at = datetime.now(timezone.utc)
        self._start = time.monotonic()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def stop(self) -> SectionTiming:
        duration_ms = self.elapsed_ms()
        return SectionTiming(
            started_at=self.started_at,
            ended_at=self.started_at + timedelta(milliseconds=duration_ms),
            duration_ms=duration_ms,
            duration_sec=round(duration_ms / 1000, 2),
        )


class ReportTimer:
    """Collects section and per-course timings for one aggregation request."""

    def __init__(self):
        self._total = Stopwatch()
        self.sections: Dict[str, SectionTiming] = {}
        self.by_course: Dict[str, CourseTiming] = {}

    def start(self) -> Stopwatch:
        return Stopwatch()

    def record(self, section: str, stopwatch: Stopwatch) -> SectionTiming:
        timing = stopwatch.stop()
        self.sections[section] = timing
        return timing

    def record_course(
        self,
        course_id,
        course_name: Optional[str],
        duration_ms: Optional[int] = None,
        assignment_count: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        self.by_course[str(course_id)] = CourseTiming(
            course_name=course_name,
            duration_ms=duration_ms,
            assignment_count=assignment_count,
            error=error,
        )

    def finish(self) -> ReportTiming:
        total = self._total.stop()
        return ReportTiming(
            started_at=total.started_at,
            ended_at=total.ended_at,
            total_ms=total.duration_ms,
            total_sec=total.duration_sec,
            total_formatted=format_time(total.duration_ms),
            sections=dict(self.sections),
            by_course=dict(self.by_course),
        )
