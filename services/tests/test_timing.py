"""
Tests for duration formatting and report timing.
"""

from datetime import timedelta

from services.utils.timing import ReportTimer, Stopwatch, format_time


def test_format_time() -> None:
    assert format_time(0) == "0s"
    assert format_time(59_999) == "59s"
    assert format_time(61_000) == "1m 1s"
    assert format_time(3_723_000) == "1h 2m 3s"


def test_stopwatch_end_derived_from_duration() -> None:
    timing = Stopwatch().stop()

    assert timing.started_at <= timing.ended_at
    assert timing.ended_at - timing.started_at == timedelta(milliseconds=timing.duration_ms)


def test_report_timer_collects_sections_and_courses() -> None:
    timer = ReportTimer()
    timer.record("courses", timer.start())
    timer.record_course(12, "Biology", duration_ms=5, assignment_count=3)
    timer.record_course(13, "Chemistry", error="Permission denied")

    timing = timer.finish()

    assert set(timing.sections) == {"courses"}
    assert timing.by_course["12"].assignment_count == 3
    assert timing.by_course["13"].error == "Permission denied"
    assert timing.total_ms >= timing.sections["courses"].duration_ms
    assert timing.total_formatted.endswith("s")
