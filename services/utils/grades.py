"""
Grade extraction, term detection and ordering helpers for Canvas records
"""
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Pattern, Tuple

# Season patterns matched against a term's display name
SPRING_PATTERN = re.compile(r"spring|sp", re.IGNORECASE)
SUMMER_PATTERN = re.compile(r"summer|su", re.IGNORECASE)
FALL_PATTERN = re.compile(r"fall|fa", re.IGNORECASE)

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


def find_student_enrollment(course: Dict[str, Any], require_score: bool = False) -> Optional[Dict]:
    """First enrollment of type 'student' (optionally one carrying a non-empty score)."""
    for enrollment in course.get("enrollments") or []:
        if enrollment.get("type") != "student":
            continue
        if require_score and not (
            enrollment.get("computed_current_score") or enrollment.get("computed_final_score")
        ):
            continue
        return enrollment
    return None


def extract_grade(course: Dict[str, Any], require_score: bool = False) -> Dict[str, Any]:
    """
    Return {grade, grade_letter, enrollment_type} for a course.

    A grade is present when the student enrollment carries a current or a final
    score field. Current score/letter win over final score/letter. A missing
    enrollment or missing scores give a null grade.
    """
    enrollment = find_student_enrollment(course, require_score=require_score)
    has_grade = enrollment is not None and (
        "computed_current_score" in enrollment or "computed_final_score" in enrollment
    )
    if not has_grade:
        return {
            "grade": None,
            "grade_letter": None,
            "enrollment_type": enrollment.get("type") if enrollment else None,
        }

    if "computed_current_score" in enrollment:
        grade = enrollment["computed_current_score"]
    else:
        grade = enrollment.get("computed_final_score")

    if "computed_current_grade" in enrollment:
        grade_letter = enrollment["computed_current_grade"]
    else:
        grade_letter = enrollment.get("computed_final_grade")

    return {
        "grade": grade,
        "grade_letter": grade_letter,
        "enrollment_type": enrollment.get("type"),
    }


def term_name(course: Dict[str, Any]) -> Optional[str]:
    term = course.get("term")
    return term.get("name") if isinstance(term, dict) else None


def current_term_pattern(today: Optional[date] = None) -> Tuple[str, Pattern]:
    """Season name and pattern for the current month: Jan-May spring, Jun-Jul summer, else fall."""
    month = (today or date.today()).month
    if month <= 5:
        return "spring", SPRING_PATTERN
    if month <= 7:
        return "summer", SUMMER_PATTERN
    return "fall", FALL_PATTERN


def filter_current_term(courses: Iterable[Dict[str, Any]], today: Optional[date] = None) -> List[Dict]:
    """Keep only courses whose term name matches the current season pattern."""
    _, pattern = current_term_pattern(today)
    return [c for c in courses if term_name(c) and pattern.search(term_name(c))]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a Canvas ISO-8601 timestamp; None when missing or unparsable."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_by_due_date(items: Iterable[Dict[str, Any]], key: str = "due_at") -> List[Dict]:
    """Ascending by due date; items without a date sort last."""
    def sort_key(item):
        parsed = parse_timestamp(item.get(key))
        return (parsed is None, parsed or _LATEST)

    return sorted(items, key=sort_key)


def sort_by_posted_date_desc(items: Iterable[Dict[str, Any]], key: str = "posted_at") -> List[Dict]:
    """Newest first; items without a date sort last."""
    dated = []
    undated = []
    for item in items:
        (dated if parse_timestamp(item.get(key)) else undated).append(item)
    dated.sort(key=lambda item: parse_timestamp(item.get(key)), reverse=True)
    return dated + undated


def annotate_with_course(items: Iterable[Dict[str, Any]], course: Dict[str, Any]) -> List[Dict]:
    """Copy each item and attach its parent course's id, name and code."""
    return [
        {
            **item,
            "course_name": course.get("name"),
            "course_code": course.get("course_code"),
            "course_id": course.get("id"),
        }
        for item in items
    ]
