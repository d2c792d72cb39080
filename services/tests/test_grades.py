"""
Tests for grade extraction, term detection and ordering.
"""

from datetime import date

from services.utils.grades import (
    annotate_with_course,
    current_term_pattern,
    extract_grade,
    filter_current_term,
    sort_by_due_date,
    sort_by_posted_date_desc,
)


def test_current_score_preferred_over_final() -> None:
    course = {
        "enrollments": [
            {
                "type": "student",
                "computed_current_score": 91.5,
                "computed_current_grade": "A-",
                "computed_final_score": 80,
                "computed_final_grade": "B-",
            }
        ]
    }

    assert extract_grade(course) == {"grade": 91.5, "grade_letter": "A-", "enrollment_type": "student"}


def test_final_score_used_when_current_missing() -> None:
    course = {"enrollments": [{"type": "student", "computed_final_score": 77, "computed_final_grade": "C+"}]}

    assert extract_grade(course)["grade"] == 77
    assert extract_grade(course)["grade_letter"] == "C+"


def test_explicit_null_current_score_is_kept() -> None:
    course = {
        "enrollments": [
            {"type": "student", "computed_current_score": None, "computed_final_score": 70}
        ]
    }

    assert extract_grade(course)["grade"] is None


def test_no_student_enrollment() -> None:
    course = {"enrollments": [{"type": "teacher", "computed_current_score": 100}]}

    assert extract_grade(course) == {"grade": None, "grade_letter": None, "enrollment_type": None}
    assert extract_grade({}) == {"grade": None, "grade_letter": None, "enrollment_type": None}


def test_require_score_skips_scoreless_enrollments() -> None:
    course = {
        "enrollments": [
            {"type": "student", "computed_current_score": None},
            {"type": "student", "computed_current_score": 88, "computed_current_grade": "B+"},
        ]
    }

    assert extract_grade(course)["grade"] is None
    assert extract_grade(course, require_score=True)["grade"] == 88


def test_current_term_pattern_by_month() -> None:
    assert current_term_pattern(date(2025, 1, 15))[0] == "spring"
    assert current_term_pattern(date(2025, 5, 31))[0] == "spring"
    assert current_term_pattern(date(2025, 6, 1))[0] == "summer"
    assert current_term_pattern(date(2025, 7, 31))[0] == "summer"
    assert current_term_pattern(date(2025, 8, 1))[0] == "fall"
    assert current_term_pattern(date(2025, 12, 31))[0] == "fall"


def test_filter_current_term() -> None:
    courses = [
        {"id": 1, "term": {"name": "Spring 2025"}},
        {"id": 2, "term": {"name": "FALL 2024"}},
        {"id": 3, "term": {"name": "SP25"}},
        {"id": 4},
    ]

    assert [c["id"] for c in filter_current_term(courses, date(2025, 3, 1))] == [1, 3]


def test_sort_by_due_date_missing_last() -> None:
    items = [
        {"id": "none"},
        {"id": "late", "due_at": "2025-04-02T00:00:00Z"},
        {"id": "bad", "due_at": "not a date"},
        {"id": "early", "due_at": "2025-04-01T23:59:00Z"},
    ]

    assert [i["id"] for i in sort_by_due_date(items)][:2] == ["early", "late"]


def test_sort_by_posted_date_desc() -> None:
    items = [
        {"id": 1, "posted_at": "2025-01-01T00:00:00Z"},
        {"id": 2},
        {"id": 3, "posted_at": "2025-02-01T00:00:00Z"},
    ]

    assert [i["id"] for i in sort_by_posted_date_desc(items)] == [3, 1, 2]


def test_annotate_with_course_copies() -> None:
    item = {"id": 10}
    course = {"id": 1, "name": "Algebra", "course_code": "MATH-101"}

    [annotated] = annotate_with_course([item], course)

    assert annotated == {"id": 10, "course_id": 1, "course_name": "Algebra", "course_code": "MATH-101"}
    assert item == {"id": 10}


def test_sort_by_due_date_dates_before_null() -> None:
    items = [{"due_at": None}, {"due_at": "2025-03-01"}, {"due_at": "2025-01-01"}]

    assert [i["due_at"] for i in sort_by_due_date(items)] == ["2025-01-01", "2025-03-01", None]
