"""
Shared data models for the Canvas dashboard aggregator.

This module contains the data structures used throughout the fetcher, the
resource client and the aggregation reports. Upstream records are kept as
opaque dictionaries; only the envelopes built around them are typed.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

PERMISSION_DENIED_MESSAGE = "Permission denied"


# ---------------------------------------------------------------------------
# Fetch results
# ---------------------------------------------------------------------------
class Items(BaseModel):
    """Every page of a list endpoint, concatenated in order."""
    kind: Literal["items"] = "items"
    items: List[Any] = Field(default_factory=list)


class Single(BaseModel):
    """A non-list response body, returned as-is."""
    kind: Literal["single"] = "single"
    item: Any


class Denied(BaseModel):
    """The upstream answered 403 for this path."""
    kind: Literal["denied"] = "denied"
    path: str
    status: int = 403

    def marker(self) -> Dict[str, Any]:
        return {"error": PERMISSION_DENIED_MESSAGE, "status": self.status}


class Failed(BaseModel):
    """Any other transport or status failure."""
    kind: Literal["failed"] = "failed"
    path: str
    message: str
    status: Optional[int] = None


FetchResult = Union[Items, Single, Denied, Failed]


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------
class SectionTiming(BaseModel):
    """Start, end and duration of one report section."""
    started_at: datetime
    ended_at: datetime
    duration_ms: int
    duration_sec: float


class CourseTiming(BaseModel):
    """Per-course entry of a fan-out stage."""
    course_name: Any = None
    duration_ms: Optional[int] = None
    assignment_count: Optional[int] = None
    error: Optional[str] = None


class ReportTiming(BaseModel):
    """Timing for a complete aggregation request."""
    started_at: datetime
    ended_at: datetime
    total_ms: int
    total_sec: float
    total_formatted: str
    sections: Dict[str, SectionTiming] = Field(default_factory=dict)
    by_course: Dict[str, CourseTiming] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Report building blocks
# ---------------------------------------------------------------------------
class SectionError(BaseModel):
    endpoint: str
    message: str


class CourseDetails(BaseModel):
    """A course with every per-course slice fetched by the all-data report."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Any = None
    name: Any = None
    course_code: Any = None
    assignments: List[Dict[str, Any]] = Field(default_factory=list)
    modules: List[Any] = Field(default_factory=list)
    discussions: List[Any] = Field(default_factory=list)
    files: List[Any] = Field(default_factory=list)
    pages: List[Any] = Field(default_factory=list)
    grades: List[Any] = Field(default_factory=list)
    accessible_data: Dict[str, bool] = Field(default_factory=dict, alias="accessibleData")
    timing: Optional[SectionTiming] = None


class CourseGrade(BaseModel):
    course_id: Any
    course_name: Any = None
    course_code: Any = None
    grade: Any = None
    grade_letter: Any = None
    term: Any = None
    enrollment_type: Any = None


class TermCourse(BaseModel):
    """Course summary used by the two-stage report."""
    id: Any
    name: Any = None
    course_code: Any = None
    term: Any = None
    grade: Any = None
    grade_letter: Any = None
    teachers: List[Any] = Field(default_factory=list)


class CourseAssignments(BaseModel):
    course_id: Any
    course_name: Any = None
    course_code: Any = None
    assignments: Optional[List[Dict[str, Any]]] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None


class CourseSubmissions(BaseModel):
    course_id: Any
    course_name: Any = None
    course_code: Any = None
    term: Any = None
    submissions: List[Any] = Field(default_factory=list)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
class AllDataReport(BaseModel):
    """Complete result of the all-data aggregation."""

    model_config = ConfigDict(populate_by_name=True)

    user: Optional[Dict[str, Any]] = None
    courses: List[CourseDetails] = Field(default_factory=list)
    assignments: List[Dict[str, Any]] = Field(default_factory=list)
    announcements: List[Any] = Field(default_factory=list)
    calendar_events: List[Any] = Field(default_factory=list, alias="calendarEvents")
    conversations: List[Any] = Field(default_factory=list)
    todo: List[Any] = Field(default_factory=list)
    accessible_data: Dict[str, bool] = Field(default_factory=dict, alias="accessibleData")
    errors: List[SectionError] = Field(default_factory=list)
    timing: ReportTiming
    timestamp: datetime


class DashboardReport(BaseModel):
    user: Optional[Dict[str, Any]] = None
    courses: List[Any] = Field(default_factory=list)
    assignments: List[Dict[str, Any]] = Field(default_factory=list)
    announcements: List[Any] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
    errors: List[SectionError] = Field(default_factory=list)
    timing: ReportTiming


class CurrentAssignmentsReport(BaseModel):
    assignments: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = 0
    errors: List[SectionError] = Field(default_factory=list)
    timing: ReportTiming


class TwoStageReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stage: str = "complete"
    courses: List[TermCourse] = Field(default_factory=list)
    announcements: List[Any] = Field(default_factory=list)
    course_assignments: List[CourseAssignments] = Field(
        default_factory=list, alias="courseAssignments"
    )
    assignments: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[SectionError] = Field(default_factory=list)
    timing: ReportTiming
    error: Optional[str] = None


class GradesReport(BaseModel):
    grades: List[CourseGrade] = Field(default_factory=list)
    count: int = 0
    current_term: Optional[str] = None
    current_term_pattern: Optional[str] = None
    errors: List[SectionError] = Field(default_factory=list)
    timing: ReportTiming


class SubmissionsReport(BaseModel):
    """The user's submissions, grouped per course."""
    courses: List[CourseSubmissions] = Field(default_factory=list)
    errors: List[SectionError] = Field(default_factory=list)
    timing: ReportTiming
