"""
Aggregation reports over the Canvas resource client.

Each report composes several resource calls, some fanned out per course, into
one structured result. Every data slice is fetched under its own guard: a
failure empties that slice and is recorded, the rest of the report carries on.
Only a failure outside those guards aborts a report, as an AggregationError
carrying the timing measured up to that point.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from dashboard.config import CanvasConfig
from dashboard.shared import (
    PERMISSION_DENIED_MESSAGE,
    AllDataReport,
    CourseAssignments,
    CourseDetails,
    CourseGrade,
    CourseSubmissions,
    CurrentAssignmentsReport,
    DashboardReport,
    GradesReport,
    ReportTiming,
    SectionError,
    SubmissionsReport,
    TermCourse,
    TwoStageReport,
)
from services.canvas_client import CanvasClient
from services.paginated_fetcher import CanvasAPIError, PermissionDeniedError
from services.utils.grades import (
    annotate_with_course,
    current_term_pattern,
    extract_grade,
    filter_current_term,
    sort_by_due_date,
    sort_by_posted_date_desc,
    term_name,
)
from services.utils.task_group import gather_indexed
from services.utils.timing import ReportTimer, Stopwatch

logger = logging.getLogger(__name__)


class AggregationError(Exception):
    """A report could not be assembled at all."""

    def __init__(self, message: str, details: str, timing: ReportTiming):
        super().__init__(f"{message}: {details}")
        self.message = message
        self.details = details
        self.timing = timing
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "timing": self.timing.model_dump(mode="json"),
        }


def is_permission_denied(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and data.get("error") == PERMISSION_DENIED_MESSAGE
        and data.get("status") == 403
    )


def expect_items(data: Any, what: str) -> List[Any]:
    """A list-valued slice, or an error for the permission marker / any other shape."""
    if isinstance(data, list):
        return data
    if is_permission_denied(data):
        raise PermissionDeniedError(what)
    raise CanvasAPIError(f"Unexpected response for {what}: expected a list", path=what)


def expect_object(data: Any, what: str) -> Dict[str, Any]:
    if is_permission_denied(data):
        raise PermissionDeniedError(what)
    if not isinstance(data, dict):
        raise CanvasAPIError(f"Unexpected response for {what}: expected an object", path=what)
    return data


class Aggregator:
    """
    Builds the dashboard reports.

    Stages run in a fixed order. Per-course work fans out concurrently through
    gather_indexed (bounded by max_concurrent_courses); results keep the input
    course order. Within one course, sub-fetches run one after another.
    """

    def __init__(
        self,
        client: CanvasClient,
        config: CanvasConfig,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.client = client
        self.config = config
        self._now = now or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _guarded(self, message: str, timer: ReportTimer, build: Callable[[], Awaitable]):
        try:
            return await build()
        except Exception as e:
            logger.exception(message)
            raise AggregationError(message, str(e), timer.finish()) from e

    def _window(self, future_days: int) -> Tuple[datetime, datetime]:
        """(due_after, due_before) around now for "current" assignments."""
        now = self._now()
        return (
            now - timedelta(days=self.config.past_cutoff_days),
            now + timedelta(days=future_days),
        )

    def _today(self) -> date:
        return self._now().date()

    async def _fan_out(self, courses: List[Dict[str, Any]], worker) -> List[Any]:
        return await gather_indexed(
            [partial(worker, course) for course in courses],
            limit=self.config.max_concurrent_courses,
        )

    async def _fetch_section(
        self,
        name: str,
        timer: ReportTimer,
        errors: List[SectionError],
        fetch: Callable[[], Awaitable[Any]],
        default: Any,
    ) -> Tuple[Any, bool]:
        """Fetch one top-level section under its own guard. Returns (data, accessible)."""
        stopwatch = timer.start()
        try:
            data = await fetch()
            return data, True
        except Exception as e:
            logger.error(f"Error fetching {name}: {e}")
            errors.append(SectionError(endpoint=name, message=str(e)))
            return default, False
        finally:
            timer.record(name, stopwatch)

    async def _fetch_courses(
        self,
        timer: ReportTimer,
        errors: List[SectionError],
        **include: bool,
    ) -> Tuple[List[Dict[str, Any]], bool]:
        async def fetch():
            return expect_items(await self.client.list_courses(**include), "courses")

        return await self._fetch_section("courses", timer, errors, fetch, [])

    async def _announcements(self, courses: List[Dict[str, Any]]) -> List[Any]:
        announcements = expect_items(
            await self.client.list_announcements(
                courses, latest_only=False, start_date=self.config.announcements_start_date
            ),
            "announcements",
        )
        return sort_by_posted_date_desc(announcements)

    async def _current_assignments_for(
        self,
        timer: ReportTimer,
        due_after: datetime,
        due_before: datetime,
        per_page: int,
        course: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Assignments due inside the window for one course, annotated with the course."""
        course_id = course.get("id")
        stopwatch = Stopwatch()
        try:
            assignments = expect_items(
                await self.client.list_course_assignments(
                    course_id,
                    include_submission=True,
                    due_after=due_after,
                    due_before=due_before,
                    order_by="due_at",
                    per_page=per_page,
                ),
                f"assignments for course {course_id}",
            )
        except Exception as e:
            logger.error(f"Error fetching assignments for course {course_id}: {e}")
            timer.record_course(course_id, course.get("name"), error=str(e))
            return []

        timer.record_course(
            course_id,
            course.get("name"),
            duration_ms=stopwatch.elapsed_ms(),
            assignment_count=len(assignments),
        )
        return annotate_with_course(assignments, course)

    # ------------------------------------------------------------------
    # All data
    # ------------------------------------------------------------------
    async def aggregate(self) -> AllDataReport:
        """Full report: user, courses with every per-course slice, then top-level resources."""
        return await self.all_data()

    async def all_data(self) -> AllDataReport:
        timer = ReportTimer()
        return await self._guarded("Failed to fetch all data", timer, partial(self._all_data, timer))

    async def _all_data(self, timer: ReportTimer) -> AllDataReport:
        errors: List[SectionError] = []
        accessible: Dict[str, bool] = {}

        # Step 1: User
        async def fetch_user():
            return expect_object(await self.client.get_self(), "user")

        user, accessible["user"] = await self._fetch_section("user", timer, errors, fetch_user, None)

        # Step 2: Courses
        courses, accessible["courses"] = await self._fetch_courses(
            timer, errors, include_terms=True, include_teachers=True, include_total_scores=False
        )
        logger.info(f"Fetched {len(courses)} courses")

        # Step 3: Per-course details in parallel
        course_details: List[CourseDetails] = []
        if courses:
            stopwatch = timer.start()
            results = await self._fan_out(courses, partial(self._course_details, timer))
            for course, result in zip(courses, results):
                if isinstance(result, Exception):
                    logger.error(f"Course details failed for {course.get('id')}: {result}")
                    result = CourseDetails(
                        id=course.get("id"),
                        name=course.get("name"),
                        course_code=course.get("course_code"),
                        accessible_data={"assignments": False},
                    )
                course_details.append(result)
            timer.record("course_details", stopwatch)

        # Step 4: Independent top-level resources
        announcements, accessible["announcements"] = await self._fetch_section(
            "announcements", timer, errors, partial(self._announcements, courses), []
        )

        async def list_of(name, fetch):
            return expect_items(await fetch(), name)

        calendar_events, accessible["calendarEvents"] = await self._fetch_section(
            "calendarEvents", timer, errors,
            partial(list_of, "calendar events", self.client.list_calendar_events), [],
        )
        conversations, accessible["conversations"] = await self._fetch_section(
            "conversations", timer, errors,
            partial(list_of, "conversations", self.client.list_conversations), [],
        )
        todo, accessible["todo"] = await self._fetch_section(
            "todo", timer, errors,
            partial(list_of, "todo", self.client.list_todo_items), [],
        )

        # Step 5: Merge
        stopwatch = timer.start()
        assignments = sort_by_due_date(
            assignment for course in course_details for assignment in course.assignments
        )
        timer.record("processing", stopwatch)

        logger.info(
            f"All-data report complete: {len(course_details)} courses, "
            f"{len(assignments)} assignments, {len(errors)} section errors"
        )

        return AllDataReport(
            user=user,
            courses=course_details,
            assignments=assignments,
            announcements=announcements,
            calendar_events=calendar_events,
            conversations=conversations,
            todo=todo,
            accessible_data=accessible,
            errors=errors,
            timing=timer.finish(),
            timestamp=datetime.now(timezone.utc),
        )

    async def _course_details(self, timer: ReportTimer, course: Dict[str, Any]) -> CourseDetails:
        """Every per-course slice for one course, each under its own guard."""
        course_id = course.get("id")
        stopwatch = Stopwatch()
        accessible: Dict[str, bool] = {}
        slices: Dict[str, List[Any]] = {}

        # Assignments, then their submissions one assignment at a time
        assignments: List[Dict[str, Any]] = []
        try:
            raw_assignments = expect_items(
                await self.client.list_course_assignments(course_id),
                f"assignments for course {course_id}",
            )
            for assignment in raw_assignments:
                try:
                    submissions = await self.client.list_assignment_submissions(
                        course_id, assignment["id"], silent_errors=True
                    )
                    assignments.append({
                        **assignment,
                        "submissions": submissions if isinstance(submissions, list) else [],
                    })
                except (CanvasAPIError, KeyError, TypeError) as e:
                    logger.warning(
                        f"Error fetching submissions for assignment {assignment.get('id')} "
                        f"in course {course_id}: {e}"
                    )
                    assignments.append({
                        **assignment,
                        "submissions": [],
                        "submissionsError": str(e) or type(e).__name__,
                    })
            assignments = annotate_with_course(assignments, course)
            accessible["assignments"] = True
        except Exception as e:
            logger.error(f"Error fetching assignments for course {course_id}: {e}")
            assignments = []
            accessible["assignments"] = False

        course_slices = (
            ("modules", self.client.list_course_modules),
            ("discussions", self.client.list_discussion_topics),
            ("files", self.client.list_course_files),
            ("pages", self.client.list_course_pages),
            ("grades", partial(self.client.list_course_submissions, silent_errors=False)),
        )
        for name, fetch in course_slices:
            try:
                slices[name] = expect_items(await fetch(course_id), f"{name} for course {course_id}")
                accessible[name] = True
            except Exception as e:
                logger.error(f"Error fetching {name} for course {course_id}: {e}")
                slices[name] = []
                accessible[name] = False

        timing = stopwatch.stop()
        timer.record_course(
            course_id,
            course.get("name"),
            duration_ms=timing.duration_ms,
            assignment_count=len(assignments),
        )

        return CourseDetails.model_validate({
            **course,
            **slices,
            "assignments": assignments,
            "accessibleData": accessible,
            "timing": timing,
        })

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------
    async def dashboard(self) -> DashboardReport:
        """User, courses, current assignments and announcements in one payload."""
        timer = ReportTimer()
        return await self._guarded(
            "Failed to fetch dashboard data", timer, partial(self._dashboard, timer)
        )

    async def _dashboard(self, timer: ReportTimer) -> DashboardReport:
        errors: List[SectionError] = []
        due_after, due_before = self._window(self.config.future_cutoff_days)

        async def fetch_user():
            return expect_object(await self.client.get_self(), "user")

        user, user_ok = await self._fetch_section("user", timer, errors, fetch_user, None)
        if not user_ok:
            user = {"error": "Failed to fetch user data"}

        courses, _ = await self._fetch_courses(
            timer, errors, include_terms=True, include_teachers=False, include_total_scores=False
        )

        stopwatch = timer.start()
        assignments: List[Dict[str, Any]] = []
        if courses:
            worker = partial(
                self._current_assignments_for, timer, due_after, due_before, self.config.per_page
            )
            results = await self._fan_out(courses, worker)
            assignments = sort_by_due_date(
                a for result in results if not isinstance(result, Exception) for a in result
            )
        timer.record("assignments", stopwatch)

        announcements, _ = await self._fetch_section(
            "announcements", timer, errors, partial(self._announcements, courses), []
        )

        return DashboardReport(
            user=user,
            courses=courses,
            assignments=assignments,
            announcements=announcements,
            counts={
                "courses": len(courses),
                "assignments": len(assignments),
                "announcements": len(announcements),
            },
            errors=errors,
            timing=timer.finish(),
        )

    # ------------------------------------------------------------------
    # Current assignments
    # ------------------------------------------------------------------
    async def current_assignments(self) -> CurrentAssignmentsReport:
        """Assignments due from past_cutoff_days ago to future_cutoff_days ahead, across courses."""
        timer = ReportTimer()
        return await self._guarded(
            "Failed to fetch current assignments", timer, partial(self._current_assignments, timer)
        )

    async def _current_assignments(self, timer: ReportTimer) -> CurrentAssignmentsReport:
        errors: List[SectionError] = []
        due_after, due_before = self._window(self.config.future_cutoff_days)

        courses, _ = await self._fetch_courses(
            timer, errors, include_terms=True, include_teachers=False, include_total_scores=False
        )

        stopwatch = timer.start()
        worker = partial(
            self._current_assignments_for, timer, due_after, due_before, self.config.per_page
        )
        results = await self._fan_out(courses, worker)
        timer.record("assignments", stopwatch)

        stopwatch = timer.start()
        assignments = sort_by_due_date(
            a for result in results if not isinstance(result, Exception) for a in result
        )
        timer.record("processing", stopwatch)

        return CurrentAssignmentsReport(
            assignments=assignments,
            count=len(assignments),
            errors=errors,
            timing=timer.finish(),
        )

    # ------------------------------------------------------------------
    # Two-stage
    # ------------------------------------------------------------------
    async def two_stage(self) -> TwoStageReport:
        """
        Stage 1: current-term courses (allow-list) and their announcements.
        Stage 2: assignments for those courses over the longer window.
        """
        timer = ReportTimer()
        return await self._guarded(
            "Failed to fetch two-stage data", timer, partial(self._two_stage, timer)
        )

    async def _two_stage(self, timer: ReportTimer) -> TwoStageReport:
        errors: List[SectionError] = []

        # Stage 1
        stage1 = timer.start()

        async def fetch_courses():
            return expect_items(await self.client.list_current_term_courses(), "courses")

        courses, _ = await self._fetch_section("courses", timer, errors, fetch_courses, [])
        announcements, _ = await self._fetch_section(
            "announcements", timer, errors, partial(self._announcements, courses), []
        )
        timer.record("stage1", stage1)

        if not courses:
            return TwoStageReport(
                errors=errors,
                timing=timer.finish(),
                error="No current-term courses found",
            )

        term_courses = []
        for course in courses:
            grade = extract_grade(course, require_score=True)
            term_courses.append(TermCourse(
                id=course.get("id"),
                name=course.get("name"),
                course_code=course.get("course_code"),
                term=term_name(course),
                grade=grade["grade"],
                grade_letter=grade["grade_letter"],
                teachers=course.get("teachers") or [],
            ))

        # Stage 2
        stage2 = timer.start()
        due_after, due_before = self._window(self.config.two_stage_future_cutoff_days)
        results = await self._fan_out(
            courses, partial(self._course_assignments, timer, due_after, due_before)
        )
        course_assignments = [
            result if not isinstance(result, Exception) else CourseAssignments(
                course_id=course.get("id"),
                course_name=course.get("name"),
                course_code=course.get("course_code"),
                error=str(result),
            )
            for course, result in zip(courses, results)
        ]
        timer.record("stage2", stage2)

        stopwatch = timer.start()
        assignments = sort_by_due_date(
            a for entry in course_assignments for a in (entry.assignments or [])
        )
        timer.record("processing", stopwatch)

        return TwoStageReport(
            courses=term_courses,
            announcements=announcements,
            course_assignments=course_assignments,
            assignments=assignments,
            errors=errors,
            timing=timer.finish(),
        )

    async def _course_assignments(
        self,
        timer: ReportTimer,
        due_after: datetime,
        due_before: datetime,
        course: Dict[str, Any],
    ) -> CourseAssignments:
        course_id = course.get("id")
        stopwatch = Stopwatch()
        try:
            assignments = expect_items(
                await self.client.list_course_assignments(
                    course_id,
                    include_submission=True,
                    due_after=due_after,
                    due_before=due_before,
                    order_by="due_at",
                    per_page=self.config.two_stage_per_page,
                ),
                f"assignments for course {course_id}",
            )
        except Exception as e:
            logger.error(f"Error processing course {course_id}: {e}")
            timer.record_course(course_id, course.get("name"), error=str(e))
            return CourseAssignments(
                course_id=course_id,
                course_name=course.get("name"),
                course_code=course.get("course_code"),
                error=str(e),
            )

        duration_ms = stopwatch.elapsed_ms()
        timer.record_course(
            course_id, course.get("name"), duration_ms=duration_ms, assignment_count=len(assignments)
        )
        return CourseAssignments(
            course_id=course_id,
            course_name=course.get("name"),
            course_code=course.get("course_code"),
            assignments=annotate_with_course(assignments, course),
            duration_ms=duration_ms,
        )

    # ------------------------------------------------------------------
    # Grades
    # ------------------------------------------------------------------
    async def current_grades(self) -> GradesReport:
        """Grade per available course, read from enrollment total scores."""
        timer = ReportTimer()
        return await self._guarded(
            "Failed to fetch current grades", timer, partial(self._grades_report, timer, False)
        )

    async def current_term_grades(self) -> GradesReport:
        """Grades restricted to courses whose term name matches the current season."""
        timer = ReportTimer()
        return await self._guarded(
            "Failed to fetch current term grades", timer, partial(self._grades_report, timer, True)
        )

    async def _grades_report(self, timer: ReportTimer, current_term_only: bool) -> GradesReport:
        errors: List[SectionError] = []
        season, pattern = current_term_pattern(self._today())

        courses, _ = await self._fetch_courses(
            timer, errors, include_terms=True, include_teachers=False, include_total_scores=True
        )

        stopwatch = timer.start()
        if current_term_only:
            courses = filter_current_term(courses, self._today())

        grades = [
            CourseGrade(
                course_id=course.get("id"),
                course_name=course.get("name"),
                course_code=course.get("course_code"),
                term=term_name(course),
                **extract_grade(course),
            )
            for course in courses
        ]
        grades.sort(key=lambda g: (g.course_name is None, str(g.course_name or "")))
        timer.record("processing", stopwatch)

        return GradesReport(
            grades=grades,
            count=len(grades),
            current_term=season if current_term_only else None,
            current_term_pattern=pattern.pattern if current_term_only else None,
            errors=errors,
            timing=timer.finish(),
        )

    async def grades(self) -> SubmissionsReport:
        """The user's submissions per course; courses that refuse access get an empty list."""
        timer = ReportTimer()
        return await self._guarded("Failed to fetch grades", timer, partial(self._grades, timer))

    async def _grades(self, timer: ReportTimer) -> SubmissionsReport:
        errors: List[SectionError] = []
        courses, _ = await self._fetch_courses(
            timer, errors, include_terms=True, include_teachers=False, include_total_scores=False
        )

        async def course_submissions(course: Dict[str, Any]) -> CourseSubmissions:
            submissions = await self.client.list_course_submissions(course.get("id"))
            return CourseSubmissions(
                course_id=course.get("id"),
                course_name=course.get("name"),
                course_code=course.get("course_code"),
                term=term_name(course),
                submissions=submissions if isinstance(submissions, list) else [],
            )

        stopwatch = timer.start()
        results = await self._fan_out(courses, course_submissions)
        entries = []
        for course, result in zip(courses, results):
            if isinstance(result, Exception):
                logger.error(f"Error fetching submissions for course {course.get('id')}: {result}")
                result = CourseSubmissions(
                    course_id=course.get("id"),
                    course_name=course.get("name"),
                    course_code=course.get("course_code"),
                    term=term_name(course),
                    error=str(result),
                )
            entries.append(result)
        timer.record("submissions", stopwatch)

        return SubmissionsReport(courses=entries, errors=errors, timing=timer.finish())
