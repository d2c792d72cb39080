"""
Canvas resource client: one method per upstream resource, each shaping its
query parameters and delegating to the paginated fetcher.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from dashboard.config import CanvasConfig
from services.paginated_fetcher import PaginatedFetcher
from services.utils.query_params import QueryParams, ResourcePath

logger = logging.getLogger(__name__)

# Accepted query keys per resource
COURSES_QUERY = {"state[]", "include[]"}
ASSIGNMENTS_QUERY = {"per_page", "order_by", "include[]", "due_after", "due_before"}
ANNOUNCEMENTS_QUERY = {"context_codes[]", "latest_only", "start_date"}
MODULES_QUERY = {"include[]"}
COURSE_SUBMISSIONS_QUERY = {"student_ids[]"}


class CanvasClient:
    """
    Request-scoped Canvas API client.

    Use as an async context manager; it owns an aiohttp session carrying the
    bearer token unless a session is passed in.
    """

    def __init__(self, config: CanvasConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None
        self.fetcher: Optional[PaginatedFetcher] = (
            PaginatedFetcher(session, config) if session is not None else None
        )

    async def __aenter__(self) -> "CanvasClient":
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            self._session = aiohttp.ClientSession(headers=self.config.headers, timeout=timeout)
            self.fetcher = PaginatedFetcher(self._session, self.config)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _fetch(self, path: ResourcePath | str, silent_errors: bool = False) -> Any:
        if self.fetcher is None:
            raise RuntimeError("CanvasClient must be used inside 'async with'")
        return await self.fetcher.fetch(path, silent_errors=silent_errors)

    # ------------------------------------------------------------------
    # User
    # ------------------------------------------------------------------
    async def get_self(self) -> Any:
        return await self._fetch("/api/v1/users/self")

    async def list_todo_items(self) -> Any:
        return await self._fetch("/api/v1/users/self/todo")

    async def list_calendar_events(self) -> Any:
        return await self._fetch("/api/v1/calendar_events")

    async def list_conversations(self) -> Any:
        return await self._fetch("/api/v1/conversations")

    # ------------------------------------------------------------------
    # Courses
    # ------------------------------------------------------------------
    async def list_courses(
        self,
        include_terms: bool = True,
        include_teachers: bool = True,
        include_total_scores: bool = True,
    ) -> Any:
        """Available courses, optionally enriched with term, teachers and total scores."""
        params = QueryParams(COURSES_QUERY).add("state[]", "available")
        if include_terms:
            params.add("include[]", "term")
        if include_teachers:
            params.add("include[]", "teachers")
        if include_total_scores:
            params.add("include[]", "total_scores")
        return await self._fetch(ResourcePath("/api/v1/courses", params))

    async def list_current_term_courses(
        self,
        include_terms: bool = True,
        include_teachers: bool = True,
        include_total_scores: bool = True,
    ) -> List[Dict[str, Any]]:
        """Available courses restricted to the configured current-term allow-list."""
        course_ids = self.config.current_term_course_ids
        if not course_ids:
            logger.warning("No current-term course IDs configured (CURRENT_TERM_COURSE_IDS)")
            return []

        courses = await self.list_courses(
            include_terms=include_terms,
            include_teachers=include_teachers,
            include_total_scores=include_total_scores,
        )
        if not isinstance(courses, list):
            return []
        return [course for course in courses if course.get("id") in course_ids]

    async def list_course_assignments(
        self,
        course_id,
        include_submission: bool = False,
        due_after: Optional[datetime | str] = None,
        due_before: Optional[datetime | str] = None,
        order_by: str = "due_at",
        per_page: Optional[int] = None,
    ) -> Any:
        params = (
            QueryParams(ASSIGNMENTS_QUERY)
            .add("per_page", per_page or self.config.per_page)
            .add("order_by", order_by)
        )
        if include_submission:
            params.add("include[]", "submission")
        params.add("due_after", due_after)
        params.add("due_before", due_before)
        return await self._fetch(
            ResourcePath(f"/api/v1/courses/{course_id}/assignments", params)
        )

    async def list_assignment_submissions(self, course_id, assignment_id, silent_errors: bool = False) -> Any:
        return await self._fetch(
            f"/api/v1/courses/{course_id}/assignments/{assignment_id}/submissions",
            silent_errors=silent_errors,
        )

    async def list_course_submissions(self, course_id, silent_errors: bool = True) -> Any:
        """The current user's submissions in a course. Permission failures are expected here."""
        params = QueryParams(COURSE_SUBMISSIONS_QUERY).add("student_ids[]", "self")
        return await self._fetch(
            ResourcePath(f"/api/v1/courses/{course_id}/students/submissions", params),
            silent_errors=silent_errors,
        )

    async def list_course_modules(self, course_id) -> Any:
        params = QueryParams(MODULES_QUERY).add("include[]", "items")
        return await self._fetch(ResourcePath(f"/api/v1/courses/{course_id}/modules", params))

    async def list_discussion_topics(self, course_id) -> Any:
        return await self._fetch(f"/api/v1/courses/{course_id}/discussion_topics")

    async def list_course_files(self, course_id) -> Any:
        return await self._fetch(f"/api/v1/courses/{course_id}/files")

    async def list_course_pages(self, course_id) -> Any:
        return await self._fetch(f"/api/v1/courses/{course_id}/pages")

    # ------------------------------------------------------------------
    # Announcements
    # ------------------------------------------------------------------
    async def list_announcements(
        self,
        courses: Sequence[Dict[str, Any]],
        latest_only: bool = False,
        start_date: Optional[str] = None,
    ) -> Any:
        """
        Announcements for the given courses.

        Announcements are scoped by course context, so an empty course list
        returns [] without calling the API.
        """
        context_codes = [f"course_{course['id']}" for course in courses]
        if not context_codes:
            return []

        params = (
            QueryParams(ANNOUNCEMENTS_QUERY)
            .extend("context_codes[]", context_codes)
            .add("latest_only", latest_only)
            .add("start_date", start_date or self.config.announcements_start_date)
        )
        return await self._fetch(ResourcePath("/api/v1/announcements", params))
