import logging

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dashboard.config import CanvasConfig, get_config
from dashboard.reports.aggregator import AggregationError, Aggregator
from dashboard.shared import (
    AllDataReport,
    CurrentAssignmentsReport,
    DashboardReport,
    GradesReport,
    SubmissionsReport,
    TwoStageReport,
)
from services.canvas_client import CanvasClient

logger = logging.getLogger(__name__)

app = FastAPI(title="Canvas Dashboard")

origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def get_canvas_client(config: CanvasConfig = Depends(get_config)):
    """
    Request-scoped Canvas client.

    The aiohttp session is opened for the request and closed once the
    response has been produced.
    """
    async with CanvasClient(config) as client:
        yield client


def get_aggregator(
    client: CanvasClient = Depends(get_canvas_client),
    config: CanvasConfig = Depends(get_config),
) -> Aggregator:
    return Aggregator(client, config)


@app.exception_handler(AggregationError)
async def aggregation_error_handler(request: Request, exc: AggregationError):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=exc.to_dict(),
    )


def _upstream_failure(what: str, e: Exception) -> HTTPException:
    logger.error(f"Failed to fetch {what}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to fetch {what}: {str(e)}",
    )


@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ---------------------------------------------------------------------------
# Passthrough resources
# ---------------------------------------------------------------------------
@app.get("/api/user")
async def get_user(client: CanvasClient = Depends(get_canvas_client)):
    """Profile of the token's owner."""
    try:
        return await client.get_self()
    except Exception as e:
        raise _upstream_failure("user data", e)


@app.get("/api/todo")
async def get_todo(client: CanvasClient = Depends(get_canvas_client)):
    try:
        return await client.list_todo_items()
    except Exception as e:
        raise _upstream_failure("todo items", e)


@app.get("/api/courses")
async def get_courses(client: CanvasClient = Depends(get_canvas_client)):
    """Available courses with term and teachers."""
    try:
        return await client.list_courses(include_total_scores=False)
    except Exception as e:
        raise _upstream_failure("courses", e)


@app.get("/api/courses/{course_id}/assignments")
async def get_course_assignments(
    course_id: int, client: CanvasClient = Depends(get_canvas_client)
):
    try:
        return await client.list_course_assignments(course_id)
    except Exception as e:
        raise _upstream_failure(f"assignments for course {course_id}", e)


@app.get("/api/courses/{course_id}/assignments/{assignment_id}/submissions")
async def get_assignment_submissions(
    course_id: int,
    assignment_id: int,
    client: CanvasClient = Depends(get_canvas_client),
):
    try:
        return await client.list_assignment_submissions(course_id, assignment_id)
    except Exception as e:
        raise _upstream_failure(f"submissions for assignment {assignment_id}", e)


@app.get("/api/announcements")
async def get_announcements(client: CanvasClient = Depends(get_canvas_client)):
    """Announcements across every available course."""
    try:
        courses = await client.list_courses(include_teachers=False, include_total_scores=False)
        if not isinstance(courses, list):
            return []
        return await client.list_announcements(courses)
    except Exception as e:
        raise _upstream_failure("announcements", e)


@app.get("/api/calendar_events")
async def get_calendar_events(client: CanvasClient = Depends(get_canvas_client)):
    try:
        return await client.list_calendar_events()
    except Exception as e:
        raise _upstream_failure("calendar events", e)


# ---------------------------------------------------------------------------
# Aggregated reports
# ---------------------------------------------------------------------------
@app.get("/api/current-assignments", response_model=CurrentAssignmentsReport)
async def get_current_assignments(aggregator: Aggregator = Depends(get_aggregator)):
    return await aggregator.current_assignments()


@app.get("/api/dashboard", response_model=DashboardReport)
async def get_dashboard(aggregator: Aggregator = Depends(get_aggregator)):
    return await aggregator.dashboard()


@app.get("/api/all-data", response_model=AllDataReport)
async def get_all_data(aggregator: Aggregator = Depends(get_aggregator)):
    """Everything the token can see, with per-section accessibility flags."""
    return await aggregator.all_data()


@app.get("/api/grades", response_model=SubmissionsReport)
async def get_grades(aggregator: Aggregator = Depends(get_aggregator)):
    return await aggregator.grades()


@app.get("/api/current-grades", response_model=GradesReport)
async def get_current_grades(aggregator: Aggregator = Depends(get_aggregator)):
    return await aggregator.current_grades()


@app.get("/api/current-term-grades", response_model=GradesReport)
async def get_current_term_grades(aggregator: Aggregator = Depends(get_aggregator)):
    return await aggregator.current_term_grades()


@app.get("/api/two-stage-data", response_model=TwoStageReport)
async def get_two_stage_data(aggregator: Aggregator = Depends(get_aggregator)):
    return await aggregator.two_stage()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=get_config().port)


if __name__ == "__main__":
    main()
