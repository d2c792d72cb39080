import argparse
import asyncio
import json
import logging

from dashboard.config import get_config
from dashboard.reports.aggregator import AggregationError, Aggregator
from services.canvas_client import CanvasClient
from services.utils.grades import term_name

REPORTS = {
    "all-data": "all_data",
    "dashboard": "dashboard",
    "current-assignments": "current_assignments",
    "two-stage": "two_stage",
    "grades": "grades",
    "current-grades": "current_grades",
    "current-term-grades": "current_term_grades",
}


async def list_courses() -> None:
    """Print available courses with their terms, to fill CURRENT_TERM_COURSE_IDS."""
    config = get_config()
    async with CanvasClient(config) as client:
        courses = await client.list_courses(include_teachers=False, include_total_scores=False)

    if not isinstance(courses, list):
        print(f"Could not list courses: {courses}")
        return

    for course in courses:
        print(
            f"{str(course.get('id')):>8}  {course.get('course_code') or '':<16} "
            f"{term_name(course) or '-':<20} {course.get('name')}"
        )
    print(f"\n{len(courses)} courses")


async def run_report(report: str) -> None:
    """Run one aggregation against the configured Canvas instance and print it as JSON."""
    config = get_config()
    print(f"Running {report} against {config.base_url}")

    async with CanvasClient(config) as client:
        aggregator = Aggregator(client, config)
        result = await getattr(aggregator, REPORTS[report])()

    print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
    print(f"Completed in {result.timing.total_formatted}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run a Canvas dashboard report")
    parser.add_argument("report", choices=sorted(REPORTS) + ["courses"])
    parser.add_argument("-v", "--verbose", action="store_true", help="Log upstream requests")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.report == "courses":
            asyncio.run(list_courses())
        else:
            asyncio.run(run_report(args.report))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
    except AggregationError as e:
        print(f"Report failed: {e.message} ({e.details}) after {e.timing.total_formatted}")
        exit(1)
    except Exception as e:
        print(f"Fatal error: {str(e)}")
        exit(1)


if __name__ == "__main__":
    main()
