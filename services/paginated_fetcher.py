"""
Paginated fetching against the Canvas REST API.

Walks rel="next" Link headers until exhaustion or a page cap, concatenating
list bodies. Non-list bodies are returned as-is. A 403 is kept apart from
every other failure so callers can carry on without the resource.
"""
import asyncio
import logging
import time
from typing import Any, List, Optional, Union
from urllib.parse import parse_qs, urlsplit

import aiohttp

from dashboard.config import CanvasConfig
from dashboard.shared import Denied, Failed, FetchResult, Items, Single
from services.utils.query_params import ResourcePath

logger = logging.getLogger(__name__)


class CanvasAPIError(Exception):
    """A request to the Canvas API failed."""

    def __init__(self, message: str, status: Optional[int] = None, path: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.path = path


class PermissionDeniedError(CanvasAPIError):
    """The Canvas API answered 403 for a resource."""

    def __init__(self, path: Optional[str] = None):
        super().__init__("Permission denied", status=403, path=path)


def _page_size(path: str) -> Optional[int]:
    """per_page requested by a path, if any."""
    values = parse_qs(urlsplit(path).query).get("per_page")
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


def _with_cache_buster(path: str) -> str:
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}_={int(time.time() * 1000)}"


class PaginatedFetcher:
    def __init__(self, session: aiohttp.ClientSession, config: CanvasConfig):
        self.session = session
        self.config = config

    def _next_path(self, response: aiohttp.ClientResponse) -> Optional[str]:
        """Relative continuation path from the Link header, or None to stop."""
        try:
            next_link = response.links.get("next")
        except ValueError:
            return None
        if not next_link or "url" not in next_link:
            return None

        # An empty target resolves to the current page itself
        if next_link["url"] == response.url:
            logger.warning(f"Ignoring next link pointing at the current page: {response.url}")
            return None

        next_url = str(next_link["url"])
        base_url = self.config.base_url
        remainder = next_url[len(base_url):]
        if not next_url.startswith(base_url) or not remainder.startswith(("/", "?")):
            logger.warning(f"Ignoring next link outside {base_url}: {next_url}")
            return None
        return remainder

    async def _get_page(self, path: str) -> tuple[Any, Optional[str]]:
        """GET one page. Returns (decoded body, next path)."""
        url = f"{self.config.base_url}{_with_cache_buster(path)}"
        try:
            async with self.session.get(url) as response:
                if response.status == 403:
                    raise PermissionDeniedError(path)
                if response.status >= 400:
                    body = await response.text()
                    raise CanvasAPIError(
                        f"Request failed with status {response.status}: {body[:200]}",
                        status=response.status,
                        path=path,
                    )
                data = await response.json(content_type=None)
                return data, self._next_path(response)
        except CanvasAPIError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise CanvasAPIError(f"{type(e).__name__}: {e}", path=path) from e

    async def fetch_result(
        self,
        path: Union[str, ResourcePath],
        silent_errors: bool = False,
        max_pages: Optional[int] = None,
        log_timing: bool = False,
    ) -> FetchResult:
        """
        Fetch every page of `path` and return the tagged result.

        Args:
            path: Path below the base URL, with its query string
            silent_errors: Turn any failure into an empty list
            max_pages: Page cap (defaults to the configured cap)
            log_timing: Log per-page timings once done

        Returns:
            Items, Single, Denied or Failed
        """
        start_path = str(path)
        page_size = _page_size(start_path)
        if max_pages is None:
            max_pages = self.config.max_pages

        all_items: List[Any] = []
        next_path: Optional[str] = start_path
        page_count = 0
        started = time.monotonic()
        page_timings = []
        seen = {start_path}

        while next_path and page_count < max_pages:
            page_started = time.monotonic()
            page_count += 1

            try:
                data, following = await self._get_page(next_path)
            except PermissionDeniedError:
                if silent_errors:
                    return Items(items=[])
                logger.warning(
                    f"Permission denied (403) when accessing {next_path}. "
                    "This is normal if you don't have access to this resource."
                )
                return Denied(path=next_path)
            except CanvasAPIError as e:
                logger.error(f"Error fetching data from {next_path}: {e}")
                if silent_errors:
                    return Items(items=[])
                return Failed(path=next_path, message=str(e), status=e.status)

            if log_timing:
                page_timings.append({
                    "page": page_count,
                    "path": next_path,
                    "duration_ms": int((time.monotonic() - page_started) * 1000),
                    "size": len(data) if isinstance(data, list) else 1,
                })

            if not isinstance(data, list):
                if log_timing:
                    logger.info(
                        f"Fetched {start_path} in {int((time.monotonic() - started) * 1000)}ms "
                        f"({page_count} pages)"
                    )
                return Single(item=data)

            all_items.extend(data)

            # A short or empty page is the last one
            if not data or (page_size and len(data) < page_size):
                break

            if following in seen:
                logger.warning(f"Next link for {start_path} repeats an earlier page: {following}")
                break
            seen.add(following)
            next_path = following

        if log_timing:
            logger.info(
                f"Fetched {len(all_items)} items from {start_path} in "
                f"{int((time.monotonic() - started) * 1000)}ms ({page_count} pages)"
            )
            logger.info(f"Page timings: {page_timings}")

        return Items(items=all_items)

    async def fetch(
        self,
        path: Union[str, ResourcePath],
        silent_errors: bool = False,
        max_pages: Optional[int] = None,
        log_timing: bool = False,
    ) -> Any:
        """
        Fetch `path` and unwrap the result.

        Returns a list of items, a single object, or the permission-denied
        marker {"error": "Permission denied", "status": 403}. Other failures
        raise CanvasAPIError unless silent_errors is set.
        """
        result = await self.fetch_result(
            path, silent_errors=silent_errors, max_pages=max_pages, log_timing=log_timing
        )
        if isinstance(result, Items):
            return result.items
        if isinstance(result, Single):
            return result.item
        if isinstance(result, Denied):
            return result.marker()
        raise CanvasAPIError(result.message, status=result.status, path=result.path)
