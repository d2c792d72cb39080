"""
Structured query-string building for Canvas resource paths
"""
from typing import Any, Iterable, List, Optional, Tuple
from urllib.parse import urlencode


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


class QueryParams:
    """
    Ordered, multi-valued mapping of query parameters.

    When `allowed` is given, every key must belong to it; this is the fixed
    schema of the resource the parameters are built for.
    """

    def __init__(self, allowed: Optional[Iterable[str]] = None):
        self.allowed = frozenset(allowed) if allowed is not None else None
        self._pairs: List[Tuple[str, str]] = []

    def _check_key(self, key: str) -> None:
        if self.allowed is not None and key not in self.allowed:
            raise ValueError(
                f"Unsupported query parameter '{key}' (allowed: {', '.join(sorted(self.allowed))})"
            )

    def add(self, key: str, value: Any) -> "QueryParams":
        """Append one value for key. None values are skipped."""
        self._check_key(key)
        if value is not None:
            self._pairs.append((key, _format_value(value)))
        return self

    def extend(self, key: str, values: Iterable[Any]) -> "QueryParams":
        """Append several values for a multi-valued key such as include[]."""
        for value in values:
            self.add(key, value)
        return self

    def encode(self) -> str:
        return urlencode(self._pairs, safe="[]")

    def __len__(self) -> int:
        return len(self._pairs)

    def __repr__(self) -> str:
        return f"QueryParams({self._pairs!r})"


class ResourcePath:
    """An upstream endpoint plus its query parameters, rendered once at the fetcher."""

    def __init__(self, path: str, params: Optional[QueryParams] = None):
        self.path = path
        self.params = params if params is not None else QueryParams()

    def render(self) -> str:
        if not len(self.params):
            return self.path
        return f"{self.path}?{self.params.encode()}"

    def __str__(self) -> str:
        return self.render()

    def __repr__(self) -> str:
        return f"ResourcePath({self.render()!r})"
