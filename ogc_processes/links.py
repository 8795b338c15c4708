"""
Link/Cursor Builder - offset pagination links for listable resources.

Links are always rebuilt from the structured ``PageQuery``; the incoming URL
is never edited. Unrelated query parameters (filters, ``f``, ...) travel in
``PageQuery.extra`` and are re-encoded in a stable order, so the same query
always yields byte-identical links no matter how the client formatted it.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

from pydantic import BaseModel, Field

from .errors import ValidationError
from .models import OGCLink


PAGING_PARAMS = ("limit", "offset")


class PageQuery(BaseModel):
    """
    Structured listing query.

    ``limit`` is optional on the wire; ``resolve_page`` applies the
    configured default and maximum.
    """
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)
    extra: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "PageQuery":
        """
        Build from raw query parameters.

        Raises:
            ValidationError: limit/offset are not integers in range
        """
        values: Dict[str, Any] = {}
        for name in PAGING_PARAMS:
            if name in params:
                try:
                    values[name] = int(params[name])
                except (TypeError, ValueError):
                    raise ValidationError(f"Query parameter '{name}' must be an integer") from None

        if values.get("limit") is not None and values["limit"] < 1:
            raise ValidationError("Query parameter 'limit' must be a positive integer")
        if values.get("offset", 0) < 0:
            raise ValidationError("Query parameter 'offset' must be zero or positive")

        extra = {k: v for k, v in params.items() if k not in PAGING_PARAMS}
        return cls(extra=extra, **values)

    def to_params(self, limit: Optional[int], offset: Optional[int]) -> List[Tuple[str, Any]]:
        """Ordered (name, value) pairs: paging first, then extras sorted by name."""
        pairs: List[Tuple[str, Any]] = []
        if limit is not None:
            pairs.append(("limit", limit))
        if offset is not None:
            pairs.append(("offset", offset))
        for name in sorted(self.extra):
            value = self.extra[name]
            if isinstance(value, (list, tuple)):
                pairs.extend((name, v) for v in value)
            else:
                pairs.append((name, value))
        return pairs


@dataclass(frozen=True)
class PageLinks:
    self_link: OGCLink
    prev: Optional[OGCLink] = None
    next: Optional[OGCLink] = None

    def as_list(self) -> List[OGCLink]:
        return [link for link in (self.self_link, self.prev, self.next) if link is not None]


def resolve_page(query: PageQuery, default_limit: int, max_limit: int) -> Tuple[int, int]:
    """
    Effective (limit, offset) for a query.

    A missing limit takes the default; an oversized one is clamped to
    ``max_limit``.
    """
    limit = query.limit if query.limit is not None else default_limit
    return min(limit, max_limit), query.offset


def _href(base_url: str, pairs: List[Tuple[str, Any]]) -> str:
    if not pairs:
        return base_url
    return f"{base_url}?{urlencode(pairs)}"


def build_page_links(
    base_url: str,
    query: PageQuery,
    total_count: int,
    limit: int,
    offset: int,
    media_type: str = "application/json"
) -> PageLinks:
    """
    Build self/prev/next links for one page of a listing.

    Args:
        base_url: Resource URL without query string (e.g. https://host/api/jobs)
        query: The structured query as issued
        total_count: Number of matching items ignoring paging
        limit: Effective page size
        offset: Effective offset

    Returns:
        PageLinks where ``prev`` exists iff offset > 0 and ``next`` exists iff
        offset + limit < total_count
    """
    # self echoes only what the client actually sent
    issued = query.model_fields_set
    self_pairs = query.to_params(
        limit=query.limit if "limit" in issued else None,
        offset=query.offset if "offset" in issued else None
    )
    self_link = OGCLink(href=_href(base_url, self_pairs), rel="self",
                        type=media_type, title="This document")

    prev_link = None
    if offset > 0:
        prev_link = OGCLink(
            href=_href(base_url, query.to_params(limit=limit, offset=max(0, offset - limit))),
            rel="prev",
            type=media_type,
            title="Previous page"
        )

    next_link = None
    if offset + limit < total_count:
        next_link = OGCLink(
            href=_href(base_url, query.to_params(limit=limit, offset=offset + limit)),
            rel="next",
            type=media_type,
            title="Next page"
        )

    return PageLinks(self_link=self_link, prev=prev_link, next=next_link)
