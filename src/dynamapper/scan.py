from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .conditions import FilterConditionChain
from .errors import ValidationError
from .expressions import ExpressionContext
from .query import ReadBuilder
from .stream import PageSource

if TYPE_CHECKING:
    from .model import Model


class Scan(ReadBuilder):
    """Unordered read of a table or index, optionally split into parallel segments."""

    operation = "scan"

    def __init__(
        self,
        model: Model,
        *,
        total_segments: int | None = None,
        max_workers: int | None = None,
    ) -> None:
        super().__init__(model)
        self._segment: int | None = None
        self._total_segments: int | None = None
        self._parallel = False
        self._max_workers = max_workers
        if total_segments is not None:
            if total_segments <= 0:
                raise ValidationError("total_segments must be > 0")
            if max_workers is not None and max_workers <= 0:
                raise ValidationError("max_workers must be > 0")
            self._total_segments = total_segments
            self._parallel = True

    def where(self, attribute: str) -> FilterConditionChain[Scan]:
        return self.filter(attribute)

    def segments(self, segment: int, total_segments: int) -> Scan:
        if self._parallel:
            raise ValidationError("segments cannot be set on a parallel scan")
        if total_segments <= 0 or segment < 0 or segment >= total_segments:
            raise ValidationError("invalid segment/total_segments")
        self._segment = segment
        self._total_segments = total_segments
        return self

    def _base_request(self, ctx: ExpressionContext) -> dict[str, Any]:
        req = super()._base_request(ctx)
        if self._start_segment is not None and self._start_segment != self._segment:
            raise ValidationError(f"cursor belongs to segment {self._start_segment}")
        if self._segment is not None and self._total_segments is not None:
            req["Segment"] = self._segment
            req["TotalSegments"] = self._total_segments
        return req

    def _sources(self, req: dict[str, Any]) -> list[PageSource]:
        if not self._parallel or self._total_segments is None:
            return [
                PageSource(
                    fetch=self._fetcher(req),
                    start_key=req.get("ExclusiveStartKey"),
                    index=self._index,
                    segment=self._segment,
                )
            ]

        if self._start_key is not None:
            raise ValidationError("a parallel scan cannot resume from a single start key")

        sources: list[PageSource] = []
        for segment in range(self._total_segments):
            seg_req = dict(req, Segment=segment, TotalSegments=self._total_segments)
            sources.append(PageSource(fetch=self._fetcher(seg_req), index=self._index, segment=segment))
        return sources
