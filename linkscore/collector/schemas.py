"""
Provider Response Shapes

Pydantic models for the parts of DataForSEO responses the engine reads.
Responses are validated once at the client boundary; anything that does not
fit raises ResponseShapeError instead of leaking loosely-typed dicts inward.
"""

from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from linkscore.errors import ResponseShapeError

SUCCESS_CODE = 20000
TASK_SUCCESS_CODES = (20000, 20100)

M = TypeVar("M", bound=BaseModel)


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ============================================================================
# ENVELOPE
# ============================================================================

class TaskResult(_ProviderModel):
    """One entry of task.result."""
    total_count: Optional[int] = None
    items_count: Optional[int] = None
    items: List[Dict[str, Any]] = []

    @field_validator("items", mode="before")
    @classmethod
    def _null_items(cls, value):
        return value or []


class ProviderTask(_ProviderModel):
    """One task of a provider response."""
    id: Optional[str] = None
    status_code: int
    status_message: str = ""
    cost: float = 0.0
    result: List[TaskResult] = []

    @field_validator("result", mode="before")
    @classmethod
    def _null_result(cls, value):
        return value or []

    @property
    def succeeded(self) -> bool:
        return self.status_code in TASK_SUCCESS_CODES


class ProviderResponse(_ProviderModel):
    """Top-level provider response envelope."""
    status_code: int
    status_message: str = ""
    cost: float = 0.0
    tasks: List[ProviderTask] = []

    @field_validator("tasks", "cost", mode="before")
    @classmethod
    def _null_fields(cls, value, info):
        if value is None:
            return [] if info.field_name == "tasks" else 0.0
        return value

    @property
    def first_task(self) -> Optional[ProviderTask]:
        return self.tasks[0] if self.tasks else None

    def items(self) -> List[Dict[str, Any]]:
        """Items of the first result of the first task, or []."""
        task = self.first_task
        if task is None or not task.result:
            return []
        return task.result[0].items

    def typed_items(self, model: Type[M]) -> List[M]:
        """Validate the result items against an item model."""
        return parse_items(self.items(), model)


def parse_response(payload: Any) -> ProviderResponse:
    """
    Validate a decoded JSON body as a ProviderResponse.

    Raises:
        ResponseShapeError: If the body does not have the expected envelope
    """
    try:
        return ProviderResponse.model_validate(payload)
    except ValidationError as e:
        raise ResponseShapeError(
            f"Unexpected provider response shape: {e.error_count()} validation errors",
            response=payload if isinstance(payload, dict) else None,
        ) from e


def parse_items(items: List[Dict[str, Any]], model: Type[M]) -> List[M]:
    try:
        return [model.model_validate(item) for item in items]
    except ValidationError as e:
        raise ResponseShapeError(
            f"Unexpected {model.__name__} shape: {e.error_count()} validation errors"
        ) from e


# ============================================================================
# ITEM SHAPES
# ============================================================================

class BacklinkItem(_ProviderModel):
    """backlinks/backlinks/live item (one_per_domain mode)."""
    domain_from: str
    domain_from_rank: Optional[float] = None
    backlink_spam_score: Optional[float] = None
    backlinks: Optional[int] = None
    referring_pages: Optional[int] = None
    first_seen: Optional[str] = None


class TrafficItem(_ProviderModel):
    """bulk_traffic_estimation item."""
    target: str
    metrics: Optional[Dict[str, Any]] = None

    @property
    def organic_etv(self) -> float:
        organic = (self.metrics or {}).get("organic") or {}
        return float(organic.get("etv") or 0.0)


class SerpItem(_ProviderModel):
    """serp/google/organic item."""
    type: str = "organic"
    domain: Optional[str] = None
    url: Optional[str] = None
    rank_absolute: Optional[int] = None


class IntersectionItem(_ProviderModel):
    """
    backlinks/domain_intersection item.

    Accepts both the flat shape (domain, rank, ...) and the nested
    per-target shape under "domain_intersection".
    """
    domain: Optional[str] = None
    rank: Optional[float] = None
    domain_from_rank: Optional[float] = None
    backlinks_spam_score: Optional[float] = None
    referring_domains: Optional[int] = None
    intersections: Optional[int] = None
    domain_intersection: Optional[Dict[str, Dict[str, Any]]] = None

    def _first_entry(self) -> Dict[str, Any]:
        if not self.domain_intersection:
            return {}
        return next(iter(self.domain_intersection.values())) or {}

    @property
    def resolved_domain(self) -> str:
        return self.domain or self._first_entry().get("target") or ""

    @property
    def resolved_rank(self) -> float:
        if self.rank is not None:
            return self.rank
        if self.domain_from_rank is not None:
            return self.domain_from_rank
        return float(self._first_entry().get("rank") or 0)

    @property
    def resolved_spam_score(self) -> float:
        if self.backlinks_spam_score is not None:
            return self.backlinks_spam_score
        return float(self._first_entry().get("backlinks_spam_score") or 0)

    @property
    def resolved_referring_domains(self) -> int:
        if self.referring_domains is not None:
            return self.referring_domains
        return int(self._first_entry().get("referring_domains") or 0)

    @property
    def resolved_intersections(self) -> Optional[int]:
        if self.intersections is not None:
            return self.intersections
        if self.domain_intersection:
            return len(self.domain_intersection)
        return None
