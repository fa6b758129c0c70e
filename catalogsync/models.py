"""Sync data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Union


@dataclass(frozen=True, slots=True)
class CatalogItem:
    id: str
    name: str
    description: str
    price_minor: int
    stock: int
    images: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    category: str | None = None
    currency: str = "USD"
    slug: str | None = None


@dataclass(slots=True)
class PlatformCredential:
    merchant_id: str
    platform: str
    access_token: str
    refresh_token: str | None = None
    shop_id: str | None = None
    catalog_id: str | None = None
    page_id: str | None = None
    business_id: str | None = None
    board_id: str | None = None


@dataclass(slots=True)
class PlatformContext:
    """Platform-side state resolved before any item is pushed."""

    platform: str
    container_id: str
    identifiers: dict[str, str] = field(default_factory=dict)
    categories: dict[str, str] = field(default_factory=dict)
    external_ids: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class PlatformRequest:
    method: str
    path: str
    params: dict[str, Any] = field(default_factory=dict)
    json: Any = None
    data: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class Published:
    status: ClassVar[str] = "published"
    external_id: str


@dataclass(frozen=True, slots=True)
class Failed:
    status: ClassVar[str] = "failed"
    reason: str
    retryable: bool


@dataclass(frozen=True, slots=True)
class Skipped:
    status: ClassVar[str] = "skipped"
    reason: str


SyncOutcome = Union[Published, Failed, Skipped]


@dataclass(slots=True)
class BatchResult:
    total: int
    published: int = 0
    failed: int = 0
    skipped: int = 0
    chunks_started: int = 0
    auth_expired: bool = False
    cancelled: bool = False
    unresolved: list[CatalogItem] = field(default_factory=list)

    def record(self, outcome: SyncOutcome) -> None:
        if isinstance(outcome, Published):
            self.published += 1
        elif isinstance(outcome, Failed):
            self.failed += 1
        else:
            self.skipped += 1


@dataclass(slots=True)
class SyncReport:
    """Counts for one run.

    ``not_attempted`` holds items left without a final outcome. That includes an
    item whose own request hit expired credentials; it has a retryable failed
    ledger row and is pushed again by the next run.
    """

    success: bool
    synced: int = 0
    failed: int = 0
    skipped: int = 0
    not_attempted: int = 0
    auth_required: bool = False
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
