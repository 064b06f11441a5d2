"""Data types shared by the capture loop, the enrichment pipeline and the store."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Union

CATEGORIES = ("Indica", "Sativa", "Hybrid")
SOURCES = ("image", "text", "voice")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProfileItem:
    name: str
    intensity: int  # 1〜5
    emoji: str
    color: str  # hex, e.g. "#5B21B6"


@dataclass
class Terpene:
    name: str
    percentage: float
    effects: str = ""


@dataclass
class ProductRecord:
    """Enriched, validated output of the pipeline for one capture or query."""

    name: str
    category: str  # Indica | Sativa | Hybrid
    confidence: float  # 0〜100
    thc: float
    thc_min: float
    thc_max: float
    cbd: float = 1.0
    effect_profiles: list[ProfileItem] = field(default_factory=list)
    flavor_profiles: list[ProfileItem] = field(default_factory=list)
    terpenes: list[Terpene] = field(default_factory=list)
    medical_uses: list[str] = field(default_factory=list)
    description: str = ""
    source: str = "text"  # image | text | voice
    scanned_at: str = field(default_factory=_now)
    operator_id: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> ProductRecord:
        data = dict(data)
        data["effect_profiles"] = [
            ProfileItem(**p) for p in data.get("effect_profiles") or []
        ]
        data["flavor_profiles"] = [
            ProfileItem(**p) for p in data.get("flavor_profiles") or []
        ]
        data["terpenes"] = [Terpene(**t) for t in data.get("terpenes") or []]
        data["medical_uses"] = list(data.get("medical_uses") or [])
        return cls(**data)


@dataclass
class StabilityMetrics:
    recommendation: str
    is_acceptable: bool
    shake_level: float = 0.0


@dataclass
class DuplicateGroup:
    anchor_name: str
    members: list[ProductRecord]  # members[0] is the one to keep
    similarity: int


class SessionState(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


@dataclass
class ScanSession:
    """Ordered, time-bounded accumulation of scans from continuous capture."""

    id: str = field(default_factory=lambda: f"session_{uuid.uuid4().hex[:12]}")
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    ended_at: datetime | None = None
    state: SessionState = SessionState.ACTIVE
    scans: list[ProductRecord] = field(default_factory=list)
    last_scan_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def needs_selection(self) -> bool:
        """True when the operator has to pick one of several results."""
        return self.state is SessionState.ENDED and len(self.scans) > 1

    def add_scan(self, record: ProductRecord) -> bool:
        """Append a scan; returns False when the name is already in the session.

        Raises:
            RuntimeError: If the session has ended.
        """
        if not self.is_active:
            raise RuntimeError(f"Session {self.id} has ended")
        key = record.name.lower()
        if any(s.name.lower() == key for s in self.scans):
            return False
        self.scans.append(record)
        self.last_scan_at = datetime.now(timezone.utc)
        return True

    def end(self) -> None:
        if self.is_active:
            self.state = SessionState.ENDED
            self.ended_at = datetime.now(timezone.utc)

    def stats(self) -> dict:
        end = self.ended_at or datetime.now(timezone.utc)
        elapsed = int((end - self.started_at).total_seconds())
        minutes, seconds = divmod(elapsed, 60)
        duration = f"{minutes}m {seconds}s" if minutes else f"{seconds}s"
        return {
            "count": len(self.scans),
            "duration": duration,
            "is_active": self.is_active,
        }


@dataclass
class ScanSuccess:
    record: ProductRecord
    duplicate: bool = False


@dataclass
class ScanFailure:
    error: str
    fallback: ProductRecord


ScanResult = Union[ScanSuccess, ScanFailure]


@dataclass
class ScanEvent:
    """Progress event emitted by the streaming pipeline."""

    type: str  # progress | detection | complete | error
    message: str = ""
    phase: str | None = None  # capture | analysis | duplicate_check | generation
    result: ScanResult | None = None
