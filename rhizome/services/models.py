"""
Data model for the relationship graph.

Person, Claim and Encounter are written by upstream ingestion and only read
here. ContactSignals and Edge are owned by this engine; Overlap is produced
by the periodic overlap sweep.

All records round-trip through SQLite rows (`from_row`) and plain dicts
(`to_dict`) for downstream consumers.
"""
import json
import sqlite3
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from config.signal_weights import (
    EDGE_STRENGTH_MAX,
    EDGE_STRENGTH_MIN,
    OVERLAP_STATE_ACTIVE,
)
from rhizome.utils.datetime_utils import parse_timestamp, utc_now


def _new_id() -> str:
    return str(uuid.uuid4())


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def clamp_edge_strength(strength: int) -> int:
    return int(clamp(strength, EDGE_STRENGTH_MIN, EDGE_STRENGTH_MAX))


class ClaimKey(str, Enum):
    """Known claim keys. Claims with other keys are still stored and returned."""

    ROLE = "role"
    TITLE = "title"
    COMPANY = "company"
    LOCATION = "location"
    EXPERTISE = "expertise"
    INTERESTS = "interests"
    EMAIL = "email"
    PHONE = "phone"


@dataclass
class Workspace:
    """A tenant. `owner_id` is the owning user's identifier, usually an email."""

    id: str = field(default_factory=_new_id)
    name: str = ""
    owner_id: str = ""
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Workspace":
        return cls(
            id=row["id"],
            name=row["name"] or "",
            owner_id=row["owner_id"],
            created_at=parse_timestamp(row["created_at"]),
        )


@dataclass
class Person:
    """A contact record owned by one workspace."""

    id: str = field(default_factory=_new_id)
    tenant_id: str = ""
    owner_id: str = ""
    full_name: str = ""
    email: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        data["updated_at"] = _iso(self.updated_at)
        return data

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Person":
        return cls(
            id=row["id"],
            tenant_id=row["workspace_id"],
            owner_id=row["owner_id"],
            full_name=row["full_name"],
            email=row["email"],
            location=row["location"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )


@dataclass
class Claim:
    """An attributed, confidence-scored fact about a person."""

    subject_id: str
    key: str
    value: str
    id: str = field(default_factory=_new_id)
    tenant_id: str = ""
    owner_id: str = ""
    confidence: int = 50  # 0-100
    source: str = "manual"  # "calendar", "voice", "enrichment", "manual"
    observed_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if isinstance(self.key, ClaimKey):
            self.key = self.key.value
        self.confidence = int(clamp(self.confidence, 0, 100))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["observed_at"] = _iso(self.observed_at)
        return data

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Claim":
        return cls(
            id=row["id"],
            tenant_id=row["workspace_id"],
            owner_id=row["owner_id"],
            subject_id=row["subject_id"],
            key=row["key"],
            value=row["value"],
            confidence=row["confidence"],
            source=row["source"],
            observed_at=parse_timestamp(row["observed_at"]),
        )


def resolve_claim(claims: Iterable[Claim], key: str | ClaimKey) -> Optional[Claim]:
    """
    Pick the winning claim for a key among possibly conflicting claims.

    Highest confidence wins; ties go to the most recently observed claim,
    then to the lowest claim id so the result never depends on input order.
    """
    key = key.value if isinstance(key, ClaimKey) else key
    candidates = [c for c in claims if c.key == key]
    if not candidates:
        return None
    # Sort ascending on id first, then stable-sort on the real criteria
    candidates.sort(key=lambda c: c.id)
    candidates.sort(key=lambda c: (c.confidence, c.observed_at), reverse=True)
    return candidates[0]


@dataclass
class Encounter:
    """A recorded interaction (meeting, call, email, voice note)."""

    kind: str
    occurred_at: datetime
    id: str = field(default_factory=_new_id)
    tenant_id: str = ""
    owner_id: str = ""
    summary: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Encounter":
        return cls(
            id=row["id"],
            tenant_id=row["workspace_id"],
            owner_id=row["owner_id"],
            kind=row["kind"],
            occurred_at=parse_timestamp(row["occurred_at"]),
            summary=row["summary"],
            created_at=parse_timestamp(row["created_at"]),
        )


@dataclass
class Goal:
    id: str = field(default_factory=_new_id)
    tenant_id: str = ""
    owner_id: str = ""
    kind: str = ""
    title: str = ""
    status: str = "active"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Goal":
        return cls(
            id=row["id"],
            tenant_id=row["workspace_id"],
            owner_id=row["owner_id"],
            kind=row["kind"],
            title=row["title"],
            status=row["status"],
        )


@dataclass
class Suggestion:
    """A proposed introduction between person A and person B."""

    a_id: str
    b_id: str
    id: str = field(default_factory=_new_id)
    tenant_id: str = ""
    owner_id: str = ""
    goal_id: Optional[str] = None
    score: int = 0  # 1-100
    why: dict = field(default_factory=dict)
    state: str = "proposed"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Suggestion":
        return cls(
            id=row["id"],
            tenant_id=row["workspace_id"],
            owner_id=row["owner_id"],
            a_id=row["a_id"],
            b_id=row["b_id"],
            goal_id=row["goal_id"],
            score=row["score"],
            why=json.loads(row["why"]) if row["why"] else {},
            state=row["state"],
        )


@dataclass
class ContactSignals:
    """
    Derived relationship signals for one (tenant, contact) pair.

    Fully replaceable on recomputation. Every bounded score lives in [0, 100]
    and decay_days is never negative. `updated_at` is storage bookkeeping and
    does not take part in equality, so two computations over identical input
    compare equal.
    """

    tenant_id: str
    contact_id: str
    last_interaction_at: Optional[datetime] = None
    interactions_90d: int = 0
    reciprocity_ratio: int = 0
    sentiment_avg: int = 0
    decay_days: int = 0
    role_tags: list[str] = field(default_factory=list)
    shared_context_tags: list[str] = field(default_factory=list)
    goal_alignment_score: int = 0
    capacity_cost: int = 100
    updated_at: Optional[datetime] = field(default=None, compare=False)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_interaction_at"] = _iso(self.last_interaction_at)
        data["updated_at"] = _iso(self.updated_at)
        return data

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ContactSignals":
        return cls(
            tenant_id=row["workspace_id"],
            contact_id=row["contact_id"],
            last_interaction_at=parse_timestamp(row["last_interaction_at"]),
            interactions_90d=row["interactions_90d"],
            reciprocity_ratio=row["reciprocity_ratio"],
            sentiment_avg=row["sentiment_avg"],
            decay_days=row["decay_days"],
            role_tags=json.loads(row["role_tags"] or "[]"),
            shared_context_tags=json.loads(row["shared_context_tags"] or "[]"),
            goal_alignment_score=row["goal_alignment_score"],
            capacity_cost=row["capacity_cost"],
            updated_at=parse_timestamp(row["updated_at"]),
        )


@dataclass
class Edge:
    """
    A directed, typed, weighted relationship inside one workspace.

    At most one edge exists per (tenant, from_id, to_id, type).
    """

    from_id: str
    to_id: str
    type: str
    id: str = field(default_factory=_new_id)
    tenant_id: str = ""
    owner_id: str = ""
    strength: int = 0
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.strength = clamp_edge_strength(self.strength)

    def involves(self, entity_id: str) -> bool:
        return entity_id == self.from_id or entity_id == self.to_id

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        data["updated_at"] = _iso(self.updated_at)
        return data

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Edge":
        return cls(
            id=row["id"],
            tenant_id=row["workspace_id"],
            owner_id=row["owner_id"],
            from_id=row["from_id"],
            to_id=row["to_id"],
            type=row["type"],
            strength=row["strength"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )


@dataclass
class Overlap:
    """
    A probable identity match between people in two different workspaces.

    `person_id` is the canonical side (first workspace of the pair),
    `matched_person_id` the counterpart. Confidence is per match basis; one
    pair may carry both an email and a name overlap.
    """

    person_id: str
    matched_person_id: str
    workspaces: list[str]
    basis: str  # "email" | "name"
    confidence: int
    id: str = field(default_factory=_new_id)
    person_name: str = ""
    recommendation: str = ""
    state: str = OVERLAP_STATE_ACTIVE
    detected_at: datetime = field(default_factory=utc_now)

    @property
    def match_key(self) -> tuple:
        """Identity of the observation, independent of id and detection time."""
        return (
            self.person_id,
            self.matched_person_id,
            tuple(self.workspaces),
            self.basis,
            self.confidence,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["detected_at"] = _iso(self.detected_at)
        return data

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Overlap":
        return cls(
            id=row["id"],
            person_id=row["person_id"],
            matched_person_id=row["matched_person_id"],
            workspaces=json.loads(row["workspaces"]),
            basis=row["basis"],
            confidence=row["confidence"],
            person_name=row["person_name"] or "",
            recommendation=row["recommendation"] or "",
            state=row["state"],
            detected_at=parse_timestamp(row["detected_at"]),
        )
