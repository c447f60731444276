"""
Graph Store - SQLite storage for the relationship graph.

Holds workspaces, people, claims, encounters, goals, suggestions, derived
contact signals, edges and cross-workspace overlaps. Every read and write is
scoped by workspace (tenant) id except the overlap table, which is global by
nature.

Concurrency guarantees come from single-statement SQLite upserts:
- signals: INSERT ... ON CONFLICT(workspace_id, contact_id) DO UPDATE
- encounter edges: increment-and-cap inside the ON CONFLICT clause
- intro / goal edges: ON CONFLICT DO NOTHING (exactly-once create)
- overlaps: delete-all and bulk insert in one transaction
"""
import functools
import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from config.signal_weights import EDGE_STRENGTH_MAX, EDGE_STRENGTH_MIN
from rhizome.services.models import (
    Claim,
    ContactSignals,
    Edge,
    Encounter,
    Goal,
    Overlap,
    Person,
    Suggestion,
    Workspace,
    clamp_edge_strength,
)
from rhizome.services.resilience import NotFoundError, ReferencedEntityError, StorageError
from rhizome.utils.datetime_utils import make_aware, utc_now
from rhizome.utils.db_paths import get_graph_db_path

logger = logging.getLogger(__name__)


def _ts(dt: Optional[datetime]) -> Optional[str]:
    """Normalize to a UTC ISO string so stored timestamps sort lexically."""
    if dt is None:
        return None
    return make_aware(dt).astimezone(timezone.utc).isoformat()


def _storage_op(func):
    """Surface sqlite3 failures as StorageError."""
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except sqlite3.Error as e:
            raise StorageError(func.__name__, e) from e
    return wrapper


SCHEMA = """
CREATE TABLE IF NOT EXISTS workspace (
    id TEXT PRIMARY KEY,
    name TEXT,
    owner_id TEXT NOT NULL,
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS person (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    full_name TEXT NOT NULL,
    email TEXT,
    location TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_person_workspace ON person(workspace_id);

CREATE TABLE IF NOT EXISTS claim (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    subject_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    confidence INTEGER NOT NULL DEFAULT 50,
    source TEXT NOT NULL,
    observed_at TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_claim_subject ON claim(workspace_id, subject_id);
CREATE INDEX IF NOT EXISTS idx_claim_key ON claim(workspace_id, key);

CREATE TABLE IF NOT EXISTS encounter (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    occurred_at TIMESTAMP NOT NULL,
    summary TEXT,
    created_at TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_encounter_workspace ON encounter(workspace_id, occurred_at);

CREATE TABLE IF NOT EXISTS person_encounter (
    person_id TEXT NOT NULL,
    encounter_id TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'attendee',
    UNIQUE(person_id, encounter_id)
);
CREATE INDEX IF NOT EXISTS idx_person_encounter_encounter ON person_encounter(encounter_id);

CREATE TABLE IF NOT EXISTS goal (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    title TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS suggestion (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    a_id TEXT NOT NULL,
    b_id TEXT NOT NULL,
    goal_id TEXT,
    score INTEGER NOT NULL DEFAULT 0,
    why TEXT,
    state TEXT NOT NULL DEFAULT 'proposed',
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS signals (
    workspace_id TEXT NOT NULL,
    contact_id TEXT NOT NULL,
    last_interaction_at TIMESTAMP,
    interactions_90d INTEGER NOT NULL DEFAULT 0,
    reciprocity_ratio INTEGER NOT NULL DEFAULT 0,
    sentiment_avg INTEGER NOT NULL DEFAULT 0,
    decay_days INTEGER NOT NULL DEFAULT 0,
    role_tags TEXT NOT NULL DEFAULT '[]',
    shared_context_tags TEXT NOT NULL DEFAULT '[]',
    goal_alignment_score INTEGER NOT NULL DEFAULT 0,
    capacity_cost INTEGER NOT NULL DEFAULT 100,
    updated_at TIMESTAMP,
    PRIMARY KEY (workspace_id, contact_id)
);

CREATE TABLE IF NOT EXISTS edge (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    from_id TEXT NOT NULL,
    to_id TEXT NOT NULL,
    type TEXT NOT NULL,
    strength INTEGER NOT NULL DEFAULT 0 CHECK (strength BETWEEN 0 AND 10),
    metadata TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    UNIQUE(workspace_id, from_id, to_id, type)
);
CREATE INDEX IF NOT EXISTS idx_edge_from ON edge(workspace_id, from_id);
CREATE INDEX IF NOT EXISTS idx_edge_to ON edge(workspace_id, to_id);

CREATE TABLE IF NOT EXISTS overlap (
    id TEXT PRIMARY KEY,
    person_id TEXT NOT NULL,
    matched_person_id TEXT NOT NULL,
    workspaces TEXT NOT NULL,
    basis TEXT NOT NULL,
    confidence INTEGER NOT NULL,
    person_name TEXT,
    recommendation TEXT,
    state TEXT NOT NULL DEFAULT 'active',
    detected_at TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_overlap_state ON overlap(state);
"""


class GraphStore:
    """
    SQLite-backed storage collaborator for the graph engine.

    Opens a short-lived connection per operation, so one instance can be
    shared across worker threads.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the graph store.

        Args:
            db_path: Path to SQLite database (default from settings)
        """
        self.db_path = db_path or get_graph_db_path()
        self._init_db()

    def _init_db(self):
        """Create database tables if they don't exist."""
        conn = self._get_connection()
        try:
            conn.executescript(SCHEMA)
            conn.commit()
            logger.info(f"Initialized graph database at {self.db_path}")
        finally:
            conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    @_storage_op
    def add_workspace(self, workspace: Workspace) -> Workspace:
        conn = self._get_connection()
        try:
            conn.execute(
                "INSERT INTO workspace (id, name, owner_id, created_at) VALUES (?, ?, ?, ?)",
                (workspace.id, workspace.name, workspace.owner_id, _ts(workspace.created_at)),
            )
            conn.commit()
            return workspace
        finally:
            conn.close()

    @_storage_op
    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT * FROM workspace WHERE id = ?", (workspace_id,)).fetchone()
            return Workspace.from_row(row) if row else None
        finally:
            conn.close()

    @_storage_op
    def list_workspaces(self) -> list[Workspace]:
        """All workspaces, oldest first so sweeps visit pairs in a stable order."""
        conn = self._get_connection()
        try:
            cursor = conn.execute("SELECT * FROM workspace ORDER BY created_at, id")
            return [Workspace.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # People
    # ------------------------------------------------------------------

    @_storage_op
    def add_person(self, person: Person) -> Person:
        conn = self._get_connection()
        try:
            conn.execute("""
                INSERT INTO person
                (id, workspace_id, owner_id, full_name, email, location, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                person.id,
                person.tenant_id,
                person.owner_id,
                person.full_name,
                person.email,
                person.location,
                _ts(person.created_at),
                _ts(person.updated_at),
            ))
            conn.commit()
            return person
        finally:
            conn.close()

    @_storage_op
    def update_person(self, person: Person) -> Person:
        """Update a person's mutable fields. Only the owning user may do this."""
        person.updated_at = utc_now()
        conn = self._get_connection()
        try:
            cursor = conn.execute("""
                UPDATE person SET full_name = ?, email = ?, location = ?, updated_at = ?
                WHERE id = ? AND workspace_id = ? AND owner_id = ?
            """, (
                person.full_name,
                person.email,
                person.location,
                _ts(person.updated_at),
                person.id,
                person.tenant_id,
                person.owner_id,
            ))
            conn.commit()
            if cursor.rowcount == 0:
                raise NotFoundError("Person", person.id, person.tenant_id)
            return person
        finally:
            conn.close()

    @_storage_op
    def get_person(self, tenant_id: str, person_id: str) -> Optional[Person]:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM person WHERE id = ? AND workspace_id = ?",
                (person_id, tenant_id),
            ).fetchone()
            return Person.from_row(row) if row else None
        finally:
            conn.close()

    @_storage_op
    def list_people(self, tenant_id: str) -> list[Person]:
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "SELECT * FROM person WHERE workspace_id = ? ORDER BY created_at, id",
                (tenant_id,),
            )
            return [Person.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    @_storage_op
    def delete_person(self, tenant_id: str, person_id: str) -> bool:
        """
        Delete a person.

        Raises:
            ReferencedEntityError: if any edge still references the person
        """
        conn = self._get_connection()
        try:
            refs = conn.execute(
                "SELECT COUNT(*) FROM edge WHERE workspace_id = ? AND (from_id = ? OR to_id = ?)",
                (tenant_id, person_id, person_id),
            ).fetchone()[0]
            if refs:
                raise ReferencedEntityError("Person", person_id, refs)
            cursor = conn.execute(
                "DELETE FROM person WHERE id = ? AND workspace_id = ?",
                (person_id, tenant_id),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    @_storage_op
    def add_claim(self, claim: Claim) -> Claim:
        """
        Store a claim.

        A claim supersedes older claims with the same subject, key and source.
        A claim older than one already stored for that triple is stale and the
        stored claim is returned instead.
        """
        conn = self._get_connection()
        try:
            newer = conn.execute("""
                SELECT * FROM claim
                WHERE workspace_id = ? AND subject_id = ? AND key = ? AND source = ?
                  AND observed_at > ?
                ORDER BY observed_at DESC LIMIT 1
            """, (claim.tenant_id, claim.subject_id, claim.key, claim.source,
                  _ts(claim.observed_at))).fetchone()
            if newer:
                logger.debug(f"Ignoring stale claim {claim.key} for {claim.subject_id}")
                return Claim.from_row(newer)

            conn.execute("""
                DELETE FROM claim
                WHERE workspace_id = ? AND subject_id = ? AND key = ? AND source = ?
            """, (claim.tenant_id, claim.subject_id, claim.key, claim.source))
            conn.execute("""
                INSERT INTO claim
                (id, workspace_id, owner_id, subject_id, key, value, confidence, source, observed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                claim.id,
                claim.tenant_id,
                claim.owner_id,
                claim.subject_id,
                claim.key,
                claim.value,
                claim.confidence,
                claim.source,
                _ts(claim.observed_at),
            ))
            conn.commit()
            return claim
        finally:
            conn.close()

    @_storage_op
    def get_claims(self, tenant_id: str, subject_id: str, key: Optional[str] = None) -> list[Claim]:
        conn = self._get_connection()
        try:
            if key:
                cursor = conn.execute("""
                    SELECT * FROM claim WHERE workspace_id = ? AND subject_id = ? AND key = ?
                    ORDER BY observed_at, id
                """, (tenant_id, subject_id, key))
            else:
                cursor = conn.execute("""
                    SELECT * FROM claim WHERE workspace_id = ? AND subject_id = ?
                    ORDER BY observed_at, id
                """, (tenant_id, subject_id))
            return [Claim.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    @_storage_op
    def get_claims_by_key(self, tenant_id: str, key: str) -> list[Claim]:
        """All claims with a given key in a workspace (e.g. every email claim)."""
        conn = self._get_connection()
        try:
            cursor = conn.execute("""
                SELECT * FROM claim WHERE workspace_id = ? AND key = ?
                ORDER BY observed_at, id
            """, (tenant_id, key))
            return [Claim.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Encounters
    # ------------------------------------------------------------------

    @_storage_op
    def add_encounter(self, encounter: Encounter, person_ids: Iterable[str]) -> Encounter:
        """Record an encounter together with its participant set."""
        conn = self._get_connection()
        try:
            conn.execute("""
                INSERT INTO encounter
                (id, workspace_id, owner_id, kind, occurred_at, summary, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                encounter.id,
                encounter.tenant_id,
                encounter.owner_id,
                encounter.kind,
                _ts(encounter.occurred_at),
                encounter.summary,
                _ts(encounter.created_at),
            ))
            conn.executemany(
                "INSERT OR IGNORE INTO person_encounter (person_id, encounter_id) VALUES (?, ?)",
                [(pid, encounter.id) for pid in person_ids],
            )
            conn.commit()
            return encounter
        finally:
            conn.close()

    @_storage_op
    def get_encounter(self, tenant_id: str, encounter_id: str) -> Optional[Encounter]:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM encounter WHERE id = ? AND workspace_id = ?",
                (encounter_id, tenant_id),
            ).fetchone()
            return Encounter.from_row(row) if row else None
        finally:
            conn.close()

    @_storage_op
    def get_encounter_participants(self, encounter_id: str) -> list[str]:
        """Person ids linked to an encounter, in insertion order."""
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "SELECT person_id FROM person_encounter WHERE encounter_id = ? ORDER BY rowid",
                (encounter_id,),
            )
            return [row[0] for row in cursor.fetchall()]
        finally:
            conn.close()

    @_storage_op
    def get_encounters_for_person(
        self,
        tenant_id: str,
        person_id: str,
        since: Optional[datetime] = None,
    ) -> list[Encounter]:
        """
        Encounters involving a person, most recent first.

        Args:
            tenant_id: Workspace id
            person_id: Person id
            since: Optional lower bound (inclusive) on occurred_at
        """
        conn = self._get_connection()
        try:
            query = """
                SELECT e.* FROM encounter e
                JOIN person_encounter pe ON pe.encounter_id = e.id
                WHERE e.workspace_id = ? AND pe.person_id = ?
            """
            params: list = [tenant_id, person_id]
            if since is not None:
                query += " AND e.occurred_at >= ?"
                params.append(_ts(since))
            query += " ORDER BY e.occurred_at DESC, e.id"
            cursor = conn.execute(query, params)
            return [Encounter.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    @_storage_op
    def update_encounter_summary(self, tenant_id: str, encounter_id: str, summary: str) -> bool:
        """Summary enrichment is the only mutation an encounter allows."""
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "UPDATE encounter SET summary = ? WHERE id = ? AND workspace_id = ?",
                (summary, encounter_id, tenant_id),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Goals and suggestions
    # ------------------------------------------------------------------

    @_storage_op
    def add_goal(self, goal: Goal) -> Goal:
        conn = self._get_connection()
        try:
            conn.execute("""
                INSERT INTO goal (id, workspace_id, owner_id, kind, title, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (goal.id, goal.tenant_id, goal.owner_id, goal.kind, goal.title,
                  goal.status, _ts(utc_now())))
            conn.commit()
            return goal
        finally:
            conn.close()

    @_storage_op
    def get_goal(self, tenant_id: str, goal_id: str) -> Optional[Goal]:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM goal WHERE id = ? AND workspace_id = ?",
                (goal_id, tenant_id),
            ).fetchone()
            return Goal.from_row(row) if row else None
        finally:
            conn.close()

    @_storage_op
    def add_suggestion(self, suggestion: Suggestion) -> Suggestion:
        conn = self._get_connection()
        try:
            conn.execute("""
                INSERT INTO suggestion
                (id, workspace_id, owner_id, a_id, b_id, goal_id, score, why, state, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                suggestion.id,
                suggestion.tenant_id,
                suggestion.owner_id,
                suggestion.a_id,
                suggestion.b_id,
                suggestion.goal_id,
                suggestion.score,
                json.dumps(suggestion.why),
                suggestion.state,
                _ts(utc_now()),
            ))
            conn.commit()
            return suggestion
        finally:
            conn.close()

    @_storage_op
    def get_suggestion(self, tenant_id: str, suggestion_id: str) -> Optional[Suggestion]:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM suggestion WHERE id = ? AND workspace_id = ?",
                (suggestion_id, tenant_id),
            ).fetchone()
            return Suggestion.from_row(row) if row else None
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Contact signals
    # ------------------------------------------------------------------

    @_storage_op
    def upsert_signals(self, signals: ContactSignals) -> ContactSignals:
        """Insert or replace the signal row for (tenant, contact) in one statement."""
        signals.updated_at = utc_now()
        conn = self._get_connection()
        try:
            conn.execute("""
                INSERT INTO signals
                (workspace_id, contact_id, last_interaction_at, interactions_90d,
                 reciprocity_ratio, sentiment_avg, decay_days, role_tags,
                 shared_context_tags, goal_alignment_score, capacity_cost, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(workspace_id, contact_id) DO UPDATE SET
                    last_interaction_at = excluded.last_interaction_at,
                    interactions_90d = excluded.interactions_90d,
                    reciprocity_ratio = excluded.reciprocity_ratio,
                    sentiment_avg = excluded.sentiment_avg,
                    decay_days = excluded.decay_days,
                    role_tags = excluded.role_tags,
                    shared_context_tags = excluded.shared_context_tags,
                    goal_alignment_score = excluded.goal_alignment_score,
                    capacity_cost = excluded.capacity_cost,
                    updated_at = excluded.updated_at
            """, (
                signals.tenant_id,
                signals.contact_id,
                _ts(signals.last_interaction_at),
                signals.interactions_90d,
                signals.reciprocity_ratio,
                signals.sentiment_avg,
                signals.decay_days,
                json.dumps(signals.role_tags),
                json.dumps(signals.shared_context_tags),
                signals.goal_alignment_score,
                signals.capacity_cost,
                _ts(signals.updated_at),
            ))
            conn.commit()
            return signals
        finally:
            conn.close()

    @_storage_op
    def get_signals(self, tenant_id: str, contact_id: str) -> Optional[ContactSignals]:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM signals WHERE workspace_id = ? AND contact_id = ?",
                (tenant_id, contact_id),
            ).fetchone()
            return ContactSignals.from_row(row) if row else None
        finally:
            conn.close()

    @_storage_op
    def list_signals(self, tenant_id: str) -> list[ContactSignals]:
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "SELECT * FROM signals WHERE workspace_id = ? ORDER BY contact_id",
                (tenant_id,),
            )
            return [ContactSignals.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    @_storage_op
    def count_signals(self, tenant_id: str) -> int:
        conn = self._get_connection()
        try:
            return conn.execute(
                "SELECT COUNT(*) FROM signals WHERE workspace_id = ?", (tenant_id,)
            ).fetchone()[0]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    @_storage_op
    def strengthen_edge(
        self,
        tenant_id: str,
        owner_id: str,
        from_id: str,
        to_id: str,
        edge_type: str,
        initial_strength: int,
        increment: int,
        metadata: dict,
    ) -> Edge:
        """
        Create an edge at `initial_strength` or add `increment` to it, capped.

        The read-modify-write happens inside SQLite's ON CONFLICT clause, so
        concurrent calls for the same key never lose an increment. Metadata
        is merged: prior keys are kept, keys in `metadata` overwrite them,
        and `created_at` is only written on creation.
        """
        now = _ts(utc_now())
        insert_metadata = {**metadata, "created_at": now}
        conn = self._get_connection()
        try:
            conn.execute("""
                INSERT INTO edge
                (id, workspace_id, owner_id, from_id, to_id, type, strength, metadata,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(workspace_id, from_id, to_id, type) DO UPDATE SET
                    strength = MAX(?, MIN(edge.strength + ?, ?)),
                    metadata = json_patch(
                        COALESCE(edge.metadata, '{}'),
                        json_set(json_remove(excluded.metadata, '$.created_at'),
                                 '$.last_updated', excluded.updated_at)
                    ),
                    updated_at = excluded.updated_at
            """, (
                str(uuid.uuid4()),
                tenant_id,
                owner_id,
                from_id,
                to_id,
                edge_type,
                clamp_edge_strength(initial_strength),
                json.dumps(insert_metadata),
                now,
                now,
                EDGE_STRENGTH_MIN,
                increment,
                EDGE_STRENGTH_MAX,
            ))
            conn.commit()
            row = conn.execute("""
                SELECT * FROM edge
                WHERE workspace_id = ? AND from_id = ? AND to_id = ? AND type = ?
            """, (tenant_id, from_id, to_id, edge_type)).fetchone()
            return Edge.from_row(row)
        finally:
            conn.close()

    @_storage_op
    def insert_edge_if_absent(self, edge: Edge) -> tuple[Edge, bool]:
        """
        Create an edge unless one already exists for its key.

        Returns:
            Tuple of (stored edge, was_created)
        """
        now = _ts(utc_now())
        metadata = {**edge.metadata, "created_at": now}
        conn = self._get_connection()
        try:
            cursor = conn.execute("""
                INSERT INTO edge
                (id, workspace_id, owner_id, from_id, to_id, type, strength, metadata,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(workspace_id, from_id, to_id, type) DO NOTHING
            """, (
                edge.id,
                edge.tenant_id,
                edge.owner_id,
                edge.from_id,
                edge.to_id,
                edge.type,
                edge.strength,
                json.dumps(metadata),
                now,
                now,
            ))
            conn.commit()
            created = cursor.rowcount == 1
            row = conn.execute("""
                SELECT * FROM edge
                WHERE workspace_id = ? AND from_id = ? AND to_id = ? AND type = ?
            """, (edge.tenant_id, edge.from_id, edge.to_id, edge.type)).fetchone()
            return Edge.from_row(row), created
        finally:
            conn.close()

    @_storage_op
    def get_edge(self, edge_id: str) -> Optional[Edge]:
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT * FROM edge WHERE id = ?", (edge_id,)).fetchone()
            return Edge.from_row(row) if row else None
        finally:
            conn.close()

    @_storage_op
    def get_edge_between(
        self,
        tenant_id: str,
        from_id: str,
        to_id: str,
        edge_type: str,
    ) -> Optional[Edge]:
        conn = self._get_connection()
        try:
            row = conn.execute("""
                SELECT * FROM edge
                WHERE workspace_id = ? AND from_id = ? AND to_id = ? AND type = ?
            """, (tenant_id, from_id, to_id, edge_type)).fetchone()
            return Edge.from_row(row) if row else None
        finally:
            conn.close()

    @_storage_op
    def list_edges(
        self,
        tenant_id: str,
        person_id: Optional[str] = None,
        edge_type: Optional[str] = None,
    ) -> list[Edge]:
        """Edges in a workspace, optionally only those touching a person or of one type."""
        conn = self._get_connection()
        try:
            query = "SELECT * FROM edge WHERE workspace_id = ?"
            params: list = [tenant_id]
            if person_id:
                query += " AND (from_id = ? OR to_id = ?)"
                params.extend([person_id, person_id])
            if edge_type:
                query += " AND type = ?"
                params.append(edge_type)
            query += " ORDER BY strength DESC, created_at, id"
            cursor = conn.execute(query, params)
            return [Edge.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    @_storage_op
    def delete_edges(self, edge_ids: list[str]) -> int:
        """Hard-delete edges by id. Returns the number removed."""
        if not edge_ids:
            return 0
        conn = self._get_connection()
        try:
            placeholders = ",".join("?" * len(edge_ids))
            cursor = conn.execute(
                f"DELETE FROM edge WHERE id IN ({placeholders})",
                list(edge_ids),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    @_storage_op
    def set_edge_strength(self, edge_id: str, strength: int) -> bool:
        """Overwrite an edge's strength, clamped to the valid range."""
        now = _ts(utc_now())
        conn = self._get_connection()
        try:
            cursor = conn.execute("""
                UPDATE edge SET
                    strength = ?,
                    metadata = json_set(COALESCE(metadata, '{}'), '$.last_updated', ?),
                    updated_at = ?
                WHERE id = ?
            """, (clamp_edge_strength(strength), now, now, edge_id))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Overlaps
    # ------------------------------------------------------------------

    @_storage_op
    def replace_overlaps(self, overlaps: list[Overlap]) -> int:
        """
        Replace the whole overlap set in a single transaction.

        Readers see either the previous set or the new one, never a mix.
        """
        conn = self._get_connection()
        try:
            conn.execute("DELETE FROM overlap")
            conn.executemany("""
                INSERT INTO overlap
                (id, person_id, matched_person_id, workspaces, basis, confidence,
                 person_name, recommendation, state, detected_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                (
                    o.id,
                    o.person_id,
                    o.matched_person_id,
                    json.dumps(o.workspaces),
                    o.basis,
                    o.confidence,
                    o.person_name,
                    o.recommendation,
                    o.state,
                    _ts(o.detected_at),
                )
                for o in overlaps
            ])
            conn.commit()
            return len(overlaps)
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    @_storage_op
    def list_overlaps(self, state: Optional[str] = None) -> list[Overlap]:
        conn = self._get_connection()
        try:
            if state:
                cursor = conn.execute(
                    "SELECT * FROM overlap WHERE state = ? ORDER BY confidence DESC, person_id",
                    (state,),
                )
            else:
                cursor = conn.execute("SELECT * FROM overlap ORDER BY confidence DESC, person_id")
            return [Overlap.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_workspace_overlaps(self, tenant_id: str) -> list[Overlap]:
        """Overlaps that involve a given workspace."""
        return [o for o in self.list_overlaps() if tenant_id in o.workspaces]

    @_storage_op
    def set_overlap_state(self, overlap_id: str, state: str) -> bool:
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "UPDATE overlap SET state = ? WHERE id = ?",
                (state, overlap_id),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()
