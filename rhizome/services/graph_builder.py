"""
Graph Builder - Maintain typed edges between people as domain events occur.

Three events feed the graph:
- encounter recorded: every pair of participants gets an `encounter` edge,
  created at strength 5 and strengthened by 1 (capped at 10) on each repeat
- suggestion accepted: an `intro` edge from person A to person B at strength 8,
  created exactly once per pair; reprocessing never re-strengthens it
- goal references people: a `goal_link` edge from each person to the goal at
  strength 6, created once and never accumulated

Graph maintenance is best-effort. Every handler logs and returns when the
referenced record is missing or storage fails, so the write that triggered
the event is never blocked or rolled back. A failure on one pair does not
abort the remaining pairs of the same encounter.
"""
import logging
from itertools import combinations
from typing import Optional

from config.signal_weights import (
    EDGE_TYPE_ENCOUNTER,
    EDGE_TYPE_GOAL_LINK,
    EDGE_TYPE_INTRO,
    ENCOUNTER_EDGE_INCREMENT,
    ENCOUNTER_EDGE_INITIAL_STRENGTH,
    GOAL_LINK_EDGE_STRENGTH,
    INTRO_EDGE_STRENGTH,
)
from rhizome.services.graph_store import GraphStore
from rhizome.services.models import Edge
from rhizome.services.resilience import GraphEngineError

logger = logging.getLogger(__name__)


def _pair_key(a: str, b: str) -> tuple[str, str]:
    """Order an unordered pair so the same two people always map to one edge."""
    return (a, b) if a <= b else (b, a)


class GraphBuilder:
    """Creates and strengthens edges in response to domain events."""

    def __init__(self, store: GraphStore):
        self.store = store

    def on_encounter_recorded(self, encounter_id: str, tenant_id: str, owner_id: str) -> list[Edge]:
        """
        Create or strengthen an encounter edge for every pair of participants.

        Returns:
            The edges as stored after this call (empty if nothing could be done)
        """
        try:
            encounter = self.store.get_encounter(tenant_id, encounter_id)
            if encounter is None:
                logger.warning(f"Encounter {encounter_id} not found in workspace {tenant_id}; skipping edges")
                return []
            participants = self.store.get_encounter_participants(encounter_id)
        except GraphEngineError as e:
            logger.error(f"Failed to load encounter {encounter_id}: {e}")
            return []

        metadata = {
            "encounter_id": encounter_id,
            "occurred_at": encounter.occurred_at.isoformat() if encounter.occurred_at else None,
        }

        edges = []
        seen: set[tuple[str, str]] = set()
        for a, b in combinations(participants, 2):
            if a == b:
                logger.warning(f"Encounter {encounter_id} lists person {a} twice; skipping self-pair")
                continue
            from_id, to_id = _pair_key(a, b)
            if (from_id, to_id) in seen:
                continue
            seen.add((from_id, to_id))

            try:
                edge = self.store.strengthen_edge(
                    tenant_id=tenant_id,
                    owner_id=owner_id,
                    from_id=from_id,
                    to_id=to_id,
                    edge_type=EDGE_TYPE_ENCOUNTER,
                    initial_strength=ENCOUNTER_EDGE_INITIAL_STRENGTH,
                    increment=ENCOUNTER_EDGE_INCREMENT,
                    metadata=metadata,
                )
                edges.append(edge)
            except GraphEngineError as e:
                logger.error(f"Failed to upsert encounter edge {from_id} -> {to_id}: {e}")

        logger.debug(f"Encounter {encounter_id}: {len(edges)} edge(s) upserted")
        return edges

    def on_suggestion_accepted(self, suggestion_id: str, tenant_id: str, owner_id: str) -> Optional[Edge]:
        """
        Create the intro edge for an accepted suggestion.

        An existing intro edge for the pair is left untouched, so redelivering
        the same acceptance never changes its strength.
        """
        try:
            suggestion = self.store.get_suggestion(tenant_id, suggestion_id)
            if suggestion is None:
                logger.warning(f"Suggestion {suggestion_id} not found in workspace {tenant_id}; skipping intro edge")
                return None
            if suggestion.a_id == suggestion.b_id:
                logger.warning(f"Suggestion {suggestion_id} introduces {suggestion.a_id} to themselves; skipping")
                return None

            edge, created = self.store.insert_edge_if_absent(Edge(
                tenant_id=tenant_id,
                owner_id=owner_id,
                from_id=suggestion.a_id,
                to_id=suggestion.b_id,
                type=EDGE_TYPE_INTRO,
                strength=INTRO_EDGE_STRENGTH,
                metadata={
                    "suggestion_id": suggestion_id,
                    "goal_id": suggestion.goal_id,
                    "score": suggestion.score,
                    "why": suggestion.why,
                },
            ))
            if not created:
                logger.debug(f"Intro edge for suggestion {suggestion_id} already exists")
            return edge
        except GraphEngineError as e:
            logger.error(f"Failed to create intro edge for suggestion {suggestion_id}: {e}")
            return None

    def on_goal_references_people(
        self,
        goal_id: str,
        person_ids: list[str],
        tenant_id: str,
        owner_id: str,
    ) -> list[Edge]:
        """Link each referenced person to the goal. Existing links are left as they are."""
        try:
            goal = self.store.get_goal(tenant_id, goal_id)
        except GraphEngineError as e:
            logger.error(f"Failed to load goal {goal_id}: {e}")
            return []
        if goal is None:
            logger.warning(f"Goal {goal_id} not found in workspace {tenant_id}; skipping goal links")
            return []

        edges = []
        for person_id in dict.fromkeys(person_ids):
            try:
                if self.store.get_person(tenant_id, person_id) is None:
                    logger.warning(f"Goal {goal_id} references unknown person {person_id}; skipping")
                    continue
                edge, _ = self.store.insert_edge_if_absent(Edge(
                    tenant_id=tenant_id,
                    owner_id=owner_id,
                    from_id=person_id,
                    to_id=goal_id,
                    type=EDGE_TYPE_GOAL_LINK,
                    strength=GOAL_LINK_EDGE_STRENGTH,
                    metadata={"goal_id": goal_id},
                ))
                edges.append(edge)
            except GraphEngineError as e:
                logger.error(f"Failed to link person {person_id} to goal {goal_id}: {e}")
        return edges

    def remove_edges(self, edge_ids: list[str]) -> int:
        """Hard-delete edges, e.g. after an encounter or suggestion is retracted."""
        try:
            return self.store.delete_edges(edge_ids)
        except GraphEngineError as e:
            logger.error(f"Failed to remove edges {edge_ids}: {e}")
            return 0

    def update_edge_strength(self, edge_id: str, new_strength: int) -> bool:
        """Override an edge's strength (clamped to 0-10). Used by decay jobs."""
        try:
            updated = self.store.set_edge_strength(edge_id, new_strength)
            if not updated:
                logger.warning(f"Edge {edge_id} not found; strength unchanged")
            return updated
        except GraphEngineError as e:
            logger.error(f"Failed to update strength for edge {edge_id}: {e}")
            return False
