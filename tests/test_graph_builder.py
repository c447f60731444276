"""Tests for GraphBuilder edge maintenance."""
from unittest.mock import MagicMock

import pytest

from rhizome.services.graph_builder import GraphBuilder
from rhizome.services.models import Edge, Encounter, Goal, Suggestion
from rhizome.services.resilience import StorageError

pytestmark = pytest.mark.unit


@pytest.fixture
def builder(store):
    return GraphBuilder(store)


@pytest.fixture
def people(workspace, make_person):
    return [make_person("ws1", name) for name in ("Ann Lee", "Ben Kim", "Cara Diaz")]


class TestEncounterEdges:
    """Tests for encounter-driven edges."""

    def test_three_participants_three_edges(self, store, builder, people, make_encounter):
        """Every pair of participants gets one edge at strength 5."""
        encounter = make_encounter("ws1", [p.id for p in people])

        edges = builder.on_encounter_recorded(encounter.id, "ws1", "alice@acme.com")

        assert len(edges) == 3
        assert all(e.strength == 5 for e in edges)
        assert all(e.type == "encounter" for e in edges)
        assert len(store.list_edges("ws1")) == 3

    def test_pair_key_is_order_independent(self, store, builder, people, make_encounter):
        """The same two people map to one edge whatever the participant order."""
        a, b = people[0], people[1]
        first = make_encounter("ws1", [a.id, b.id])
        second = make_encounter("ws1", [b.id, a.id])

        builder.on_encounter_recorded(first.id, "ws1", "alice@acme.com")
        builder.on_encounter_recorded(second.id, "ws1", "alice@acme.com")

        edges = store.list_edges("ws1", edge_type="encounter")
        assert len(edges) == 1
        assert edges[0].strength == 6

    def test_repeat_encounters_strengthen_up_to_cap(self, store, builder, people, make_encounter):
        """Each further shared encounter adds 1, never beyond 10."""
        a, b = people[0], people[1]
        for _ in range(8):
            encounter = make_encounter("ws1", [a.id, b.id])
            builder.on_encounter_recorded(encounter.id, "ws1", "alice@acme.com")

        edges = store.list_edges("ws1", person_id=a.id)
        assert len(edges) == 1
        assert edges[0].strength == 10

    def test_metadata_tracks_latest_encounter(self, store, builder, people, make_encounter):
        """Metadata keeps the creation time and records the latest encounter."""
        a, b = people[0], people[1]
        first = make_encounter("ws1", [a.id, b.id])
        second = make_encounter("ws1", [a.id, b.id])

        created = builder.on_encounter_recorded(first.id, "ws1", "alice@acme.com")[0]
        updated = builder.on_encounter_recorded(second.id, "ws1", "alice@acme.com")[0]

        assert updated.id == created.id
        assert updated.metadata["encounter_id"] == second.id
        assert updated.metadata["created_at"] == created.metadata["created_at"]
        assert "last_updated" in updated.metadata

    def test_single_participant_no_edges(self, builder, people, make_encounter):
        """An encounter with one participant creates nothing."""
        encounter = make_encounter("ws1", [people[0].id])
        assert builder.on_encounter_recorded(encounter.id, "ws1", "alice@acme.com") == []

    def test_missing_encounter_is_noop(self, store, builder, people):
        """An unknown encounter id logs and returns without raising."""
        assert builder.on_encounter_recorded("missing", "ws1", "alice@acme.com") == []
        assert store.list_edges("ws1") == []

    def test_encounter_from_other_tenant_is_noop(self, store, builder, people, make_encounter):
        """Encounters are looked up within the event's tenant only."""
        encounter = make_encounter("ws1", [people[0].id, people[1].id])
        assert builder.on_encounter_recorded(encounter.id, "ws2", "bob@acme.com") == []

    def test_storage_failure_on_one_pair_is_isolated(self, people):
        """A failed upsert for one pair does not abort the others."""
        store = MagicMock()
        store.get_encounter.return_value = Encounter(kind="meeting", occurred_at=None, tenant_id="ws1")
        store.get_encounter_participants.return_value = [p.id for p in people]

        calls = []

        def strengthen(**kwargs):
            calls.append((kwargs["from_id"], kwargs["to_id"]))
            if len(calls) == 1:
                raise StorageError("strengthen_edge", RuntimeError("locked"))
            return Edge(from_id=kwargs["from_id"], to_id=kwargs["to_id"], type="encounter", strength=5)

        store.strengthen_edge.side_effect = strengthen

        edges = GraphBuilder(store).on_encounter_recorded("e1", "ws1", "alice@acme.com")

        assert len(calls) == 3
        assert len(edges) == 2

    def test_storage_failure_loading_encounter(self):
        """A storage failure before any edge work is swallowed and logged."""
        store = MagicMock()
        store.get_encounter.side_effect = StorageError("get_encounter", RuntimeError("locked"))

        assert GraphBuilder(store).on_encounter_recorded("e1", "ws1", "alice@acme.com") == []
        store.strengthen_edge.assert_not_called()


class TestIntroEdges:
    """Tests for accepted-suggestion edges."""

    def test_accepted_suggestion_creates_intro_edge(self, store, builder, people):
        """Acceptance creates a directed intro edge at strength 8."""
        a, b = people[0], people[1]
        suggestion = store.add_suggestion(Suggestion(
            tenant_id="ws1", owner_id="alice@acme.com", a_id=a.id, b_id=b.id,
            score=82, why={"mutual_interests": ["ml"]},
        ))

        edge = builder.on_suggestion_accepted(suggestion.id, "ws1", "alice@acme.com")

        assert edge.type == "intro"
        assert edge.from_id == a.id
        assert edge.to_id == b.id
        assert edge.strength == 8
        assert edge.metadata["suggestion_id"] == suggestion.id
        assert edge.metadata["score"] == 82

    def test_reprocessing_is_idempotent(self, store, builder, people):
        """Redelivering the same acceptance leaves one unchanged edge."""
        a, b = people[0], people[1]
        suggestion = store.add_suggestion(Suggestion(tenant_id="ws1", a_id=a.id, b_id=b.id))

        first = builder.on_suggestion_accepted(suggestion.id, "ws1", "alice@acme.com")
        second = builder.on_suggestion_accepted(suggestion.id, "ws1", "alice@acme.com")

        assert first.id == second.id
        assert second.strength == 8
        assert len(store.list_edges("ws1", edge_type="intro")) == 1

    def test_missing_suggestion_is_noop(self, builder, people):
        """An unknown suggestion id returns None."""
        assert builder.on_suggestion_accepted("missing", "ws1", "alice@acme.com") is None


class TestGoalLinkEdges:
    """Tests for goal reference edges."""

    def test_links_each_person_to_goal(self, store, builder, people):
        """Each referenced person gets a goal_link edge at strength 6."""
        goal = store.add_goal(Goal(tenant_id="ws1", owner_id="alice@acme.com", kind="hire", title="Hire CTO"))

        edges = builder.on_goal_references_people(
            goal.id, [people[0].id, people[1].id], "ws1", "alice@acme.com"
        )

        assert len(edges) == 2
        assert all(e.to_id == goal.id and e.strength == 6 for e in edges)

    def test_goal_links_do_not_accumulate(self, store, builder, people):
        """Referencing the same person twice keeps one edge at strength 6."""
        goal = store.add_goal(Goal(tenant_id="ws1", kind="hire", title="Hire CTO"))

        builder.on_goal_references_people(goal.id, [people[0].id], "ws1", "alice@acme.com")
        builder.on_goal_references_people(goal.id, [people[0].id], "ws1", "alice@acme.com")

        edges = store.list_edges("ws1", edge_type="goal_link")
        assert len(edges) == 1
        assert edges[0].strength == 6

    def test_unknown_person_skipped(self, store, builder, people):
        """Unknown person ids are skipped; known ones are still linked."""
        goal = store.add_goal(Goal(tenant_id="ws1", kind="hire", title="Hire CTO"))

        edges = builder.on_goal_references_people(goal.id, ["ghost", people[2].id], "ws1", "alice@acme.com")

        assert [e.from_id for e in edges] == [people[2].id]

    def test_missing_goal_is_noop(self, builder, people):
        """An unknown goal id creates nothing."""
        assert builder.on_goal_references_people("missing", [people[0].id], "ws1", "alice@acme.com") == []


class TestEdgeMaintenance:
    """Tests for edge removal and strength override."""

    def test_remove_edges(self, store, builder, people, make_encounter):
        """Removed edges are gone and the count is returned."""
        encounter = make_encounter("ws1", [p.id for p in people])
        edges = builder.on_encounter_recorded(encounter.id, "ws1", "alice@acme.com")

        assert builder.remove_edges([edges[0].id, "unknown"]) == 1
        assert len(store.list_edges("ws1")) == 2

    def test_update_strength_clamped(self, store, builder, people, make_encounter):
        """Overrides are clamped to 0-10."""
        encounter = make_encounter("ws1", [people[0].id, people[1].id])
        edge = builder.on_encounter_recorded(encounter.id, "ws1", "alice@acme.com")[0]

        assert builder.update_edge_strength(edge.id, 42) is True
        assert store.get_edge(edge.id).strength == 10
        assert builder.update_edge_strength(edge.id, -3) is True
        assert store.get_edge(edge.id).strength == 0

    def test_update_unknown_edge(self, builder):
        """Updating a missing edge returns False."""
        assert builder.update_edge_strength("missing", 5) is False
