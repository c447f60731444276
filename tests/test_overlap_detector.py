"""Tests for cross-workspace overlap detection."""
import threading
from unittest.mock import patch

import pytest

from rhizome.services.models import Claim, Workspace
from rhizome.services.overlap_detector import (
    OverlapDetector,
    email_domain,
    names_match,
    normalize_name,
    same_organization,
)
from rhizome.services.resilience import StorageError, SweepCancelledError

pytestmark = pytest.mark.unit


@pytest.fixture
def two_workspaces(store):
    """Two workspaces whose owners share the x.com domain."""
    ws1 = store.add_workspace(Workspace(id="ws1", name="Alice", owner_id="alice@x.com"))
    ws2 = store.add_workspace(Workspace(id="ws2", name="Bob", owner_id="bob@x.com"))
    return ws1, ws2


@pytest.fixture
def detector(store):
    return OverlapDetector(store, public_domains={"gmail.com"})


class TestNameMatching:
    """Tests for name normalization and matching."""

    def test_normalize_name(self):
        """Lower-case, punctuation stripped, tokens sorted."""
        assert normalize_name("  Smith,  John ") == "john smith"
        assert normalize_name("O'Brien, Mary-Kate") == "marykate obrien"

    @pytest.mark.parametrize("a,b", [
        ("John Smith", "john smith"),
        ("Smith John", "John Smith"),
        ("John A. Smith", "John Smith"),
        ("Dr. Jane Q. Public", "Dr Jane Public"),
    ])
    def test_names_that_match(self, a, b):
        """Same token set, or same first and last token."""
        assert names_match(a, b)

    @pytest.mark.parametrize("a,b", [
        ("John Smith", "Jane Smith"),
        ("John", "John Smith"),
        ("", ""),
        ("John Smith", ""),
    ])
    def test_names_that_do_not_match(self, a, b):
        """Different first tokens, single tokens and blanks never match."""
        assert not names_match(a, b)


class TestSameOrganization:
    """Tests for the owner-domain organization heuristic."""

    def test_email_domain(self):
        assert email_domain("Alice@X.com") == "x.com"
        assert email_domain("alice") is None
        assert email_domain("") is None

    def test_same_domain(self):
        """Owners on the same corporate domain count as one organization."""
        assert same_organization(
            Workspace(owner_id="a@x.com"), Workspace(owner_id="b@X.com"), public_domains=set()
        )

    def test_different_domains(self):
        assert not same_organization(
            Workspace(owner_id="a@x.com"), Workspace(owner_id="b@y.com"), public_domains=set()
        )

    def test_public_domain_never_matches(self):
        """Two gmail owners are not one organization."""
        assert not same_organization(
            Workspace(owner_id="a@gmail.com"), Workspace(owner_id="b@gmail.com"),
            public_domains={"gmail.com"},
        )

    def test_owner_without_domain(self):
        assert not same_organization(
            Workspace(owner_id="alice"), Workspace(owner_id="bob"), public_domains=set()
        )


class TestDetectOverlaps:
    """Tests for the full sweep."""

    def test_shared_email_creates_overlap(self, store, detector, two_workspaces, make_person):
        """Two tenants with jane@x.com produce an email overlap at confidence 95."""
        jane1 = make_person("ws1", "Jane Doe", owner_id="alice@x.com")
        jane2 = make_person("ws2", "J. Roe", owner_id="bob@x.com")
        store.add_claim(Claim(tenant_id="ws1", subject_id=jane1.id, key="email", value="jane@x.com"))
        store.add_claim(Claim(tenant_id="ws2", subject_id=jane2.id, key="email", value="Jane@X.com "))

        overlaps = detector.detect_overlaps()

        assert len(overlaps) == 1
        overlap = overlaps[0]
        assert overlap.basis == "email"
        assert overlap.confidence == 95
        assert overlap.workspaces == ["ws1", "ws2"]
        assert overlap.state == "active"
        assert overlap.person_id == jane1.id
        assert overlap.matched_person_id == jane2.id
        assert detector.get_all_overlaps()[0].match_key == overlap.match_key

    def test_person_email_field_counts(self, detector, two_workspaces, make_person):
        """The person's own email field is matched like an email claim."""
        make_person("ws1", "Jane Doe", owner_id="alice@x.com", email="jane@x.com")
        make_person("ws2", "Janet Roe", owner_id="bob@x.com", email="jane@x.com")

        overlaps = detector.detect_overlaps()

        assert [o.basis for o in overlaps] == ["email"]

    def test_name_with_middle_initial(self, detector, two_workspaces, make_person):
        """'John A. Smith' and 'John Smith' produce a name overlap at confidence 70."""
        make_person("ws1", "John A. Smith", owner_id="alice@x.com")
        make_person("ws2", "John Smith", owner_id="bob@x.com")

        overlaps = detector.detect_overlaps()

        assert len(overlaps) == 1
        assert overlaps[0].basis == "name"
        assert overlaps[0].confidence == 70
        assert overlaps[0].person_name == "John A. Smith"

    def test_email_and_name_both_reported(self, detector, two_workspaces, make_person):
        """A pair matched on both bases yields one overlap per basis."""
        make_person("ws1", "Jane Doe", owner_id="alice@x.com", email="jane@x.com")
        make_person("ws2", "Jane Doe", owner_id="bob@x.com", email="JANE@x.com")

        overlaps = detector.detect_overlaps()

        assert sorted((o.basis, o.confidence) for o in overlaps) == [("email", 95), ("name", 70)]

    def test_different_organizations_skipped(self, store, detector, make_person):
        """Workspaces on different domains are never compared."""
        store.add_workspace(Workspace(id="ws1", owner_id="alice@x.com"))
        store.add_workspace(Workspace(id="ws2", owner_id="bob@y.com"))
        make_person("ws1", "Jane Doe", email="jane@x.com")
        make_person("ws2", "Jane Doe", email="jane@x.com")

        assert detector.detect_overlaps() == []

    def test_public_domain_owners_skipped(self, store, detector, make_person):
        """Personal-mail owners are never treated as one organization."""
        store.add_workspace(Workspace(id="ws1", owner_id="alice@gmail.com"))
        store.add_workspace(Workspace(id="ws2", owner_id="bob@gmail.com"))
        make_person("ws1", "Jane Doe")
        make_person("ws2", "Jane Doe")

        assert detector.detect_overlaps() == []

    def test_sweep_is_idempotent(self, detector, two_workspaces, make_person):
        """Two sweeps over unchanged data store the same overlap set."""
        make_person("ws1", "Jane Doe", owner_id="alice@x.com", email="jane@x.com")
        make_person("ws2", "Jane Doe", owner_id="bob@x.com", email="jane@x.com")

        detector.detect_overlaps()
        first = sorted(o.match_key for o in detector.get_all_overlaps())
        detector.detect_overlaps()
        second = sorted(o.match_key for o in detector.get_all_overlaps())

        assert first == second
        assert len(second) == 2

    def test_sweep_replaces_stale_overlaps(self, store, detector, two_workspaces, make_person):
        """An overlap whose people no longer match disappears on the next sweep."""
        jane = make_person("ws1", "Jane Doe", owner_id="alice@x.com")
        make_person("ws2", "Jane Doe", owner_id="bob@x.com")
        detector.detect_overlaps()
        assert len(detector.get_all_overlaps()) == 1

        jane.full_name = "Jane Smith"
        store.update_person(jane)
        detector.detect_overlaps()

        assert detector.get_all_overlaps() == []

    def test_cancelled_sweep_persists_nothing(self, store, detector, two_workspaces, make_person):
        """Cancellation raises and leaves the previous overlap set untouched."""
        make_person("ws1", "Jane Doe", owner_id="alice@x.com")
        make_person("ws2", "Jane Doe", owner_id="bob@x.com")
        detector.detect_overlaps()
        before = [o.id for o in store.list_overlaps()]

        cancel = threading.Event()
        cancel.set()
        with pytest.raises(SweepCancelledError):
            detector.detect_overlaps(cancel_event=cancel)

        assert [o.id for o in store.list_overlaps()] == before

    def test_storage_failure_keeps_previous_set(self, store, detector, two_workspaces, make_person):
        """If persisting fails the sweep raises and prior results remain."""
        make_person("ws1", "Jane Doe", owner_id="alice@x.com")
        make_person("ws2", "Jane Doe", owner_id="bob@x.com")
        detector.detect_overlaps()
        before = [o.id for o in store.list_overlaps()]

        with patch.object(store, "replace_overlaps",
                          side_effect=StorageError("replace_overlaps", RuntimeError("locked"))):
            with pytest.raises(StorageError):
                detector.detect_overlaps()

        assert [o.id for o in store.list_overlaps()] == before


class TestOverlapQueries:
    """Tests for reading and dismissing overlaps."""

    def test_workspace_filter(self, store, detector, make_person):
        """get_workspace_overlaps only returns overlaps involving that workspace."""
        store.add_workspace(Workspace(id="ws1", owner_id="a@x.com"))
        store.add_workspace(Workspace(id="ws2", owner_id="b@x.com"))
        store.add_workspace(Workspace(id="ws3", owner_id="c@y.com"))
        make_person("ws1", "Jane Doe", owner_id="a@x.com")
        make_person("ws2", "Jane Doe", owner_id="b@x.com")
        detector.detect_overlaps()

        assert len(detector.get_workspace_overlaps("ws1")) == 1
        assert len(detector.get_workspace_overlaps("ws2")) == 1
        assert detector.get_workspace_overlaps("ws3") == []

    def test_dismiss_hides_from_active(self, detector, two_workspaces, make_person):
        """Dismissed overlaps are excluded from get_all_overlaps."""
        make_person("ws1", "Jane Doe", owner_id="alice@x.com")
        make_person("ws2", "Jane Doe", owner_id="bob@x.com")
        overlap = detector.detect_overlaps()[0]

        assert detector.dismiss_overlap(overlap.id) is True
        assert detector.get_all_overlaps() == []
        assert detector.dismiss_overlap("missing") is False
