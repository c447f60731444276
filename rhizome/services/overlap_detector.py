"""
Overlap Detector - Find people who appear in more than one workspace.

A periodic batch sweep over every pair of workspaces that look like the same
organization (owners share an email domain). For each pair, two independent
passes run:

1. Email pass (confidence 95): case-insensitive equality of email claims
   (and the person's own email field).
2. Name pass (confidence 70): normalized full names are equal as token sets,
   or both have 2+ tokens and agree on first and last token
   ("John A. Smith" ~ "John Smith").

A pair matched by both passes yields two overlaps, one per basis.

The sweep's output replaces the previous overlap set wholesale. A person
missing from the current input (e.g. a workspace that is temporarily empty)
loses their overlap record. The sweep must never run on a request path.
"""
import logging
import re
import threading
from collections import defaultdict
from itertools import combinations
from typing import Iterable, Optional

from config.settings import settings
from config.signal_weights import (
    EMAIL_MATCH_CONFIDENCE,
    EMAIL_MATCH_RECOMMENDATION,
    NAME_MATCH_CONFIDENCE,
    NAME_MATCH_RECOMMENDATION,
    OVERLAP_BASIS_EMAIL,
    OVERLAP_BASIS_NAME,
    OVERLAP_STATE_ACTIVE,
    OVERLAP_STATE_DISMISSED,
)
from rhizome.services.graph_store import GraphStore
from rhizome.services.models import Claim, ClaimKey, Overlap, Person, Workspace
from rhizome.services.resilience import SweepCancelledError

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")


def name_tokens(name: str) -> list[str]:
    """Lower-case, strip punctuation and split on whitespace, keeping written order."""
    if not name:
        return []
    return _PUNCTUATION.sub("", name.lower()).split()


def normalize_name(name: str) -> str:
    """Order-insensitive form of a name: sorted tokens joined by single spaces."""
    return " ".join(sorted(name_tokens(name)))


def names_match(name1: str, name2: str) -> bool:
    """
    Check if two names likely refer to the same person.

    Equal token sets match ("Smith John" ~ "John Smith"). Names of two or more
    tokens also match when their first and last tokens agree, which tolerates
    middle names and initials ("John A. Smith" ~ "John Smith").
    """
    tokens1 = name_tokens(name1)
    tokens2 = name_tokens(name2)
    if not tokens1 or not tokens2:
        return False

    if sorted(tokens1) == sorted(tokens2):
        return True

    if len(tokens1) >= 2 and len(tokens2) >= 2:
        return tokens1[0] == tokens2[0] and tokens1[-1] == tokens2[-1]

    return False


def email_domain(owner_id: str) -> Optional[str]:
    if not owner_id or "@" not in owner_id:
        return None
    domain = owner_id.rsplit("@", 1)[1].strip().lower()
    return domain or None


def same_organization(
    workspace1: Workspace,
    workspace2: Workspace,
    public_domains: Optional[set[str]] = None,
) -> bool:
    """
    Approximate "same organization" by the owners' email domain.

    Owners without a domain, or on a public mail provider, never match.
    """
    public_domains = settings.public_email_domains if public_domains is None else public_domains
    domain1 = email_domain(workspace1.owner_id)
    domain2 = email_domain(workspace2.owner_id)
    if domain1 is None or domain2 is None:
        return False
    if domain1 in public_domains:
        return False
    return domain1 == domain2


def _email_index(people: list[Person], email_claims: Iterable[Claim]) -> dict[str, Person]:
    """Map lower-cased email -> person. First claimant of an address wins."""
    by_id = {p.id: p for p in people}
    index: dict[str, Person] = {}
    for person in people:
        if person.email and person.email.strip():
            index.setdefault(person.email.strip().lower(), person)
    for claim in email_claims:
        person = by_id.get(claim.subject_id)
        if person is None or not claim.value.strip():
            continue
        index.setdefault(claim.value.strip().lower(), person)
    return index


class OverlapDetector:
    """Full-corpus sweep producing a fresh set of cross-workspace overlaps."""

    def __init__(self, store: GraphStore, public_domains: Optional[set[str]] = None):
        self.store = store
        self.public_domains = public_domains

    def detect_overlaps(self, cancel_event: Optional[threading.Event] = None) -> list[Overlap]:
        """
        Run the sweep and replace the stored overlap set with its result.

        Either the whole sweep completes and is persisted in one transaction,
        or nothing is written.

        Raises:
            SweepCancelledError: if cancel_event is set before the sweep completes
            StorageError: if storage fails; the previous overlap set is kept
        """
        logger.info("Starting cross-workspace overlap detection...")
        workspaces = self.store.list_workspaces()

        overlaps: list[Overlap] = []
        pairs_checked = 0
        for workspace1, workspace2 in combinations(workspaces, 2):
            if cancel_event is not None and cancel_event.is_set():
                raise SweepCancelledError(
                    f"Overlap sweep cancelled after {pairs_checked} workspace pair(s); nothing persisted"
                )
            if not same_organization(workspace1, workspace2, self.public_domains):
                continue
            overlaps.extend(self.find_pair_overlaps(workspace1.id, workspace2.id))
            pairs_checked += 1

        self.store.replace_overlaps(overlaps)
        logger.info(f"Detected {len(overlaps)} cross-workspace overlaps across {pairs_checked} workspace pair(s)")
        return overlaps

    def find_pair_overlaps(self, workspace1_id: str, workspace2_id: str) -> list[Overlap]:
        """Run the email and name passes for one pair of workspaces."""
        people1 = self.store.list_people(workspace1_id)
        people2 = self.store.list_people(workspace2_id)
        if not people1 or not people2:
            return []

        claims1 = self.store.get_claims_by_key(workspace1_id, ClaimKey.EMAIL.value)
        claims2 = self.store.get_claims_by_key(workspace2_id, ClaimKey.EMAIL.value)

        overlaps = self.find_email_overlaps(people1, people2, claims1, claims2)
        overlaps.extend(self.find_name_overlaps(people1, people2))
        return overlaps

    def find_email_overlaps(
        self,
        people1: list[Person],
        people2: list[Person],
        claims1: Iterable[Claim],
        claims2: Iterable[Claim],
    ) -> list[Overlap]:
        index1 = _email_index(people1, claims1)
        index2 = _email_index(people2, claims2)

        overlaps = []
        for email, person1 in index1.items():
            person2 = index2.get(email)
            if person2 is None:
                continue
            overlaps.append(Overlap(
                person_id=person1.id,
                matched_person_id=person2.id,
                workspaces=[person1.tenant_id, person2.tenant_id],
                basis=OVERLAP_BASIS_EMAIL,
                confidence=EMAIL_MATCH_CONFIDENCE,
                person_name=person1.full_name,
                recommendation=EMAIL_MATCH_RECOMMENDATION,
            ))
        return overlaps

    def find_name_overlaps(self, people1: list[Person], people2: list[Person]) -> list[Overlap]:
        """
        Name pass. Candidates are bucketed by sorted-token form and by
        (first, last) token, then confirmed with names_match, which finds the
        same pairs as comparing every person against every other.
        """
        by_sorted: dict[str, list[int]] = defaultdict(list)
        by_first_last: dict[tuple[str, str], list[int]] = defaultdict(list)
        for idx, person in enumerate(people2):
            tokens = name_tokens(person.full_name)
            if not tokens:
                continue
            by_sorted[" ".join(sorted(tokens))].append(idx)
            if len(tokens) >= 2:
                by_first_last[(tokens[0], tokens[-1])].append(idx)

        overlaps = []
        for person1 in people1:
            tokens = name_tokens(person1.full_name)
            if not tokens:
                continue
            candidates = set(by_sorted.get(" ".join(sorted(tokens)), []))
            if len(tokens) >= 2:
                candidates.update(by_first_last.get((tokens[0], tokens[-1]), []))

            for idx in sorted(candidates):
                person2 = people2[idx]
                if not names_match(person1.full_name, person2.full_name):
                    continue
                overlaps.append(Overlap(
                    person_id=person1.id,
                    matched_person_id=person2.id,
                    workspaces=[person1.tenant_id, person2.tenant_id],
                    basis=OVERLAP_BASIS_NAME,
                    confidence=NAME_MATCH_CONFIDENCE,
                    person_name=person1.full_name,
                    recommendation=NAME_MATCH_RECOMMENDATION,
                ))
        return overlaps

    def get_workspace_overlaps(self, workspace_id: str) -> list[Overlap]:
        return self.store.get_workspace_overlaps(workspace_id)

    def get_all_overlaps(self) -> list[Overlap]:
        """Active overlaps only."""
        return self.store.list_overlaps(state=OVERLAP_STATE_ACTIVE)

    def dismiss_overlap(self, overlap_id: str) -> bool:
        """Dismiss an overlap. The next sweep regenerates it if it still holds."""
        return self.store.set_overlap_state(overlap_id, OVERLAP_STATE_DISMISSED)
