"""
Contact Signals - Derive per-contact relationship signals from raw history.

For one (tenant, contact) pair the calculator reads the contact's encounters
and claims and produces a ContactSignals record:

- interactions_90d: encounters in the trailing RECENT_WINDOW_DAYS
- decay_days: whole days since the latest encounter (NO_CONTACT_DECAY_DAYS if none)
- reciprocity_ratio: outbound kinds (email, call) vs mutual kinds (meeting), x50, capped
- sentiment_avg: 70 if recently active else 30, minus 0.2 per decay day
- role_tags / shared_context_tags: normalized claim values
- goal_alignment_score: min(100, 10 * context tags + 5 * interactions_90d)
- capacity_cost: 100 - clamp(2 * interactions_90d + (100 - decay_days), 0, 50)

The sentiment and reciprocity formulas are coarse placeholders kept for
compatibility with stored signals; anything honouring the 0-100 contract can
replace them without touching callers.

Computation is pure given `now`; persistence is a separate upsert.
"""
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Iterable, Optional

from config.settings import settings
from config.signal_weights import (
    CAPACITY_PER_INTERACTION,
    CAPACITY_RELIEF_CAP,
    CONTEXT_TAG_KEYS,
    GOAL_ALIGNMENT_PER_INTERACTION,
    GOAL_ALIGNMENT_PER_TAG,
    MUTUAL_KINDS,
    NO_CONTACT_DECAY_DAYS,
    OUTBOUND_KINDS,
    RECENT_WINDOW_DAYS,
    RECIPROCITY_SCALE,
    ROLE_TAG_KEYS,
    SCORE_MAX,
    SCORE_MIN,
    SENTIMENT_ACTIVE_BASELINE,
    SENTIMENT_DECAY_PER_DAY,
    SENTIMENT_INACTIVE_BASELINE,
)
from rhizome.services.graph_store import GraphStore
from rhizome.services.models import Claim, ContactSignals, Encounter, clamp
from rhizome.services.resilience import GraphEngineError, NotFoundError, RetryConfig, retry_sync
from rhizome.utils.datetime_utils import days_since, make_aware, utc_now

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """Round halves up (2.5 -> 3), unlike the built-in round()."""
    return int(math.floor(value + 0.5))


def _bounded(value: float) -> int:
    return round_half_up(clamp(value, SCORE_MIN, SCORE_MAX))


def compute_decay_days(last_interaction_at: Optional[datetime], now: datetime) -> int:
    """
    Whole days since the last interaction.

    A contact never encountered is treated as maximally decayed rather than
    as an error.
    """
    if last_interaction_at is None:
        return NO_CONTACT_DECAY_DAYS
    return days_since(last_interaction_at, now)


def compute_reciprocity_ratio(encounters: Iterable[Encounter]) -> int:
    """
    Ratio of outbound-initiated encounters to mutual ones, scaled to 0-100.

    With no mutual encounter the ratio is undefined and reported as 0.
    """
    kinds = [e.kind for e in encounters]
    sent = sum(1 for k in kinds if k in OUTBOUND_KINDS)
    mutual = sum(1 for k in kinds if k in MUTUAL_KINDS)
    if mutual == 0:
        return 0
    return _bounded(min(SCORE_MAX, (sent / mutual) * RECIPROCITY_SCALE))


def compute_sentiment_avg(interactions_90d: int, decay_days: int) -> int:
    baseline = SENTIMENT_ACTIVE_BASELINE if interactions_90d > 0 else SENTIMENT_INACTIVE_BASELINE
    return _bounded(baseline - decay_days * SENTIMENT_DECAY_PER_DAY)


def extract_tags(claims: Iterable[Claim], keys: Iterable[str]) -> list[str]:
    """
    Collect tag values from claims with the given keys.

    Values are lower-cased and split on commas; blanks are dropped and
    duplicates removed, keeping first-seen order.
    """
    wanted = set(keys)
    tags: list[str] = []
    seen: set[str] = set()
    for claim in claims:
        if claim.key not in wanted or not claim.value:
            continue
        for part in claim.value.split(","):
            tag = part.strip().lower()
            if tag and tag not in seen:
                seen.add(tag)
                tags.append(tag)
    return tags


def compute_goal_alignment_score(context_tags: list[str], interactions_90d: int) -> int:
    return _bounded(min(
        SCORE_MAX,
        len(context_tags) * GOAL_ALIGNMENT_PER_TAG + interactions_90d * GOAL_ALIGNMENT_PER_INTERACTION,
    ))


def compute_capacity_cost(interactions_90d: int, decay_days: int) -> int:
    relief = clamp(
        interactions_90d * CAPACITY_PER_INTERACTION + (100 - decay_days),
        0,
        CAPACITY_RELIEF_CAP,
    )
    return _bounded(SCORE_MAX - relief)


def build_contact_signals(
    tenant_id: str,
    contact_id: str,
    encounters: list[Encounter],
    claims: list[Claim],
    now: datetime,
) -> ContactSignals:
    """
    Compute signals from already-fetched history. Pure and deterministic.

    Args:
        tenant_id: Workspace id
        contact_id: Person id
        encounters: All-time encounters involving the contact
        claims: Claims about the contact
        now: Reference instant

    Returns:
        ContactSignals with every bounded score in [0, 100]
    """
    now = make_aware(now)
    # Sort so the result never depends on the order the store returned rows in
    encounters = sorted(encounters, key=lambda e: (make_aware(e.occurred_at), e.id), reverse=True)
    claims = sorted(claims, key=lambda c: (make_aware(c.observed_at), c.id))

    window_start = now - timedelta(days=RECENT_WINDOW_DAYS)
    interactions_90d = sum(1 for e in encounters if make_aware(e.occurred_at) >= window_start)

    last_interaction_at = make_aware(encounters[0].occurred_at) if encounters else None
    decay_days = compute_decay_days(last_interaction_at, now)

    role_tags = extract_tags(claims, ROLE_TAG_KEYS)
    context_tags = extract_tags(claims, CONTEXT_TAG_KEYS)

    return ContactSignals(
        tenant_id=tenant_id,
        contact_id=contact_id,
        last_interaction_at=last_interaction_at,
        interactions_90d=interactions_90d,
        reciprocity_ratio=compute_reciprocity_ratio(encounters),
        sentiment_avg=compute_sentiment_avg(interactions_90d, decay_days),
        decay_days=decay_days,
        role_tags=role_tags,
        shared_context_tags=context_tags,
        goal_alignment_score=compute_goal_alignment_score(context_tags, interactions_90d),
        capacity_cost=compute_capacity_cost(interactions_90d, decay_days),
    )


def compute_signals(
    store: GraphStore,
    tenant_id: str,
    contact_id: str,
    now: Optional[datetime] = None,
) -> ContactSignals:
    """
    Compute signals for a contact from stored history. Read-only.

    Raises:
        NotFoundError: if the contact does not belong to the tenant
        StorageError: on storage failure; the caller decides whether to retry
    """
    person = store.get_person(tenant_id, contact_id)
    if person is None:
        raise NotFoundError("Person", contact_id, tenant_id)

    encounters = store.get_encounters_for_person(tenant_id, contact_id)
    claims = store.get_claims(tenant_id, contact_id)
    return build_contact_signals(tenant_id, contact_id, encounters, claims, now or utc_now())


def upsert_signals(store: GraphStore, signals: ContactSignals) -> ContactSignals:
    """Persist signals, replacing any previous row for the same (tenant, contact)."""
    return store.upsert_signals(signals)


# Short in-sweep retry for transient write failures such as a locked database
SWEEP_RETRY_CONFIG = RetryConfig(max_retries=2, base_delay=0.1, max_delay=1.0)


def _is_fresh(existing: Optional[ContactSignals], now: datetime) -> bool:
    if existing is None or existing.updated_at is None:
        return False
    age_hours = (make_aware(now) - existing.updated_at).total_seconds() / 3600
    return 0 <= age_hours < settings.signal_freshness_hours


def recompute_signals(
    store: GraphStore,
    tenant_id: Optional[str] = None,
    force: bool = False,
    cancel_event: Optional[threading.Event] = None,
    now: Optional[datetime] = None,
    max_workers: Optional[int] = None,
) -> dict:
    """
    Recompute and persist signals for every contact of one or all workspaces.

    Contacts are independent units of work and run on a thread pool. Each
    contact's row is written by its own atomic upsert, so a cancelled or
    partially failed sweep never leaves a half-written row behind.

    Args:
        store: Storage collaborator
        tenant_id: Restrict to one workspace (default: all)
        force: Recompute even if stored signals are fresh
        cancel_event: Set it to stop before the next contact starts
        now: Reference instant (default: current time)
        max_workers: Thread pool size (default from settings)

    Returns:
        Statistics about the sweep
    """
    now = now or utc_now()
    if tenant_id:
        tenant_ids = [tenant_id]
    else:
        tenant_ids = [w.id for w in store.list_workspaces()]

    stats = {"processed": 0, "updated": 0, "skipped": 0, "failed": 0, "cancelled": 0}
    lock = threading.Lock()

    def _bump(key: str):
        with lock:
            stats[key] += 1

    def _process(tid: str, contact_id: str):
        if cancel_event is not None and cancel_event.is_set():
            _bump("cancelled")
            return
        try:
            if not force and _is_fresh(store.get_signals(tid, contact_id), now):
                _bump("skipped")
                return
            retry_sync(SWEEP_RETRY_CONFIG)(upsert_signals)(store, compute_signals(store, tid, contact_id, now=now))
            _bump("updated")
        except GraphEngineError as e:
            logger.error(f"Failed to compute signals for contact {contact_id} in {tid}: {e}")
            _bump("failed")
        finally:
            _bump("processed")

    workers = max_workers or settings.signal_workers
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = []
        for tid in tenant_ids:
            if cancel_event is not None and cancel_event.is_set():
                break
            for person in store.list_people(tid):
                futures.append(executor.submit(_process, tid, person.id))
        for future in futures:
            future.result()

    logger.info(
        f"Signals sweep: {stats['updated']} updated, {stats['skipped']} fresh, "
        f"{stats['failed']} failed, {stats['cancelled']} cancelled"
    )
    return stats
