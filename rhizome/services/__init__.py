"""
Rhizome Services Package.

Business logic and data access for the relationship graph engine.

Example:
    from rhizome.services import (
        GraphStore,
        compute_signals,
        classify,
    )

Key service modules:
- graph_store: SQLite persistence for people, encounters, signals, edges, overlaps
- signals: Per-contact signal calculation and the recompute sweep
- layers: Dunbar layer classification and relationship metrics
- graph_builder: Edge creation from domain events
- overlap_detector: Cross-workspace duplicate detection sweep
- events: Domain events and the background event bus
"""

from rhizome.services.resilience import (
    GraphEngineError,
    NotFoundError,
    ValidationError,
    StorageError,
    ReferencedEntityError,
    SweepCancelledError,
    RetryConfig,
    retry_sync,
)

from rhizome.services.models import (
    ClaimKey,
    Workspace,
    Person,
    Claim,
    Encounter,
    Goal,
    Suggestion,
    ContactSignals,
    Edge,
    Overlap,
    resolve_claim,
)

from rhizome.services.graph_store import GraphStore

from rhizome.services.signals import (
    build_contact_signals,
    compute_signals,
    upsert_signals,
    recompute_signals,
)

from rhizome.services.layers import (
    DunbarLayer,
    DUNBAR_LAYERS,
    classify,
    compute_relationship_metrics,
    assess_maintenance,
    layer_populations,
)

from rhizome.services.graph_builder import GraphBuilder

from rhizome.services.overlap_detector import (
    OverlapDetector,
    names_match,
    normalize_name,
    same_organization,
)

from rhizome.services.events import (
    EventBus,
    EncounterRecorded,
    SuggestionAccepted,
    GoalReferencesPeople,
)
