"""
Dunbar Layers - Classify contacts into relationship-depth tiers.

Five ordered layers with nominal population ceilings:
    1 intimate (5), 2 close (15), 3 meaningful (50), 4 stable (150), 5 extended (1500)

Classification uses:
    strength = 10 * (0.3 * recency + 0.4 * frequency + 0.3 * sentiment)
    monthly_frequency = interactions_90d / 3

and walks the ladder top-down. A layer requires BOTH its strength bar and its
frequency bar, so a strong but rarely-seen contact drops to a lower layer
("use it or lose it"). The ladder is fixed for compatibility.
"""
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from config.signal_weights import (
    EXPECTED_CADENCE_DAYS,
    FALLBACK_LAYER,
    HEALTH_HIGH_THRESHOLD,
    HEALTH_MEDIUM_THRESHOLD,
    HEALTH_RECENCY_WINDOW_DAYS,
    LAYER_FREQUENCY_TARGET,
    LAYER_FREQUENCY_WEIGHT,
    LAYER_RECENCY_WEIGHT,
    LAYER_RECENCY_WINDOW_DAYS,
    LAYER_SENTIMENT_WEIGHT,
    LAYER_THRESHOLDS,
    MONTHS_IN_WINDOW,
)
from rhizome.services.models import ContactSignals, clamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DunbarLayer:
    layer: int
    name: str
    max_size: int
    description: str
    interaction_frequency: str  # "daily" | "weekly" | "monthly" | "quarterly" | "annual"


DUNBAR_LAYERS: list[DunbarLayer] = [
    DunbarLayer(1, "intimate", 5, "Intimate bonds - closest relationships", "daily"),
    DunbarLayer(2, "close", 15, "Close friends and family", "weekly"),
    DunbarLayer(3, "meaningful", 50, "Meaningful connections", "monthly"),
    DunbarLayer(4, "stable", 150, "Stable social network", "quarterly"),
    DunbarLayer(5, "extended", 1500, "Extended network", "annual"),
]

_LAYERS_BY_NUMBER = {layer.layer: layer for layer in DUNBAR_LAYERS}


def get_layer(number: int) -> DunbarLayer:
    return _LAYERS_BY_NUMBER[number]


def compute_recency_factor(decay_days: int) -> float:
    return max(0.0, 1.0 - decay_days / LAYER_RECENCY_WINDOW_DAYS)


def compute_frequency_factor(interactions_90d: int) -> float:
    return min(1.0, interactions_90d / LAYER_FREQUENCY_TARGET)


def compute_monthly_frequency(interactions_90d: int) -> float:
    return interactions_90d / MONTHS_IN_WINDOW


def compute_layer_strength(signals: ContactSignals) -> float:
    """Unrounded strength on a 0-10 scale."""
    return 10 * (
        LAYER_RECENCY_WEIGHT * compute_recency_factor(signals.decay_days)
        + LAYER_FREQUENCY_WEIGHT * compute_frequency_factor(signals.interactions_90d)
        + LAYER_SENTIMENT_WEIGHT * (signals.sentiment_avg / 100)
    )


def determine_layer(strength: float, monthly_frequency: float) -> DunbarLayer:
    """
    Walk the ladder top-down; the first layer whose bars are both cleared wins.

    Bars are inclusive, so a value exactly on a boundary lands in the higher layer.
    """
    for number, min_strength, min_monthly in LAYER_THRESHOLDS:
        if strength >= min_strength and monthly_frequency >= min_monthly:
            return get_layer(number)
    return get_layer(FALLBACK_LAYER)


def classify(signals: ContactSignals) -> DunbarLayer:
    """Map a signals snapshot to its Dunbar layer. Total: always returns a layer."""
    return determine_layer(
        compute_layer_strength(signals),
        compute_monthly_frequency(signals.interactions_90d),
    )


@dataclass
class RelationshipMetrics:
    contact_id: str
    strength: int  # 1-10, rounded for display
    dunbar_layer: DunbarLayer
    monthly_frequency: float
    emotional_connection: float  # 0-10, from sentiment_avg
    mutual_engagement: float  # 0-10, from reciprocity_ratio


def compute_relationship_metrics(signals: ContactSignals) -> RelationshipMetrics:
    """Display-oriented summary of one contact. The layer uses the unrounded strength."""
    strength = compute_layer_strength(signals)
    return RelationshipMetrics(
        contact_id=signals.contact_id,
        strength=int(clamp(math.floor(strength + 0.5), 1, 10)),
        dunbar_layer=classify(signals),
        monthly_frequency=compute_monthly_frequency(signals.interactions_90d),
        emotional_connection=signals.sentiment_avg / 10,
        mutual_engagement=signals.reciprocity_ratio / 10,
    )


@dataclass
class MaintenanceAssessment:
    contact_id: str
    relationship_health: int  # 0-10
    maintenance_needed: bool
    energy_level: str  # "high" | "medium" | "low"
    suggested_actions: list[str] = field(default_factory=list)


def assess_maintenance(signals: ContactSignals) -> MaintenanceAssessment:
    """
    Judge whether a relationship needs attention.

    Maintenance is due once the time since last contact exceeds the expected
    cadence of the contact's layer (daily for intimate ... annual for extended).
    """
    metrics = compute_relationship_metrics(signals)
    layer = metrics.dunbar_layer
    days = signals.decay_days

    factors = [
        metrics.strength / 10,
        max(0.0, 1.0 - days / HEALTH_RECENCY_WINDOW_DAYS),
        min(1.0, metrics.monthly_frequency / 2),
        metrics.emotional_connection / 10,
        metrics.mutual_engagement / 10,
    ]
    health = int(math.floor(sum(factors) / len(factors) * 10 + 0.5))

    expected = EXPECTED_CADENCE_DAYS.get(layer.interaction_frequency, 30)
    maintenance_needed = days > expected

    if health >= HEALTH_HIGH_THRESHOLD:
        energy = "high"
    elif health >= HEALTH_MEDIUM_THRESHOLD:
        energy = "medium"
    else:
        energy = "low"

    actions = []
    if maintenance_needed:
        actions.append(f"Reach out to maintain your {layer.name} connection")
    if metrics.emotional_connection < 5:
        actions.append("Consider a more personal conversation to deepen the relationship")
    if days > 90:
        actions.append("Share a life update or ask about recent changes")

    return MaintenanceAssessment(
        contact_id=signals.contact_id,
        relationship_health=health,
        maintenance_needed=maintenance_needed,
        energy_level=energy,
        suggested_actions=actions,
    )


def layer_populations(signals_list: Iterable[ContactSignals]) -> dict[str, dict]:
    """
    Count contacts per layer and flag layers above their nominal ceiling.

    Returns:
        Dict keyed by layer name: {"layer", "count", "max_size", "over_capacity"}
    """
    counts = Counter(classify(s).layer for s in signals_list)
    report = {}
    for layer in DUNBAR_LAYERS:
        count = counts.get(layer.layer, 0)
        report[layer.name] = {
            "layer": layer.layer,
            "count": count,
            "max_size": layer.max_size,
            "over_capacity": count > layer.max_size,
        }
        if count > layer.max_size:
            logger.info(f"Layer {layer.name} holds {count} contacts (ceiling {layer.max_size})")
    return report
