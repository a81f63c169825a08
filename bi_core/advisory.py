from __future__ import annotations

from typing import List, Optional, Tuple

from bi_core.config import AdvisoryThresholds
from bi_core.models import Advisory, AdvisoryEntry, Deltas, ImpactEntry, Interpretation, StatisticsRecord


TopCategory = Optional[Tuple[str, Optional[float]]]


def concentration_pct(stats: StatisticsRecord, top_category: TopCategory = None) -> float:
    peak = stats.max
    if top_category is not None and top_category[1] is not None:
        peak = float(top_category[1])
    return peak / (stats.sum or 1) * 100


def coefficient_of_variation(stats: StatisticsRecord) -> float:
    return stats.std_dev / (stats.mean or 1)


def interpret(
    stats: StatisticsRecord,
    correlation: float,
    deltas: Deltas,
    label_x: str,
    label_y: str,
    top_category: TopCategory = None,
    *,
    thresholds: Optional[AdvisoryThresholds] = None,
) -> Advisory:
    """Turn a statistics record into labels, an impact matrix and advisory actions.

    Concentration is the share of ``stats.sum`` held by the peak. When
    ``top_category`` carries a value (as it does in every audit run) the peak is
    that category's aggregated total, so the figure reads as "top category share
    of total". Without one it falls back to the single largest value,
    ``stats.max / stats.sum``. The two differ whenever a category spans several
    rows; the older max/sum reading under-reports such datasets.
    """
    t = thresholds or AdvisoryThresholds()
    concentration = concentration_pct(stats, top_category)
    cv = coefficient_of_variation(stats)
    volume_shift = deltas.volume_shift_pct
    dominant = top_category[0] if top_category is not None else "N/A"

    interpretation = Interpretation(
        operational_state="Highly Concentrated" if concentration > t.operational_concentration_pct else "Balanced",
        concentration_risk=(
            "Critical Dependency" if concentration > t.dependency_concentration_pct else "Stable Diversification"
        ),
        stability_assessment="Steady-State" if abs(volume_shift) < t.steady_volume_shift_pct else "Volatile",
        efficiency_observation="High Precision" if cv < t.precision_cv else "Dispersed",
        variance_status="High Variance" if cv > t.precision_cv else "Stable Distribution",
        concentration_pct=round(concentration, 2),
    )

    impact_matrix = (
        ImpactEntry(
            label="Dominance",
            severity="High" if stats.max > stats.mean * t.dominance_mean_multiple else "Medium",
            detail=f"Dominant contributor [{dominant}] controls {concentration:.1f}% of total {label_y}.",
            trigger=f"concentration > {t.dependency_concentration_pct:g}%",
        ),
        ImpactEntry(
            label="Stability",
            severity="Critical" if abs(cv) > t.stability_cv else "Stable",
            detail=f"Variance measured at {stats.variance:.1f} with a standard deviation of {stats.std_dev:.1f}.",
            trigger="variance within threshold",
        ),
        ImpactEntry(
            label="Relational Lock",
            severity="Critical" if abs(correlation) > t.relational_lock_correlation else "Weak",
            detail=f"{label_y} shows a {abs(correlation):.2f} correlation strength with {label_x}.",
            trigger=f"correlation > {t.relational_lock_correlation:g}",
        ),
    )

    advisory: List[AdvisoryEntry] = []
    if concentration > t.dependency_concentration_pct:
        advisory.append(
            AdvisoryEntry(
                action="DIVERSIFY",
                metric="Concentration",
                context=(
                    f"Reduce dependency on [{dominant}]. Concentration of {concentration:.1f}% creates a "
                    "single point of failure; redistribute volume to secondary contributors."
                ),
            )
        )
    if abs(volume_shift) > t.monitor_volume_shift_pct:
        advisory.append(
            AdvisoryEntry(
                action="MONITOR",
                metric="Volatility",
                context=(
                    f"Volume shifted {volume_shift}% since the previous audit, above the "
                    f"{t.monitor_volume_shift_pct:g}% threshold. Validate input integrity and peak stability."
                ),
            )
        )
    if cv > t.reduce_cv:
        advisory.append(
            AdvisoryEntry(
                action="REDUCE",
                metric="Dispersion",
                context="High variance detected. Stabilize the high-variance segments to improve consistency.",
            )
        )
    if not advisory:
        advisory.append(
            AdvisoryEntry(
                action="MAINTAIN",
                metric="Baseline",
                context="Concentration and variance are within thresholds. Continue standard monitoring.",
            )
        )

    return Advisory(interpretation=interpretation, impact_matrix=impact_matrix, advisory=tuple(advisory))
