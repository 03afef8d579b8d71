"""Commission multiplier bands.

The number of validated deliveries of an influencer in a cycle picks a band
from ``business_config``; the band factor multiplies the points earned from
approved sales.
"""
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from config.business_config import business_config
from .points import round_points


@dataclass(frozen=True)
class MultiplierResult:
    """Band selected for a validated-deliveries count."""
    factor: float
    label: str
    band: Optional[Dict[str, Any]]
    activations: int


@dataclass(frozen=True)
class PointsSummary:
    """Base points of a cycle with the multiplier applied."""
    base_points: int
    total_points: int
    factor: float
    label: str
    validated_days: int


def get_multiplier(activations) -> MultiplierResult:
    """Pick the band for ``activations`` validated deliveries.

    Zero, negative or unparseable counts get factor 0. Counts beyond the last
    band keep the last band.
    """
    try:
        count = float(activations)
    except (TypeError, ValueError):
        count = math.nan

    if not math.isfinite(count) or count <= 0:
        return MultiplierResult(
            factor=0, label=business_config.get_no_activation_label(),
            band=None, activations=0
        )

    bands = business_config.get_activation_bands()
    for band in bands:
        upper = band["max"] if band["max"] is not None else math.inf
        if band["min"] <= count <= upper:
            return MultiplierResult(
                factor=band["factor"], label=band["label"],
                band=band, activations=int(count)
            )

    # Between bands (fractional counts) or past the last one
    last = bands[-1]
    return MultiplierResult(
        factor=last["factor"], label=last["label"], band=last,
        activations=int(count)
    )


def summarize_points(base_points, activations) -> PointsSummary:
    """Apply the multiplier of ``activations`` to ``base_points``."""
    base = round_points(base_points)
    result = get_multiplier(activations)
    return PointsSummary(
        base_points=base,
        total_points=round_points(base * result.factor),
        factor=result.factor,
        label=result.label,
        validated_days=result.activations,
    )
