import logging
import math
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from slope_match.data_layer.models import RankResult

logger = logging.getLogger(__name__)

# Scores closer than this are treated as equal when picking the winner
SCORE_TOLERANCE = 1e-9


def _key(name) -> str:
    return name.value if isinstance(name, Enum) else str(name)


def validate_weights(weights: Mapping) -> Dict[str, float]:
    """Weights are relative importances in [0, 1]; they are not normalised."""
    clean = {}
    for name, weight in weights.items():
        if isinstance(weight, bool):
            raise ValueError(f"Weight for {_key(name)!r} is not a number: {weight!r}")
        try:
            value = float(weight)
        except (TypeError, ValueError):
            raise ValueError(f"Weight for {_key(name)!r} is not a number: {weight!r}")
        if math.isnan(value) or not 0.0 <= value <= 1.0:
            raise ValueError(f"Weight for {_key(name)!r} must be within [0, 1], got {weight!r}")
        clean[_key(name)] = value
    return clean


def _as_series(values: Mapping, resort_ids: list) -> pd.Series:
    raw = pd.Series([(values or {}).get(rid) for rid in resort_ids], index=resort_ids, dtype=object)
    series = pd.to_numeric(raw, errors="coerce").astype(float)
    return series.replace([np.inf, -np.inf], np.nan)


def ordinal_ranks(values: Mapping, resort_ids: Iterable[str]) -> pd.Series:
    """
    Ranks one metric across all resorts: 1 is worst, N is best.

    Equal values keep resort order (the earlier resort gets the lower rank).
    Absent values all share rank 1 and observed values are shifted above
    them, so the best observed value always lands on N. A metric with no
    observed values ranks every resort 1.
    """
    resort_ids = list(resort_ids)
    series = _as_series(values, resort_ids)
    n_absent = int(series.isna().sum())
    ranks = series.rank(method="first", ascending=True) + n_absent
    return ranks.fillna(1).astype(int)


def rank(
    metrics: Mapping[str, Mapping[str, Optional[float]]],
    weights: Mapping[str, float],
    resort_ids: Optional[Iterable[str]] = None,
) -> RankResult:
    """
    Combines per-metric ordinal ranks into one weighted score per resort and
    picks the recommended resort.

    score = sum(rank * weight) over metrics that carry a weight; metrics
    without a weight contribute nothing. The winner is the highest score.
    Among tied resorts one with an observed value in a weighted metric beats
    one that has none, then the first in resort order wins.
    """
    weights = validate_weights(weights)
    metrics = {_key(name): values for name, values in metrics.items()}

    if resort_ids is None:
        first = next(iter(metrics.values()), {})
        resort_ids = list(first.keys())
    resort_ids = list(resort_ids)
    if not resort_ids:
        raise ValueError("Cannot rank an empty set of resorts")

    value_table = pd.DataFrame(
        {name: _as_series(values, resort_ids) for name, values in metrics.items()},
        index=resort_ids,
    )
    rank_table = pd.DataFrame(
        {name: ordinal_ranks(values, resort_ids) for name, values in metrics.items()},
        index=resort_ids,
    )

    scored = [name for name in metrics if name in weights]
    unweighted = [name for name in metrics if name not in weights]
    if unweighted:
        logger.debug(f"Metrics without weight, excluded from score: {unweighted}")

    scores = pd.Series(0.0, index=resort_ids)
    for name in scored:
        scores = scores + rank_table[name] * weights[name]

    if scored:
        observed = value_table[scored].notna().any(axis=1)
    else:
        observed = pd.Series(False, index=resort_ids)

    best = scores.max()
    tied = [rid for rid in resort_ids if scores[rid] >= best - SCORE_TOLERANCE]
    candidates = [rid for rid in tied if observed[rid]] or tied
    winner = candidates[0]

    return RankResult(
        scores=[(rid, float(scores[rid])) for rid in resort_ids],
        ranks={name: {rid: int(rank_table.at[rid, name]) for rid in resort_ids} for name in metrics},
        winner=winner,
    )
