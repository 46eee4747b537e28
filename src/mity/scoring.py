"""
QUAL rescoring from a background noise rate.

A scoring model is any callable ``model(alt_count, depth, p) -> float``.
Models must be non-increasing in ``p``: for the same evidence a lower noise
rate never gives a lower score.
"""

import logging
from typing import Callable, Dict, Optional, Tuple

import numpy as np
from scipy.stats import binom

from .models import VariantRecord, first_value

logger = logging.getLogger(__name__)

QualModel = Callable[[int, int, float], float]

LOG10 = np.log(10.0)


def binomial_qual(alt_count: int, depth: int, p: float) -> float:
    """
    Phred-scaled probability that noise alone explains the alternate reads.

    QUAL = -10 * log10(P(X >= alt_count)), X ~ Binomial(depth, p).

    Returns 0.0 when there is no alternate evidence; may return inf for
    overwhelming evidence, which callers cap.
    """
    if depth <= 0 or alt_count <= 0:
        return 0.0
    alt_count = min(alt_count, depth)
    log_sf = binom.logsf(alt_count - 1, depth, p)
    return float(max(-10.0 * log_sf / LOG10, 0.0))


def capped(score: float, max_qual: float) -> float:
    """Clamp a score to [0, max_qual], mapping inf/nan to the bounds."""
    if np.isnan(score):
        return 0.0
    return float(min(max(score, 0.0), max_qual))


def _evidence(values: Dict) -> Tuple[Optional[int], Optional[int]]:
    alt = first_value(values.get("AO"))
    depth = first_value(values.get("DP"))
    if alt is None or depth is None:
        return None, None
    return int(alt), int(depth)


def score_record(
    record: VariantRecord,
    p: float,
    model: QualModel = binomial_qual,
    max_qual: float = 10000.0,
) -> Tuple[Optional[float], Dict[str, Optional[float]]]:
    """
    Score a decomposed record and each of its samples.

    The site score is the best per-sample score; records without samples are
    scored from INFO AO/DP.

    Returns:
        (site score or None if no evidence, {sample: score or None})
    """
    sample_scores: Dict[str, Optional[float]] = {}
    for name, values in record.samples.items():
        alt, depth = _evidence(values)
        if alt is None or depth is None:
            sample_scores[name] = None
            continue
        sample_scores[name] = round(capped(model(alt, depth, p), max_qual), 2)

    scored = [s for s in sample_scores.values() if s is not None]
    if scored:
        return max(scored), sample_scores

    alt, depth = _evidence(record.info)
    if alt is None or depth is None:
        logger.debug(f"No AO/DP evidence to score {record.contig}:{record.pos}")
        return None, sample_scores
    return round(capped(model(alt, depth, p), max_qual), 2), sample_scores
