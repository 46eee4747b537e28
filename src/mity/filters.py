"""
Quality rules for normalised mitochondrial variants.

Every rule is checked independently and contributes its own FILTER name.
Thresholds and the blacklist are passed in explicitly.
"""

from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from .models import (
    FilterDecision,
    FilterThresholds,
    VariantRecord,
    mean_alt_base_quality,
    first_value,
)

RULE_DEPTH = "DP"
RULE_MQMR = "MQMR"
RULE_AQR = "AQR"
RULE_SBR = "SBR"
RULE_POS = "POS"

RULE_ORDER: Tuple[str, ...] = (RULE_DEPTH, RULE_MQMR, RULE_AQR, RULE_SBR, RULE_POS)


def filter_descriptions(thresholds: FilterThresholds) -> Dict[str, str]:
    """Header descriptions for each FILTER name."""
    return {
        RULE_DEPTH: f"Read depth below {thresholds.min_dp}",
        RULE_MQMR: f"Mean mapping quality of reference reads below {thresholds.min_mqmr}",
        RULE_AQR: f"Mean base quality of alternate reads below {thresholds.min_aqr}",
        RULE_SBR: (
            f"Alternate strand bias ratio outside "
            f"[{thresholds.sb_low}, {thresholds.sb_high}]"
        ),
        RULE_POS: "Position is on the mitochondrial blacklist",
    }


def _below(value: Optional[float], minimum: float) -> bool:
    return value is None or value < minimum


def site_failures(
    record: VariantRecord, thresholds: FilterThresholds, blacklist: FrozenSet[int]
) -> List[str]:
    """Rules that depend only on site-level evidence: MQMR, SBR and POS."""
    failed = []
    if _below(record.ref_mapping_quality, thresholds.min_mqmr):
        failed.append(RULE_MQMR)
    sbr = record.strand_bias_ratio
    if sbr is None or not thresholds.sb_low <= sbr <= thresholds.sb_high:
        failed.append(RULE_SBR)
    if record.pos in blacklist:
        failed.append(RULE_POS)
    return failed


def _ordered(failed: Sequence[str]) -> Tuple[str, ...]:
    seen = set(failed)
    return tuple(rule for rule in RULE_ORDER if rule in seen)


def evaluate_record(
    record: VariantRecord, thresholds: FilterThresholds, blacklist: FrozenSet[int]
) -> FilterDecision:
    """Apply all rules using site-level INFO values."""
    failed = site_failures(record, thresholds, blacklist)
    if _below(record.depth, thresholds.min_dp):
        failed.append(RULE_DEPTH)
    if _below(record.alt_base_quality, thresholds.min_aqr):
        failed.append(RULE_AQR)
    ordered = _ordered(failed)
    return FilterDecision(passed=not ordered, failed=ordered)


def evaluate_sample(
    record: VariantRecord,
    sample: Dict,
    thresholds: FilterThresholds,
    blacklist: FrozenSet[int],
) -> FilterDecision:
    """Apply all rules to one sample: its own DP and AQR plus the site rules."""
    failed = site_failures(record, thresholds, blacklist)
    if _below(first_value(sample.get("DP")), thresholds.min_dp):
        failed.append(RULE_DEPTH)
    if _below(mean_alt_base_quality(sample), thresholds.min_aqr):
        failed.append(RULE_AQR)
    ordered = _ordered(failed)
    return FilterDecision(passed=not ordered, failed=ordered)


def aggregate(decisions: Sequence[FilterDecision], all_samples: bool) -> FilterDecision:
    """
    Combine per-sample decisions into a site decision.

    With all_samples the site passes only if every sample passes; otherwise
    one passing sample is enough. A failing site lists the failed rules of
    its failing samples.
    """
    if not decisions:
        return FilterDecision(passed=False, failed=())

    if all_samples:
        passed = all(d.passed for d in decisions)
    else:
        passed = any(d.passed for d in decisions)

    if passed:
        return FilterDecision(passed=True)

    failed: List[str] = []
    for decision in decisions:
        failed.extend(decision.failed)
    return FilterDecision(passed=False, failed=_ordered(failed))


def apply_filters(
    record: VariantRecord,
    thresholds: FilterThresholds,
    blacklist: FrozenSet[int],
    all_samples: bool = False,
) -> Tuple[FilterDecision, Dict[str, FilterDecision]]:
    """
    Decide a record's FILTER and each sample's FT.

    Records without samples are judged on INFO values alone.
    """
    if not record.samples:
        return evaluate_record(record, thresholds, blacklist), {}

    per_sample = {
        name: evaluate_sample(record, values, thresholds, blacklist)
        for name, values in record.samples.items()
    }
    return aggregate(list(per_sample.values()), all_samples), per_sample
