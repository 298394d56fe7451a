"""
E-values for sensitivity analysis of unmeasured confounding.

The E-value is the minimum strength of association, on the risk ratio scale, that an unmeasured
confounder would need with both treatment and outcome to fully explain away an observed effect
(VanderWeele & Ding, 2017). Only the confidence limit closer to the null gets an E-value; the
other limit is reported as NaN.
"""

import numpy as np
import pandas as pd
from typing import Optional
import logging


logger = logging.getLogger(__name__)

ROWS = ["RR", "E-values"]
COLUMNS = ["point", "lower", "upper"]


def _threshold(x: float, true: float = 1.0) -> float:
    """E-value of a single risk ratio relative to a non-null true value."""
    if x == 0:
        return float(np.inf)
    if x < true:
        x, true = 1 / x, 1 / true
    ratio = x / true
    return float(ratio + np.sqrt(ratio * (ratio - 1)))


def evalues_rr(
    est: float,
    lo: Optional[float] = None,
    hi: Optional[float] = None,
    true: float = 1.0
) -> pd.DataFrame:
    """
    E-values for a risk ratio and its confidence interval.

    Args:
        est: Point estimate of the risk ratio
        lo: Lower confidence limit
        hi: Upper confidence limit
        true: Risk ratio to which the estimate should be shifted

    Returns:
        2x3 frame with rows "RR" and "E-values" and columns point/lower/upper
    """
    if est < 0:
        raise ValueError("RR cannot be negative")
    if true < 0:
        raise ValueError("True value is impossible")

    lo = np.nan if lo is None else float(lo)
    hi = np.nan if hi is None else float(hi)

    if not np.isnan(lo) and not np.isnan(hi):
        if lo > hi:
            raise ValueError("Lower confidence limit should be less than upper confidence limit")
    if (not np.isnan(lo) and est < lo) or (not np.isnan(hi) and est > hi):
        raise ValueError("Point estimate should be inside confidence interval")

    e_point = 1.0 if est == true else _threshold(est, true)
    e_lo, e_hi = np.nan, np.nan

    if est > true:
        if not np.isnan(lo):
            e_lo = 1.0 if lo <= true else _threshold(lo, true)
    elif est < true:
        if not np.isnan(hi):
            e_hi = 1.0 if hi >= true else _threshold(hi, true)
    else:
        e_lo = 1.0 if not np.isnan(lo) else np.nan

    return pd.DataFrame(
        [[float(est), lo, hi], [e_point, e_lo, e_hi]],
        index=ROWS,
        columns=COLUMNS
    )


def _or_to_rr(value, rare: bool):
    return value if rare else np.sqrt(value)


def _hr_to_rr(value, rare: bool):
    if rare or value == 0:
        return value
    return (1 - 0.5 ** np.sqrt(value)) / (1 - 0.5 ** np.sqrt(1 / value))


def _convert(value: Optional[float], fn, rare: bool) -> Optional[float]:
    return None if value is None else float(fn(value, rare))


def evalues_or(
    est: float,
    lo: Optional[float] = None,
    hi: Optional[float] = None,
    rare: bool = False,
    true: float = 1.0
) -> pd.DataFrame:
    """E-values for an odds ratio; a common outcome uses the square-root approximation to the RR."""
    if est < 0:
        raise ValueError("OR cannot be negative")
    return evalues_rr(
        _convert(est, _or_to_rr, rare),
        _convert(lo, _or_to_rr, rare),
        _convert(hi, _or_to_rr, rare),
        true=float(_or_to_rr(true, rare))
    )


def evalues_hr(
    est: float,
    lo: Optional[float] = None,
    hi: Optional[float] = None,
    rare: bool = False,
    true: float = 1.0
) -> pd.DataFrame:
    """E-values for a hazard ratio; a common outcome is converted with (1-0.5^sqrt(HR))/(1-0.5^sqrt(1/HR))."""
    if est < 0:
        raise ValueError("HR cannot be negative")
    return evalues_rr(
        _convert(est, _hr_to_rr, rare),
        _convert(lo, _hr_to_rr, rare),
        _convert(hi, _hr_to_rr, rare),
        true=float(_hr_to_rr(true, rare))
    )


def evalues_md(est: float, se: Optional[float] = None, true: float = 0.0) -> pd.DataFrame:
    """
    E-values for a standardized mean difference.

    Uses RR = exp(0.91 * d) with confidence limits exp(0.91 * d -/+ 1.78 * se).
    """
    if se is not None and se < 0:
        raise ValueError("Standard error cannot be negative")

    rr = np.exp(0.91 * est)
    lo = np.exp(0.91 * est - 1.78 * se) if se is not None else None
    hi = np.exp(0.91 * est + 1.78 * se) if se is not None else None
    return evalues_rr(rr, lo, hi, true=float(np.exp(0.91 * true)))


def robustness_label(evalue: float) -> str:
    """Qualitative robustness of a point E-value."""
    if evalue >= 3.0:
        return "Strong"
    if evalue >= 2.0:
        return "Moderate"
    if evalue >= 1.5:
        return "Weak"
    return "Very Weak"


def evalue_table(studies: pd.DataFrame, true: float = 1.0) -> pd.DataFrame:
    """
    E-values for every study row.

    Args:
        studies: Frame with columns study, rr, rr_lo, rr_hi
        true: Risk ratio to which each estimate should be shifted

    Returns:
        One row per study with the E-value for the point estimate, the E-value for the
        confidence limit closer to the null and a robustness label
    """
    rows = []
    for record in studies.itertuples(index=False):
        result = evalues_rr(record.rr, record.rr_lo, record.rr_hi, true=true)
        evalues = result.loc["E-values"]
        ci_evalue = evalues['lower'] if not np.isnan(evalues['lower']) else evalues['upper']
        rows.append({
            'study': record.study,
            'rr': record.rr,
            'rr_lo': record.rr_lo,
            'rr_hi': record.rr_hi,
            'evalue_point': evalues['point'],
            'evalue_ci': ci_evalue,
            'robustness': robustness_label(evalues['point']),
        })
        logger.info(f"{record.study}: E-value {evalues['point']:.2f} (CI {ci_evalue:.2f})")

    return pd.DataFrame(rows)
