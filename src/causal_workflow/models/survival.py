"""
Weighted Cox regression and Kaplan-Meier curves by treatment group.
"""

import numpy as np
import pandas as pd
from typing import Dict, Optional
import logging
import warnings

from lifelines import CoxPHFitter, KaplanMeierFitter
from lifelines.exceptions import StatisticalWarning

from .. import config
from .causal_models import CausalEstimate


logger = logging.getLogger(__name__)

GROUP_LABELS = {0: "Control", 1: "Treatment"}


def _check_survival_columns(df: pd.DataFrame, duration_col: str, event_col: str) -> None:
    for col in (duration_col, event_col):
        if col not in df.columns:
            raise ValueError(f"Column '{col}' not found in dataframe.")
        if df[col].isnull().any():
            raise ValueError(f"Column '{col}' has missing values.")
    if (df[duration_col] < 0).any():
        raise ValueError(f"Column '{duration_col}' must contain non-negative values only.")
    if not set(df[event_col].unique()).issubset({0, 1}):
        raise ValueError(f"Column '{event_col}' must contain only binary values (0 and 1).")


def fit_weighted_cox(
    df: pd.DataFrame,
    duration_col: str = config.TIME_COL,
    event_col: str = config.EVENT_COL,
    treatment_col: str = config.TREATMENT_COL,
    weight_col: Optional[str] = "ipw"
) -> CausalEstimate:
    """
    Marginal hazard ratio of treatment from a (weighted) Cox model with robust variance.

    Args:
        df: Observation table with weights appended
        duration_col: Follow-up time column
        event_col: Event indicator column
        treatment_col: Binary treatment column, the only model covariate
        weight_col: Case weights. None fits an unweighted model

    Returns:
        CausalEstimate holding the HR, the SE of log(HR), the CI on the HR scale and the p-value
    """
    _check_survival_columns(df, duration_col, event_col)
    columns = [duration_col, event_col, treatment_col] + ([weight_col] if weight_col else [])
    model_df = df[columns].copy()

    cph = CoxPHFitter()
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=StatisticalWarning)
        cph.fit(
            model_df,
            duration_col=duration_col,
            event_col=event_col,
            weights_col=weight_col,
            robust=True
        )

    row = cph.summary.loc[treatment_col]
    estimate = CausalEstimate(
        coefficient=float(row['exp(coef)']),
        std_error=float(row['se(coef)']),
        ci_lower=float(row['exp(coef) lower 95%']),
        ci_upper=float(row['exp(coef) upper 95%']),
        p_value=float(row['p']),
        method="IPW Cox" if weight_col else "Cox",
        estimand="Hazard Ratio (HR)"
    )

    logger.info(f"Cox HR = {estimate.coefficient:.3f} "
                f"(95% CI {estimate.ci_lower:.3f} to {estimate.ci_upper:.3f}), p = {estimate.p_value:.4g}")
    return estimate


def kaplan_meier_by_group(
    df: pd.DataFrame,
    duration_col: str = config.TIME_COL,
    event_col: str = config.EVENT_COL,
    group_col: str = config.TREATMENT_COL,
    weight_col: Optional[str] = None,
    labels: Optional[Dict[int, str]] = None
) -> Dict[str, KaplanMeierFitter]:
    """
    Fit one Kaplan-Meier curve per treatment group.

    Returns:
        Mapping from group label ("Control", "Treatment") to fitted KaplanMeierFitter
    """
    _check_survival_columns(df, duration_col, event_col)
    labels = labels or GROUP_LABELS
    timeline = np.unique(np.concatenate([[0], df[duration_col].to_numpy()]))

    fitters = {}
    for value, label in labels.items():
        mask = df[group_col] == value
        if not mask.any():
            logger.warning(f"No subjects in group {label}; skipping Kaplan-Meier fit")
            continue

        kmf = KaplanMeierFitter()
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=StatisticalWarning)
            kmf.fit(
                durations=df.loc[mask, duration_col],
                event_observed=df.loc[mask, event_col],
                timeline=timeline,
                weights=df.loc[mask, weight_col] if weight_col else None,
                label=label
            )
        fitters[label] = kmf

    return fitters


def km_curve_frame(fitters: Dict[str, KaplanMeierFitter]) -> pd.DataFrame:
    """Tidy survival curves: time, surv, group and, when available, lower/upper CI bounds."""
    frames = []
    for label, kmf in fitters.items():
        curve = pd.DataFrame({
            'time': kmf.survival_function_.index.to_numpy(),
            'surv': kmf.survival_function_[label].to_numpy(),
            'group': label,
        })
        ci = kmf.confidence_interval_
        lower, upper = f"{label}_lower_0.95", f"{label}_upper_0.95"
        if lower in ci.columns and upper in ci.columns:
            curve['lower'] = ci[lower].to_numpy()
            curve['upper'] = ci[upper].to_numpy()
        frames.append(curve)

    return pd.concat(frames, ignore_index=True)


def survival_at(kmf: KaplanMeierFitter, t: float) -> float:
    """Survival probability of a fitted curve at time t."""
    return float(kmf.predict(t))
