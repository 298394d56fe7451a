"""
Data reshaping helpers for presentation and analysis subsets.
"""

import pandas as pd
from typing import Dict, List, Optional
import logging

from .. import config


logger = logging.getLogger(__name__)


COVARIATE_LABELS: Dict[str, str] = {
    'age': "Age (years)",
    'sex': "Sex",
    'comorbidity': "Comorbidity count",
    'severity': "Severity score",
    config.OUTCOME_CONTINUOUS: "Blood pressure change (mmHg)",
    config.OUTCOME_BINARY: "Death",
    config.TIME_COL: "Follow-up time (days)",
    config.EVENT_COL: "Event status",
}

SHORT_LABELS: Dict[str, str] = {
    'age': "Age",
    'sex': "Sex",
    'comorbidity': "Comorbidity",
    'severity': "Severity",
}

DISPLAY_LEVELS: Dict[str, Dict[int, str]] = {
    config.TREATMENT_COL: {0: "Control", 1: "Treatment"},
    'sex': {0: "Female", 1: "Male"},
    config.EVENT_COL: {0: "Censored", 1: "Event"},
    config.OUTCOME_BINARY: {0: "Alive", 1: "Died"},
}


def label_for_display(df: pd.DataFrame, columns: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Replace 0/1 codes with display labels as ordered categoricals.

    Args:
        df: Observation table
        columns: Columns to label. Defaults to every known coded column present in df

    Returns:
        Copy of df with labelled categorical columns
    """
    df = df.copy()
    columns = columns if columns is not None else [col for col in DISPLAY_LEVELS if col in df.columns]

    for col in columns:
        levels = DISPLAY_LEVELS[col]
        df[col] = pd.Categorical(
            df[col].map(levels),
            categories=[levels[0], levels[1]],
            ordered=True
        )

    return df


def survival_subset(df: pd.DataFrame, n: int = config.SURVIVAL_SUBSET_N) -> pd.DataFrame:
    """Keep subjects with positive follow-up time, then the first n of them."""
    subset = df[df[config.TIME_COL] > 0].head(n).reset_index(drop=True)
    logger.info(f"Survival subset: {len(subset)} of {len(df)} subjects")
    return subset


def filter_select(
    df: pd.DataFrame,
    min_age: float = 50,
    columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """Keep patients older than min_age and select the demo columns."""
    if columns is None:
        columns = [config.ID_COL, 'age', config.TREATMENT_COL, config.OUTCOME_CONTINUOUS]

    return df.loc[df['age'] > min_age, columns]


def covariate_frame(df: pd.DataFrame, covariates: Optional[List[str]] = None) -> pd.DataFrame:
    """Baseline covariate matrix W used by the estimators."""
    covariates = covariates or config.COVARIATE_COLS
    return df[covariates].astype(float)
