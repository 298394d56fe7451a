"""
Synthetic data generator for the workflow datasets.

Produces confounded observational datasets with known treatment effects so every analysis in
the workflow can be reproduced from a fixed seed:

- ``basics/patients_basic.csv``: small demonstration table
- ``workflow/df_continuous.csv``: blood-pressure change outcome (true ATE = -5 mmHg)
- ``workflow/df_binary.csv``: death outcome with a protective treatment effect
- ``workflow/df_survival.csv``: time-to-event outcome with a protective hazard ratio
- ``sensitivity/evalue_studies.csv``: risk ratios for the E-value examples (one published, three illustrative)
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd
from scipy.special import expit

from .. import config


logger = logging.getLogger(__name__)


def _simulate_baseline(n: int, rng: np.random.Generator) -> pd.DataFrame:
    """Draw the baseline covariates shared by all workflow datasets."""
    age = np.clip(np.round(rng.normal(60, 10, n)), 18, 90).astype(int)
    sex = rng.binomial(1, 0.5, n)
    comorbidity = np.clip(rng.poisson(1.5, n), 0, 6)
    severity = np.round(np.clip(rng.normal(5, 2, n), 0, 10), 1)

    return pd.DataFrame({
        config.ID_COL: np.arange(1, n + 1),
        'age': age,
        'sex': sex,
        'comorbidity': comorbidity,
        'severity': severity,
    })


def _assign_treatment(df: pd.DataFrame, rng: np.random.Generator) -> np.ndarray:
    """Confounded treatment assignment: sicker, older patients are treated more often."""
    logit_ps = (
        -0.5
        + 0.03 * (df['age'] - 60)
        + 0.3 * df['sex']
        + 0.25 * (df['comorbidity'] - 1.5)
        + 0.3 * (df['severity'] - 5)
    )
    return rng.binomial(1, expit(logit_ps))


def simulate_continuous(n: int = 1000, seed: int = config.RANDOM_SEED,
                        ate: float = config.TRUE_ATE_CONTINUOUS) -> pd.DataFrame:
    """
    Simulate a continuous-outcome dataset (blood pressure change in mmHg).

    Args:
        n: Number of subjects
        seed: Random seed
        ate: True average treatment effect

    Returns:
        DataFrame with id, treatment, covariates and ``outcome``
    """
    rng = np.random.default_rng(seed)
    df = _simulate_baseline(n, rng)
    treatment = _assign_treatment(df, rng)

    outcome = (
        -2.0
        + 0.2 * (df['age'] - 60)
        + 1.0 * df['sex']
        + 1.5 * df['comorbidity']
        + 0.8 * df['severity']
        + ate * treatment
        + rng.normal(0, 5, n)
    )

    df.insert(1, config.TREATMENT_COL, treatment)
    df[config.OUTCOME_CONTINUOUS] = np.round(outcome, 2)
    return df


def simulate_binary(n: int = 1000, seed: int = config.RANDOM_SEED + 1) -> pd.DataFrame:
    """Simulate a binary-outcome dataset (death) with a protective treatment effect."""
    rng = np.random.default_rng(seed)
    df = _simulate_baseline(n, rng)
    treatment = _assign_treatment(df, rng)

    logit_death = (
        -2.0
        + 0.04 * (df['age'] - 60)
        + 0.2 * df['sex']
        + 0.3 * df['comorbidity']
        + 0.25 * (df['severity'] - 5)
        - 0.7 * treatment
    )

    df.insert(1, config.TREATMENT_COL, treatment)
    df[config.OUTCOME_BINARY] = rng.binomial(1, expit(logit_death))
    return df


def simulate_survival(n: int = 500, seed: int = config.RANDOM_SEED + 2,
                      log_hr: float = config.TRUE_LOG_HR,
                      max_follow_up: int = 730) -> pd.DataFrame:
    """
    Simulate a time-to-event dataset with exponential event and censoring times.

    Args:
        n: Number of subjects
        seed: Random seed
        log_hr: True log hazard ratio of treatment
        max_follow_up: Administrative censoring time in days

    Returns:
        DataFrame with id, treatment, covariates, ``time`` (days) and ``event`` (1 = event)
    """
    rng = np.random.default_rng(seed)
    df = _simulate_baseline(n, rng)
    treatment = _assign_treatment(df, rng)

    # Baseline hazard chosen for a median survival of roughly 400 days
    base_rate = np.log(2) / 400
    linear_predictor = (
        0.03 * (df['age'] - 60)
        + 0.2 * df['sex']
        + 0.2 * df['comorbidity']
        + 0.15 * (df['severity'] - 5)
        + log_hr * treatment
    )
    event_time = rng.exponential(1 / (base_rate * np.exp(linear_predictor)))
    censor_time = np.minimum(rng.exponential(1 / 0.0008, n), max_follow_up)

    observed = np.minimum(event_time, censor_time)

    df.insert(1, config.TREATMENT_COL, treatment)
    df[config.TIME_COL] = np.maximum(np.ceil(observed), 1).astype(int)
    df[config.EVENT_COL] = (event_time <= censor_time).astype(int)
    return df


def simulate_patients_basic() -> pd.DataFrame:
    """Small patient table used by the data-frame basics demo."""
    return pd.DataFrame({
        config.ID_COL: np.arange(1, 11),
        'age': [45, 52, 67, 38, 71, 59, 44, 63, 55, 49],
        config.TREATMENT_COL: [1, 1, 0, 0, 1, 0, 1, 0, 1, 0],
        config.OUTCOME_CONTINUOUS: [-6.1, -4.8, 1.2, 0.4, -7.3, -0.9, -5.5, 0.8, -3.9, 1.5],
    })


def evalue_studies() -> pd.DataFrame:
    """
    Risk ratios for the E-value examples.

    The first row is the published breastfeeding example (Victora et al.) used by VanderWeele &
    Ding (2017). The remaining rows are illustrative values, not results of specific studies.
    """
    return pd.DataFrame({
        'study': [
            'Breastfeeding and infant respiratory death (Victora et al.)',
            'Illustrative: protective exposure',
            'Illustrative: interval crossing the null',
            'Illustrative: moderate protective exposure',
        ],
        'rr': [3.90, 0.80, 1.20, 0.66],
        'rr_lo': [1.80, 0.71, 0.95, 0.53],
        'rr_hi': [8.70, 0.91, 1.52, 0.83],
    })


def dataset_paths(data_dir: Union[str, Path]) -> Dict[str, Path]:
    """Map dataset names to their CSV paths under ``data_dir``."""
    data_dir = Path(data_dir)
    return {
        'patients_basic': data_dir / config.BASICS_SUBDIR / "patients_basic.csv",
        'continuous': data_dir / config.WORKFLOW_SUBDIR / "df_continuous.csv",
        'binary': data_dir / config.WORKFLOW_SUBDIR / "df_binary.csv",
        'survival': data_dir / config.WORKFLOW_SUBDIR / "df_survival.csv",
        'evalue_studies': data_dir / config.SENSITIVITY_SUBDIR / "evalue_studies.csv",
    }


def write_all(data_dir: Union[str, Path] = config.DATA_DIR,
              seed: Optional[int] = None) -> Dict[str, Path]:
    """
    Generate every workflow dataset and write it as CSV.

    Args:
        data_dir: Root data directory
        seed: Optional base seed overriding the configured one

    Returns:
        Dictionary mapping dataset names to written file paths
    """
    base_seed = config.RANDOM_SEED if seed is None else seed
    frames = {
        'patients_basic': simulate_patients_basic(),
        'continuous': simulate_continuous(seed=base_seed),
        'binary': simulate_binary(seed=base_seed + 1),
        'survival': simulate_survival(seed=base_seed + 2),
        'evalue_studies': evalue_studies(),
    }

    paths = dataset_paths(data_dir)
    for name, frame in frames.items():
        path = paths[name]
        path.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(path, index=False)
        logger.info(f"Wrote {name} dataset ({len(frame)} rows) to {path}")

    return paths
