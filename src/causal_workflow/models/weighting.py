"""
Propensity-score weighting: logistic propensity model, inverse probability weights and weight diagnostics.
"""

import numpy as np
import pandas as pd
from typing import List, Optional
import logging

import statsmodels.formula.api as smf
from statsmodels.genmod import families

from .. import config


logger = logging.getLogger(__name__)

ESTIMANDS = ("ATE", "ATT", "ATC")
PS_COL = "ps"
WEIGHT_COL = "ipw"


class PropensityScoreWeighter:
    """
    Inverse probability of treatment weighting with a logistic propensity score model.

    Parameters
    ----------
    estimand : str, default="ATE"
        Target estimand:
        - ATE: treated = 1/ps, control = 1/(1-ps)
        - ATT: treated = 1, control = ps/(1-ps)
        - ATC: treated = (1-ps)/ps, control = 1
    stabilize : bool, default=False
        Multiply the weights by the marginal probability of the arm they reweight.
    """

    def __init__(self, estimand: str = "ATE", stabilize: bool = False):
        if estimand not in ESTIMANDS:
            raise ValueError(f"estimand must be one of {ESTIMANDS}, got '{estimand}'")
        if not isinstance(stabilize, bool):
            raise ValueError("stabilize must be a boolean (True or False).")

        self.estimand = estimand
        self.stabilize = stabilize
        self.ps_model = None
        self.weights_: Optional[pd.DataFrame] = None

    def fit_transform(
        self,
        df: pd.DataFrame,
        treatment_col: str = config.TREATMENT_COL,
        covariates: Optional[List[str]] = None
    ) -> pd.DataFrame:
        """
        Fit the propensity score model and compute weights in one step.

        Parameters
        ----------
        df : pd.DataFrame
            Observation table
        treatment_col : str
            Binary treatment column
        covariates : list of str, optional
            Propensity model covariates. Defaults to the configured baseline covariates.

        Returns
        -------
        pd.DataFrame
            A copy of df with 'ps' and 'ipw' columns added.
        """
        covariates = list(covariates or config.COVARIATE_COLS)

        if not isinstance(df, pd.DataFrame):
            raise ValueError("df must be a pandas DataFrame.")
        missing = [col for col in [treatment_col] + covariates if col not in df.columns]
        if missing:
            raise ValueError(f"The following columns are missing from the DataFrame: {missing}")
        if df[treatment_col].isnull().any():
            raise ValueError(f"Column '{treatment_col}' has missing values.")
        if not set(df[treatment_col].unique()).issubset({0, 1}):
            raise ValueError(f"Column '{treatment_col}' must contain only binary values (0 and 1).")

        df = df.copy()
        formula = f"{treatment_col} ~ " + " + ".join(covariates)

        self.ps_model = smf.glm(formula=formula, data=df, family=families.Binomial()).fit()

        # Small buffer to avoid division by zero
        _eps = 1e-6
        ps = self.ps_model.predict(df).clip(lower=_eps, upper=1 - _eps)
        df[PS_COL] = ps

        treated = df[treatment_col] == 1
        if self.estimand == "ATE":
            weights = np.where(treated, 1 / ps, 1 / (1 - ps))
        elif self.estimand == "ATT":
            weights = np.where(treated, 1.0, ps / (1 - ps))
        else:
            weights = np.where(treated, (1 - ps) / ps, 1.0)

        if self.stabilize:
            p_t = treated.mean()
            if self.estimand == "ATE":
                weights = np.where(treated, weights * p_t, weights * (1 - p_t))
            elif self.estimand == "ATT":
                weights = np.where(treated, weights, weights * p_t)
            else:
                weights = np.where(treated, weights * (1 - p_t), weights)

        df[WEIGHT_COL] = weights
        self.weights_ = df

        logger.info(f"Estimated {self.estimand} weights for {len(df)} subjects "
                    f"(range {weights.min():.3f} to {weights.max():.3f})")
        return df


def effective_sample_size(weights) -> float:
    """Kish effective sample size, (sum w)^2 / sum w^2."""
    w = np.asarray(weights, dtype=float)
    return float(w.sum() ** 2 / np.sum(w ** 2))


def weight_diagnostics(
    df: pd.DataFrame,
    treatment_col: str = config.TREATMENT_COL,
    weight_col: str = WEIGHT_COL
) -> pd.DataFrame:
    """
    Summary statistics of the weights.

    Returns
    -------
    pd.DataFrame
        Metric/Value rows: Min, Max, Mean and SD weight, ESS per arm and the ESS ratio
        (control ESS over control N).
    """
    if weight_col not in df.columns:
        raise ValueError(f"Weight column '{weight_col}' not found in data")

    w = df[weight_col]
    control = df[treatment_col] == 0
    ess_control = effective_sample_size(w[control])
    ess_treated = effective_sample_size(w[~control])

    return pd.DataFrame({
        'Metric': ['Min Weight', 'Max Weight', 'Mean Weight', 'SD Weight',
                   'ESS Control', 'ESS Treatment', 'ESS Ratio'],
        'Value': [w.min(), w.max(), w.mean(), w.std(),
                  ess_control, ess_treated, ess_control / control.sum()],
    })


def weighted_mean_difference(
    df: pd.DataFrame,
    outcome_col: str,
    treatment_col: str = config.TREATMENT_COL,
    weight_col: str = WEIGHT_COL
) -> float:
    """Hajek (normalised) weighted difference in mean outcome, treated minus control."""
    treated = df[treatment_col] == 1
    y, w = df[outcome_col], df[weight_col]
    mean_treated = np.sum(w[treated] * y[treated]) / np.sum(w[treated])
    mean_control = np.sum(w[~treated] * y[~treated]) / np.sum(w[~treated])
    return float(mean_treated - mean_control)
