"""
Targeted maximum likelihood estimation (TMLE) for a binary point treatment.

The estimator follows the classic two-stage recipe:

1. Initial outcome regression Q(A, W) and propensity score g(W) fitted with Super Learner.
2. A logistic fluctuation of Q along the clever covariates A/g(W) and (1-A)/(1-g(W)),
   fitted as a binomial GLM with offset logit Q and no intercept.

Inference uses the efficient influence curve. A continuous outcome is mapped to [0, 1] before
targeting and the estimates are rescaled to the outcome's units afterwards.
"""

import numpy as np
import pandas as pd
from typing import Dict, Optional, Sequence
import logging
from dataclasses import dataclass, field

import statsmodels.api as sm
from scipy import stats

from .. import config
from .causal_models import CausalEstimate
from .super_learner import fit_super_learner, predict_mean


logger = logging.getLogger(__name__)


_EPS = 1e-7  # numerical guard for logits/probabilities
Q_BOUND = 0.005


def _expit(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


def _logit(p: np.ndarray) -> np.ndarray:
    p = np.clip(p, _EPS, 1.0 - _EPS)
    return np.log(p) - np.log(1.0 - p)


def influence_curve_estimate(
    psi: float,
    ic: np.ndarray,
    method: str,
    estimand: str,
    log_scale: bool = False,
    alpha: float = 0.05
) -> CausalEstimate:
    """
    Wald inference from an influence curve.

    Args:
        psi: Point estimate (on the ratio scale when log_scale is True)
        ic: Influence curve values, one per subject
        method: Method label stored on the estimate
        estimand: Estimand label stored on the estimate
        log_scale: Build the interval for log(psi) and exponentiate it
        alpha: Significance level

    Returns:
        CausalEstimate; for ratios the standard error refers to log(psi)
    """
    n = len(ic)
    se = float(np.sqrt(np.var(ic, ddof=1) / n))
    z = stats.norm.ppf(1 - alpha / 2)

    center = np.log(psi) if log_scale else psi
    lower, upper = center - z * se, center + z * se
    p_value = float(2 * stats.norm.sf(abs(center / se))) if se > 0 else float('nan')

    if log_scale:
        lower, upper = np.exp(lower), np.exp(upper)

    return CausalEstimate(
        coefficient=float(psi),
        std_error=se,
        ci_lower=float(lower),
        ci_upper=float(upper),
        p_value=p_value,
        method=method,
        estimand=estimand
    )


@dataclass
class TMLEResult:
    """Targeted estimates, treatment-specific means and fluctuation details."""
    estimates: Dict[str, CausalEstimate]
    EY1: float
    EY0: float
    epsilon: np.ndarray
    family: str
    propensity: Dict[str, float] = field(default_factory=dict)

    @property
    def ate(self) -> CausalEstimate:
        return self.estimates['ATE']

    def to_frame(self) -> pd.DataFrame:
        """One row per estimand."""
        return pd.DataFrame([
            {
                'Estimand': est.estimand,
                'Estimate': est.coefficient,
                'SE': est.std_error,
                'CI_lower': est.ci_lower,
                'CI_upper': est.ci_upper,
                'p_value': est.p_value,
            }
            for est in self.estimates.values()
        ])


ESTIMAND_LABELS = {
    'ATE': "Average Treatment Effect (ATE)",
    'RR': "Risk Ratio (RR)",
    'OR': "Odds Ratio (OR)",
}


class TMLE:
    """TMLE of the average treatment effect with Super Learner nuisance models."""

    def __init__(
        self,
        q_library: Sequence[str] = config.SL_LIBRARY,
        g_library: Sequence[str] = config.SL_LIBRARY,
        family: str = 'gaussian',
        gbound: float = config.G_BOUND,
        cv_folds: int = config.SL_CV_FOLDS,
        random_state: int = config.RANDOM_SEED
    ):
        """
        Initialize the estimator.

        Args:
            q_library: Super Learner library for the outcome regression
            g_library: Super Learner library for the propensity score
            family: 'gaussian' for a continuous outcome, 'binomial' for a 0/1 outcome
            gbound: Propensity scores are truncated to [gbound, 1 - gbound]
            cv_folds: Super Learner cross-validation folds
            random_state: Random seed
        """
        if family not in ('gaussian', 'binomial'):
            raise ValueError(f"family must be 'gaussian' or 'binomial', got '{family}'")
        if not 0 < gbound < 0.5:
            raise ValueError(f"gbound must lie in (0, 0.5), got {gbound}")

        self.q_library = list(q_library)
        self.g_library = list(g_library)
        self.family = family
        self.gbound = gbound
        self.cv_folds = cv_folds
        self.random_state = random_state
        self.result_: Optional[TMLEResult] = None

    def _validate(self, Y: np.ndarray, A: np.ndarray, W: pd.DataFrame) -> None:
        if not (len(Y) == len(A) == len(W)):
            raise ValueError("Y, A and W must have the same number of rows")
        if np.isnan(Y).any() or np.isnan(A).any() or W.isnull().any().any():
            raise ValueError("Y, A and W must not contain missing values")
        if not set(np.unique(A)).issubset({0, 1}):
            raise ValueError("Treatment A must contain only binary values (0 and 1)")
        if len(np.unique(A)) < 2:
            raise ValueError("Both treatment arms must be observed")
        if self.family == 'binomial' and ((Y < 0) | (Y > 1)).any():
            raise ValueError("Outcome Y must lie in [0, 1] for the binomial family")

    def fit(self, Y, A, W: pd.DataFrame) -> TMLEResult:
        """
        Estimate the treatment effect.

        Args:
            Y: Outcome
            A: Binary treatment indicator
            W: Baseline covariates

        Returns:
            TMLEResult with ATE (and RR/OR for a binomial outcome)
        """
        Y = np.asarray(Y, dtype=float)
        A = np.asarray(A, dtype=float)
        W = pd.DataFrame(W).reset_index(drop=True).astype(float)
        self._validate(Y, A, W)

        n = len(Y)
        logger.info(f"Fitting TMLE ({self.family}) on {n} observations with {W.shape[1]} covariates")

        # Map a continuous outcome into [0, 1]
        if self.family == 'gaussian':
            y_min, y_max = float(Y.min()), float(Y.max())
            if y_max == y_min:
                raise ValueError("Outcome Y is constant")
            Y_star = (Y - y_min) / (y_max - y_min)
        else:
            y_min, y_max = 0.0, 1.0
            Y_star = Y

        # Initial outcome regression
        X_Q = W.assign(**{config.TREATMENT_COL: A})
        q_model = fit_super_learner(X_Q, Y_star, self.q_library, self.family, self.cv_folds, self.random_state)
        Q_A = predict_mean(q_model, X_Q, self.family)
        Q_1 = predict_mean(q_model, W.assign(**{config.TREATMENT_COL: 1.0}), self.family)
        Q_0 = predict_mean(q_model, W.assign(**{config.TREATMENT_COL: 0.0}), self.family)
        Q_A, Q_1, Q_0 = (np.clip(q, Q_BOUND, 1 - Q_BOUND) for q in (Q_A, Q_1, Q_0))

        # Propensity score
        g_model = fit_super_learner(W, A.astype(int), self.g_library, 'binomial', self.cv_folds, self.random_state)
        g_raw = predict_mean(g_model, W, 'binomial')
        g1 = np.clip(g_raw, self.gbound, 1 - self.gbound)
        n_bounded = int(np.sum((g_raw < self.gbound) | (g_raw > 1 - self.gbound)))
        if n_bounded:
            logger.info(f"{n_bounded} propensity scores truncated to [{self.gbound}, {1 - self.gbound}]")

        # Fluctuation
        H1 = A / g1
        H0 = (1 - A) / (1 - g1)
        fluctuation = sm.GLM(
            Y_star,
            np.column_stack([H1, H0]),
            family=sm.families.Binomial(),
            offset=_logit(Q_A)
        ).fit()
        epsilon = np.asarray(fluctuation.params, dtype=float)
        logger.info(f"Fluctuation parameters: epsilon = {np.round(epsilon, 5).tolist()}")

        Q1_star = _expit(_logit(Q_1) + epsilon[0] / g1)
        Q0_star = _expit(_logit(Q_0) + epsilon[1] / (1 - g1))
        QA_star = A * Q1_star + (1 - A) * Q0_star

        EY1 = float(np.mean(Q1_star))
        EY0 = float(np.mean(Q0_star))
        residual = Y_star - QA_star
        IC1 = H1 * residual + Q1_star - EY1
        IC0 = H0 * residual + Q0_star - EY0

        scale = y_max - y_min
        method = "TMLE"
        estimates = {
            'ATE': influence_curve_estimate((EY1 - EY0) * scale, (IC1 - IC0) * scale, method, ESTIMAND_LABELS['ATE'])
        }

        if self.family == 'binomial':
            estimates['RR'] = influence_curve_estimate(
                EY1 / EY0, IC1 / EY1 - IC0 / EY0, method, ESTIMAND_LABELS['RR'], log_scale=True
            )
            estimates['OR'] = influence_curve_estimate(
                (EY1 * (1 - EY0)) / (EY0 * (1 - EY1)),
                IC1 / (EY1 * (1 - EY1)) - IC0 / (EY0 * (1 - EY0)),
                method, ESTIMAND_LABELS['OR'], log_scale=True
            )

        self.result_ = TMLEResult(
            estimates=estimates,
            EY1=EY1 * scale + y_min,
            EY0=EY0 * scale + y_min,
            epsilon=epsilon,
            family=self.family,
            propensity={
                'min': float(g1.min()),
                'max': float(g1.max()),
                'mean': float(g1.mean()),
                'n_bounded': n_bounded,
            }
        )

        ate = estimates['ATE']
        logger.info(f"TMLE ATE: {ate.coefficient:.4f} (95% CI {ate.ci_lower:.4f} to {ate.ci_upper:.4f})")
        return self.result_

    @property
    def result(self) -> TMLEResult:
        if self.result_ is None:
            raise ValueError("Estimator has not been fitted; call fit() first")
        return self.result_
