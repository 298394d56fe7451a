"""
Survival TMLE of treatment-specific survival at a fixed horizon (hazard method).

Follow-up on (0, t0] is split into equal intervals and the data are expanded to one row per
subject-interval at risk. Discrete-time hazards of the event and of censoring are fitted with
Super Learner, and for each arm the event hazard is updated on the logit scale until the mean
efficient influence function score is negligible.

Within an interval, events are taken to precede censoring: a subject censored in interval t is
counted as event-free through t.
"""

import numpy as np
import pandas as pd
from typing import Dict, Optional, Sequence, Tuple
import logging
from dataclasses import dataclass, field

import statsmodels.api as sm
from scipy import stats

from .. import config
from .causal_models import CausalEstimate
from .super_learner import fit_super_learner, predict_mean
from .tmle import _EPS, _expit, _logit


logger = logging.getLogger(__name__)

ARM_LABELS = {0: "Control (A=0)", 1: "Treatment (A=1)"}
INTERVAL_COL = "interval"


@dataclass
class SurvivalTMLEResult:
    """Arm-specific survival at t0 and their difference."""
    est: pd.DataFrame
    difference: CausalEstimate
    t0: float
    iterations: Dict[int, int]
    converged: bool
    influence_curves: Dict[int, np.ndarray] = field(default_factory=dict, repr=False)

    def survival(self, arm: int) -> float:
        """Targeted survival probability at t0 for arm 0 or 1."""
        return float(self.est.loc[ARM_LABELS[arm], 'Survival'])


class SurvivalTMLE:
    """
    Survival TMLE for a binary treatment with right-censored follow-up.
    """

    def __init__(
        self,
        t0: float = config.SURVIVAL_T0,
        n_intervals: int = config.SURVIVAL_INTERVALS,
        ftime_library: Sequence[str] = config.SURVIVAL_SL_LIBRARY,
        ctime_library: Sequence[str] = config.SURVIVAL_SL_LIBRARY,
        trt_library: Sequence[str] = config.SURVIVAL_SL_LIBRARY,
        gtol: float = 1e-3,
        max_iter: int = 100,
        tol: Optional[float] = None,
        cv_folds: int = config.SL_CV_FOLDS,
        random_state: int = config.RANDOM_SEED
    ):
        """
        Initialize the estimator.

        Args:
            t0: Time horizon at which survival is estimated
            n_intervals: Number of equal-width intervals on (0, t0]
            ftime_library: Super Learner library for the event hazard
            ctime_library: Super Learner library for the censoring hazard
            trt_library: Super Learner library for the treatment mechanism
            gtol: Lower bound on the product of treatment and censoring probabilities
            max_iter: Maximum number of targeting iterations per arm
            tol: Convergence tolerance on the mean score. Defaults to 1/n
            cv_folds: Super Learner cross-validation folds
            random_state: Random seed
        """
        if t0 <= 0:
            raise ValueError(f"t0 must be positive, got {t0}")
        if n_intervals < 1:
            raise ValueError(f"n_intervals must be at least 1, got {n_intervals}")

        self.t0 = t0
        self.n_intervals = int(n_intervals)
        self.ftime_library = list(ftime_library)
        self.ctime_library = list(ctime_library)
        self.trt_library = list(trt_library)
        self.gtol = gtol
        self.max_iter = max_iter
        self.tol = tol
        self.cv_folds = cv_folds
        self.random_state = random_state
        self.result_: Optional[SurvivalTMLEResult] = None

    def discretize(self, ftime: np.ndarray, ftype: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Map follow-up times to interval indices.

        Returns:
            Last interval at risk (1..K), event-within-horizon flag and censored-within-horizon flag
        """
        width = self.t0 / self.n_intervals
        within = ftime <= self.t0
        last = np.where(within, np.ceil(ftime / width), self.n_intervals).astype(int)
        last = np.clip(last, 1, self.n_intervals)
        return last, within & (ftype == 1), within & (ftype == 0)

    def to_long(self, ftime, ftype, trt, W: pd.DataFrame) -> pd.DataFrame:
        """
        Expand subjects to person-interval rows.

        Columns: ``subject``, ``interval``, treatment, covariates, ``dN`` (event in interval) and
        ``dC`` (censored in interval).
        """
        ftime = np.asarray(ftime, dtype=float)
        ftype = np.asarray(ftype, dtype=int)
        W = pd.DataFrame(W).reset_index(drop=True)
        last, event, censored = self.discretize(ftime, ftype)

        subject = np.repeat(np.arange(len(ftime)), last)
        starts = np.repeat(np.cumsum(last) - last, last)
        interval = np.arange(len(subject)) - starts + 1
        final = interval == last[subject]

        long_df = W.iloc[subject].reset_index(drop=True)
        long_df.insert(0, config.TREATMENT_COL, np.asarray(trt, dtype=float)[subject])
        long_df.insert(0, INTERVAL_COL, interval.astype(float))
        long_df.insert(0, 'subject', subject)
        long_df['dN'] = (final & event[subject]).astype(int)
        long_df['dC'] = (final & censored[subject]).astype(int)
        return long_df

    def _grid(self, W: pd.DataFrame, arm: int) -> pd.DataFrame:
        """Counterfactual person-interval grid with every subject at risk in every interval and A=arm."""
        n, K = len(W), self.n_intervals
        grid = W.iloc[np.repeat(np.arange(n), K)].reset_index(drop=True)
        grid.insert(0, config.TREATMENT_COL, float(arm))
        grid.insert(0, INTERVAL_COL, np.tile(np.arange(1, K + 1), n).astype(float))
        return grid

    def _validate(self, ftime, ftype, trt, W) -> None:
        if not (len(ftime) == len(ftype) == len(trt) == len(W)):
            raise ValueError("ftime, ftype, trt and W must have the same number of rows")
        if (ftime <= 0).any():
            raise ValueError("ftime must be strictly positive")
        if not set(np.unique(ftype)).issubset({0, 1}):
            raise ValueError("ftype must contain only binary values (0 = censored, 1 = event)")
        if not set(np.unique(trt)).issubset({0, 1}):
            raise ValueError("trt must contain only binary values (0 and 1)")
        if len(np.unique(trt)) < 2:
            raise ValueError("Both treatment arms must be observed")

    def fit(self, ftime, ftype, trt, W: pd.DataFrame) -> SurvivalTMLEResult:
        """
        Estimate survival at t0 under treatment and under control.

        Args:
            ftime: Follow-up time (> 0)
            ftype: 1 for an observed event, 0 for censoring
            trt: Binary treatment indicator
            W: Baseline covariates

        Returns:
            SurvivalTMLEResult
        """
        ftime = np.asarray(ftime, dtype=float)
        ftype = np.asarray(ftype, dtype=int)
        trt = np.asarray(trt, dtype=int)
        W = pd.DataFrame(W).reset_index(drop=True).astype(float)
        self._validate(ftime, ftype, trt, W)

        n, K = len(ftime), self.n_intervals
        tol = self.tol if self.tol is not None else 1.0 / n
        logger.info(f"Fitting survival TMLE on {n} subjects, t0={self.t0}, {K} intervals")

        long_df = self.to_long(ftime, ftype, trt, W)
        features = [INTERVAL_COL, config.TREATMENT_COL] + list(W.columns)
        dN = long_df['dN'].to_numpy()
        subject = long_df['subject'].to_numpy()
        grid_index = subject * K + long_df[INTERVAL_COL].to_numpy().astype(int) - 1
        logger.info(f"Long format: {len(long_df)} person-intervals, {dN.sum()} events, {long_df['dC'].sum()} censored")

        # Nuisance models
        event_model = fit_super_learner(long_df[features], dN, self.ftime_library, 'binomial',
                                        self.cv_folds, self.random_state)
        no_event = dN == 0
        censor_model = fit_super_learner(long_df.loc[no_event, features], long_df.loc[no_event, 'dC'].to_numpy(),
                                         self.ctime_library, 'binomial', self.cv_folds, self.random_state)
        trt_model = fit_super_learner(W, trt, self.trt_library, 'binomial', self.cv_folds, self.random_state)
        g1 = np.clip(predict_mean(trt_model, W, 'binomial'), self.gtol, 1 - self.gtol)

        survival, ics, iterations, converged = {}, {}, {}, True

        for arm in (0, 1):
            grid = self._grid(W, arm)
            hazard = predict_mean(event_model, grid[features], 'binomial').reshape(n, K)
            censor = predict_mean(censor_model, grid[features], 'binomial').reshape(n, K)
            g_arm = g1 if arm == 1 else 1 - g1

            uncensored = np.cumprod(1 - censor, axis=1)
            uncensored_prev = np.column_stack([np.ones(n), uncensored[:, :-1]])
            weight = np.maximum(g_arm[:, None] * uncensored_prev, self.gtol)
            in_arm = (trt[subject] == arm).astype(float)

            def clever_covariate(h):
                surv = np.cumprod(1 - h, axis=1)
                return -(surv[:, -1:] / np.maximum(surv, _EPS)) / weight

            arm_converged = False
            n_iter = 0
            for n_iter in range(self.max_iter + 1):
                H = clever_covariate(hazard)
                H_obs = H.ravel()[grid_index] * in_arm
                h_obs = hazard.ravel()[grid_index]
                score = np.sum(H_obs * (dN - h_obs)) / n
                if abs(score) < tol:
                    arm_converged = True
                    break
                if n_iter == self.max_iter:
                    break

                rows = in_arm == 1
                fluctuation = sm.GLM(
                    dN[rows],
                    H_obs[rows][:, None],
                    family=sm.families.Binomial(),
                    offset=_logit(h_obs[rows])
                ).fit()
                epsilon = float(np.asarray(fluctuation.params)[0])
                hazard = _expit(_logit(hazard) + epsilon * H)

            if not arm_converged:
                logger.warning(f"Arm {arm}: targeting did not converge after {self.max_iter} iterations "
                               f"(mean score {score:.2e}, tolerance {tol:.2e})")
            converged = converged and arm_converged
            iterations[arm] = n_iter

            surv_t0 = np.prod(1 - hazard, axis=1)
            psi = float(np.mean(surv_t0))
            H = clever_covariate(hazard)
            residual = (H.ravel()[grid_index] * in_arm) * (dN - hazard.ravel()[grid_index])
            ics[arm] = np.bincount(subject, weights=residual, minlength=n) + surv_t0 - psi
            survival[arm] = psi
            logger.info(f"Arm {arm}: S({self.t0}) = {psi:.4f} after {n_iter} targeting iterations")

        z = stats.norm.ppf(0.975)
        rows = []
        for arm in (0, 1):
            se = float(np.sqrt(np.var(ics[arm], ddof=1) / n))
            rows.append({
                'Arm': ARM_LABELS[arm],
                'Survival': survival[arm],
                'SE': se,
                'CI_lower': survival[arm] - z * se,
                'CI_upper': survival[arm] + z * se,
            })
        est = pd.DataFrame(rows).set_index('Arm')

        diff = survival[1] - survival[0]
        diff_ic = ics[1] - ics[0]
        diff_se = float(np.sqrt(np.var(diff_ic, ddof=1) / n))
        difference = CausalEstimate(
            coefficient=diff,
            std_error=diff_se,
            ci_lower=diff - z * diff_se,
            ci_upper=diff + z * diff_se,
            p_value=float(2 * stats.norm.sf(abs(diff / diff_se))) if diff_se > 0 else float('nan'),
            method="Survival TMLE",
            estimand=f"Survival difference at t={self.t0:g} (Treatment - Control)"
        )

        self.result_ = SurvivalTMLEResult(
            est=est,
            difference=difference,
            t0=self.t0,
            iterations=iterations,
            converged=converged,
            influence_curves=ics
        )
        return self.result_

    @property
    def result(self) -> SurvivalTMLEResult:
        if self.result_ is None:
            raise ValueError("Estimator has not been fitted; call fit() first")
        return self.result_
