"""
Causal effect result record and a Double Machine Learning cross-check.
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Any
import logging
from dataclasses import dataclass, asdict

import doubleml as dml
from doubleml import DoubleMLData
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.linear_model import LinearRegression, LogisticRegression
from xgboost import XGBClassifier, XGBRegressor
from sklearn.metrics import log_loss, mean_squared_error

from .. import config


logger = logging.getLogger(__name__)


@dataclass
class CausalEstimate:
    """Container for causal effect estimates."""
    coefficient: float
    std_error: float
    ci_lower: float
    ci_upper: float
    p_value: float
    method: str
    estimand: str = "Average Treatment Effect (ATE)"

    @property
    def is_significant(self) -> bool:
        """Check if effect is statistically significant at the 5% level."""
        return self.p_value < 0.05

    def to_dict(self) -> Dict[str, Any]:
        """Plain-type dictionary suitable for JSON output."""
        record = asdict(self)
        for key, value in record.items():
            if isinstance(value, (np.floating, np.integer)):
                record[key] = value.item()
        record['is_significant'] = bool(self.is_significant)
        return record


class CausalInferenceEngine:
    """
    Doubly-robust cross-check of the TMLE estimates using the DoubleML Interactive Regression Model (IRM).
    """

    def __init__(self, n_folds: int = config.DML_FOLDS, random_state: int = config.RANDOM_SEED):
        """
        Initialize the causal inference engine.

        Args:
            n_folds: Number of folds for cross-fitting
            random_state: Random seed for reproducibility
        """
        self.n_folds = n_folds
        self.random_state = random_state
        self.models = {}
        self.results = {}
        self.family = "gaussian"

    def prepare_data(
        self,
        df: pd.DataFrame,
        treatment_col: str = config.TREATMENT_COL,
        outcome_col: str = config.OUTCOME_CONTINUOUS,
        covariates: Optional[List[str]] = None
    ) -> DoubleMLData:
        """
        Prepare data for Double ML analysis.

        Args:
            df: Observation table
            treatment_col: Name of treatment variable
            outcome_col: Name of outcome variable
            covariates: Baseline covariates. Defaults to the configured covariate set

        Returns:
            DoubleMLData object ready for analysis
        """
        x_cols = list(covariates or config.COVARIATE_COLS)
        missing = [col for col in [treatment_col, outcome_col] + x_cols if col not in df.columns]
        if missing:
            raise ValueError(f"The following columns are missing from the dataset: {missing}")

        logger.info(f"Prepared data with {len(x_cols)} covariates, treatment: {treatment_col}, outcome: {outcome_col}")

        data = df[[outcome_col, treatment_col] + x_cols].astype(float)
        return DoubleMLData(
            data,
            y_col=outcome_col,
            d_cols=treatment_col,
            x_cols=x_cols
        )

    def _get_base_learners(self, family: str) -> Dict[str, Dict[str, Any]]:
        """Get base machine learning learners for nuisance estimation."""
        if family == "binomial":
            outcome_learners = {
                'logistic': LogisticRegression(penalty=None, max_iter=1000),
                'random_forest': RandomForestClassifier(n_estimators=200, min_samples_leaf=5,
                                                        random_state=self.random_state),
                'xgboost': XGBClassifier(n_estimators=200, max_depth=3, learning_rate=0.1,
                                         random_state=self.random_state, objective="binary:logistic",
                                         eval_metric="logloss", n_jobs=1),
            }
        elif family == "gaussian":
            outcome_learners = {
                'logistic': LinearRegression(),
                'random_forest': RandomForestRegressor(n_estimators=200, min_samples_leaf=5,
                                                       random_state=self.random_state),
                'xgboost': XGBRegressor(n_estimators=200, max_depth=3, learning_rate=0.1,
                                        random_state=self.random_state, n_jobs=1),
            }
        else:
            raise ValueError(f"family must be 'gaussian' or 'binomial', got '{family}'")

        propensity_learners = {
            'logistic': LogisticRegression(penalty=None, max_iter=1000),
            'random_forest': RandomForestClassifier(n_estimators=200, min_samples_leaf=5,
                                                    random_state=self.random_state),
            'xgboost': XGBClassifier(n_estimators=200, max_depth=3, learning_rate=0.1,
                                     random_state=self.random_state, objective="binary:logistic",
                                     eval_metric="logloss", n_jobs=1),
        }

        return {
            method: {'ml_g': outcome_learners[method], 'ml_m': propensity_learners[method]}
            for method in outcome_learners
        }

    def estimate_treatment_effects(
        self,
        dml_data: DoubleMLData,
        methods: Optional[List[str]] = None,
        family: str = "gaussian"
    ) -> Dict[str, CausalEstimate]:
        """
        Estimate the ATE with each requested learner set.

        Args:
            dml_data: Prepared DoubleML data
            methods: Learner sets to use. If None, uses logistic, random_forest and xgboost
            family: 'gaussian' for a continuous outcome, 'binomial' for a binary one

        Returns:
            Dictionary mapping method names to causal estimates
        """
        learners = self._get_base_learners(family)
        if methods is None:
            methods = list(learners)

        unknown = [method for method in methods if method not in learners]
        if unknown:
            raise ValueError(f"Unknown DML methods: {unknown}. Available: {list(learners)}")

        self.family = family
        estimates = {}

        for method in methods:
            logger.info(f"Estimating treatment effects using {method}")

            dml_model = dml.DoubleMLIRM(
                dml_data,
                ml_g=learners[method]['ml_g'],
                ml_m=learners[method]['ml_m'],
                n_folds=self.n_folds
            )

            dml_model.fit(store_predictions=True)
            self.models[method] = dml_model

            summary = dml_model.summary.iloc[0]

            estimates[method] = CausalEstimate(
                coefficient=float(summary['coef']),
                std_error=float(summary['std err']),
                ci_lower=float(summary['2.5 %']),
                ci_upper=float(summary['97.5 %']),
                p_value=float(summary['P>|t|']),
                method=f"DML-IRM ({method})"
            )

            logger.info(f"{method} - Coefficient: {estimates[method].coefficient:.4f}, "
                        f"P-value: {estimates[method].p_value:.4g}")

        self.results = estimates
        return estimates

    def evaluate_learner_performance(self) -> Dict[str, Dict[str, float]]:
        """
        Evaluate the performance of nuisance learners.

        Outcome learners are scored with log loss for a binary outcome and RMSE for a
        continuous one; the propensity learner is always scored with log loss.

        Returns:
            Dictionary with performance metrics for each method
        """
        def logloss_metric(y_true, y_pred):
            subset = np.logical_not(np.isnan(y_true))
            if np.sum(subset) == 0:
                return np.nan
            return log_loss(y_true[subset], y_pred[subset], labels=[0, 1])

        def rmse_metric(y_true, y_pred):
            subset = np.logical_not(np.isnan(y_true))
            if np.sum(subset) == 0:
                return np.nan
            return np.sqrt(mean_squared_error(y_true[subset], y_pred[subset]))

        outcome_metric, suffix = (logloss_metric, 'logloss') if self.family == "binomial" else (rmse_metric, 'rmse')

        performance = {}

        for method, model in self.models.items():
            try:
                outcome_scores = model.evaluate_learners(learners=['ml_g0', 'ml_g1'], metric=outcome_metric)
                propensity_scores = model.evaluate_learners(learners=['ml_m'], metric=logloss_metric)
                performance[method] = {
                    f'ml_g0_{suffix}': float(outcome_scores['ml_g0'][0][0]),
                    f'ml_g1_{suffix}': float(outcome_scores['ml_g1'][0][0]),
                    'ml_m_logloss': float(propensity_scores['ml_m'][0][0])
                }
            except Exception as e:
                logger.warning(f"Could not evaluate learners for {method}: {e}")
                performance[method] = {'error': str(e)}

        return performance
