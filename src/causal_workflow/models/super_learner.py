"""
Super Learner ensembles built on scikit-learn stacking.

A Super Learner fits every candidate learner in a library, obtains cross-validated predictions
and combines them with a meta-learner. ``glm`` and ``glmnet`` correspond to the R
SuperLearner wrappers of the same names.
"""

import numpy as np
import pandas as pd
from typing import Sequence, Union
import logging

from sklearn.dummy import DummyClassifier, DummyRegressor
from sklearn.ensemble import (
    RandomForestClassifier,
    RandomForestRegressor,
    StackingClassifier,
    StackingRegressor,
)
from sklearn.linear_model import LassoCV, LinearRegression, LogisticRegression, LogisticRegressionCV
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from xgboost import XGBClassifier, XGBRegressor

from .. import config


logger = logging.getLogger(__name__)

AVAILABLE_LEARNERS = ('glm', 'glmnet', 'random_forest', 'xgboost', 'mean')
FAMILIES = ('gaussian', 'binomial')


def _candidate(name: str, family: str, random_state: int):
    """Instantiate one candidate learner."""
    binomial = family == 'binomial'

    if name == 'glm':
        model = LogisticRegression(penalty=None, max_iter=1000) if binomial else LinearRegression()
        return make_pipeline(StandardScaler(), model)
    if name == 'glmnet':
        if binomial:
            model = LogisticRegressionCV(Cs=10, cv=5, penalty='l1', solver='liblinear',
                                         max_iter=1000, random_state=random_state)
        else:
            model = LassoCV(cv=5, random_state=random_state)
        return make_pipeline(StandardScaler(), model)
    if name == 'random_forest':
        if binomial:
            return RandomForestClassifier(n_estimators=200, min_samples_leaf=5, random_state=random_state)
        return RandomForestRegressor(n_estimators=200, min_samples_leaf=5, random_state=random_state)
    if name == 'xgboost':
        if binomial:
            return XGBClassifier(n_estimators=100, max_depth=3, learning_rate=0.1,
                                 objective="binary:logistic", eval_metric="logloss",
                                 random_state=random_state, n_jobs=1)
        return XGBRegressor(n_estimators=100, max_depth=3, learning_rate=0.1,
                            random_state=random_state, n_jobs=1)
    if name == 'mean':
        return DummyClassifier(strategy='prior') if binomial else DummyRegressor(strategy='mean')

    raise ValueError(f"Unknown learner '{name}'. Available: {list(AVAILABLE_LEARNERS)}")


def build_super_learner(
    library: Sequence[str] = config.SL_LIBRARY,
    family: str = 'gaussian',
    cv: int = config.SL_CV_FOLDS,
    random_state: int = config.RANDOM_SEED
) -> Union[StackingRegressor, StackingClassifier]:
    """
    Build an unfitted Super Learner.

    Args:
        library: Candidate learner names
        family: 'gaussian' (regression) or 'binomial' (probability of a 0/1 outcome)
        cv: Number of cross-validation folds for the level-one predictions
        random_state: Random seed for the stochastic learners

    Returns:
        StackingRegressor with a non-negative linear meta-learner, or StackingClassifier
        with a logistic meta-learner on the candidates' predicted probabilities
    """
    if family not in FAMILIES:
        raise ValueError(f"family must be one of {FAMILIES}, got '{family}'")
    library = list(library)
    if not library:
        raise ValueError("Super Learner library must contain at least one learner")

    estimators = [(name, _candidate(name, family, random_state)) for name in library]

    if family == 'binomial':
        return StackingClassifier(
            estimators=estimators,
            final_estimator=LogisticRegression(max_iter=1000),
            cv=cv,
            stack_method='predict_proba'
        )

    return StackingRegressor(
        estimators=estimators,
        final_estimator=LinearRegression(positive=True),
        cv=cv
    )


def fit_super_learner(
    X: pd.DataFrame,
    y: np.ndarray,
    library: Sequence[str] = config.SL_LIBRARY,
    family: str = 'gaussian',
    cv: int = config.SL_CV_FOLDS,
    random_state: int = config.RANDOM_SEED
):
    """
    Build and fit a Super Learner, shrinking the folds for small samples.

    A binomial outcome observed in a single class gets a constant-probability model.
    """
    y = np.asarray(y)

    if family == 'binomial':
        counts = np.unique(y, return_counts=True)[1]
        if len(counts) < 2:
            logger.warning(f"Outcome has a single class ({y[0] if len(y) else 'empty'}); using a constant prediction")
            model = DummyClassifier(strategy='prior')
            return model.fit(X, y)
        folds = min(cv, int(counts.min()))
    else:
        folds = min(cv, len(y))

    if folds < 2:
        logger.warning(f"Too few observations for cross-validation; fitting '{library[0]}' alone")
        return _candidate(library[0], family, random_state).fit(X, y)

    model = build_super_learner(library, family, folds, random_state)
    model.fit(X, y)
    return model


def predict_mean(model, X: pd.DataFrame, family: str = 'gaussian') -> np.ndarray:
    """Conditional mean of the outcome, i.e. P(Y=1 | X) for the binomial family."""
    if family == 'binomial':
        classes = list(model.classes_)
        if len(classes) == 1:
            return np.full(len(X), float(classes[0]))
        return model.predict_proba(X)[:, classes.index(1)]

    return np.asarray(model.predict(X), dtype=float)
