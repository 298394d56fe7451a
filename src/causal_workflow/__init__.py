"""
Causal inference workflow for observational clinical data.

This package implements the analysis pipelines behind a teaching deck on causal inference:
propensity-score weighting, targeted maximum likelihood estimation (TMLE) with Super Learner,
survival analysis (survival TMLE, IPW-weighted Cox and Kaplan-Meier) and E-value sensitivity
analysis. Each pipeline loads a CSV, calls an estimator and renders tables and charts.
"""

__version__ = "1.0.0"
__author__ = "Data Science Research"
