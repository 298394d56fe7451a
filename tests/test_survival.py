"""
Unit tests for survival TMLE, weighted Cox regression and Kaplan-Meier helpers.
"""

import unittest
import pandas as pd
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

from causal_workflow import config
from causal_workflow.data.simulate import simulate_survival
from causal_workflow.models.causal_models import CausalEstimate
from causal_workflow.models.survival import (
    fit_weighted_cox, kaplan_meier_by_group, km_curve_frame, survival_at
)
from causal_workflow.models.survival_tmle import SurvivalTMLE
from causal_workflow.models.weighting import PropensityScoreWeighter


class TestSurvivalTMLE(unittest.TestCase):
    """Test cases for SurvivalTMLE."""

    @classmethod
    def setUpClass(cls):
        """Fit once on simulated survival data."""
        cls.df = simulate_survival(n=300, seed=3)
        cls.W = cls.df[config.COVARIATE_COLS].astype(float)
        cls.estimator = SurvivalTMLE(t0=365, n_intervals=6, ftime_library=('glm',),
                                     ctime_library=('glm',), trt_library=('glm',), cv_folds=5)
        cls.result = cls.estimator.fit(cls.df[config.TIME_COL], cls.df[config.EVENT_COL],
                                       cls.df[config.TREATMENT_COL], cls.W)

    def test_estimates_in_unit_interval(self):
        """Test arm-specific survival probabilities lie in [0, 1]."""
        for arm in (0, 1):
            self.assertGreaterEqual(self.result.survival(arm), 0)
            self.assertLessEqual(self.result.survival(arm), 1)

    def test_difference_matches_arms(self):
        """Test the difference equals treatment minus control survival."""
        expected = self.result.survival(1) - self.result.survival(0)
        self.assertAlmostEqual(self.result.difference.coefficient, expected, places=10)
        self.assertIsInstance(self.result.difference, CausalEstimate)

    def test_result_frame(self):
        """Test the estimate frame rows and columns."""
        est = self.result.est
        self.assertEqual(list(est.index), ["Control (A=0)", "Treatment (A=1)"])
        for col in ['Survival', 'SE', 'CI_lower', 'CI_upper']:
            self.assertIn(col, est.columns)
        self.assertTrue((est['SE'] > 0).all())

    def test_converged(self):
        """Test targeting converges for both arms."""
        self.assertTrue(self.result.converged)
        self.assertEqual(set(self.result.iterations), {0, 1})

    def test_influence_curves_centered(self):
        """Test influence curves average to approximately zero."""
        for arm in (0, 1):
            self.assertLess(abs(np.mean(self.result.influence_curves[arm])), 0.01)

    def test_long_format(self):
        """Test person-interval expansion: times beyond t0 stay event-free through the last interval."""
        ftime = np.array([10.0, 200.0, 400.0])
        ftype = np.array([1, 0, 1])
        trt = np.array([1, 0, 1])
        W = pd.DataFrame({'x': [0.1, 0.2, 0.3]})

        long_df = self.estimator.to_long(ftime, ftype, trt, W)
        counts = long_df.groupby('subject').size()

        self.assertEqual(counts.tolist(), [1, 4, 6])
        self.assertEqual(long_df.loc[long_df['subject'] == 0, 'dN'].tolist(), [1])
        self.assertEqual(long_df.loc[long_df['subject'] == 1, 'dC'].tolist(), [0, 0, 0, 1])
        self.assertEqual(long_df.loc[long_df['subject'] == 2, 'dN'].sum(), 0)

    def test_no_censoring_is_handled(self):
        """Test data without censoring fit without error."""
        df = self.df.copy()
        df[config.EVENT_COL] = 1
        result = SurvivalTMLE(t0=365, n_intervals=4, cv_folds=5).fit(
            df[config.TIME_COL], df[config.EVENT_COL], df[config.TREATMENT_COL], self.W
        )
        self.assertTrue(0 <= result.survival(0) <= 1)

    def test_no_events_in_treated_arm(self):
        """Test an arm without events fits and gives survival close to 1 for that arm."""
        df = self.df.copy()
        df.loc[df[config.TREATMENT_COL] == 1, config.EVENT_COL] = 0
        result = SurvivalTMLE(t0=365, n_intervals=6, cv_folds=5).fit(
            df[config.TIME_COL], df[config.EVENT_COL], df[config.TREATMENT_COL], self.W
        )

        for arm in (0, 1):
            self.assertTrue(np.isfinite(result.survival(arm)))
            self.assertTrue(0 <= result.survival(arm) <= 1)
        self.assertGreater(result.survival(1), 0.95)
        self.assertLess(result.survival(0), result.survival(1))

    def test_invalid_inputs(self):
        """Test validation of times and fitting state."""
        with self.assertRaises(ValueError):
            SurvivalTMLE(t0=0)
        with self.assertRaises(ValueError):
            SurvivalTMLE().fit(np.array([0.0, 1.0]), np.array([1, 0]), np.array([0, 1]),
                               pd.DataFrame({'x': [1.0, 2.0]}))
        with self.assertRaises(ValueError):
            _ = SurvivalTMLE().result


class TestCoxAndKaplanMeier(unittest.TestCase):
    """Test cases for weighted Cox regression and Kaplan-Meier curves."""

    def setUp(self):
        """Set up test fixtures."""
        df = simulate_survival(n=500, seed=9)
        self.weighted = PropensityScoreWeighter().fit_transform(df)

    def test_weighted_cox_estimate(self):
        """Test the weighted Cox model returns a protective hazard ratio with a valid CI."""
        hr = fit_weighted_cox(self.weighted)

        self.assertEqual(hr.estimand, "Hazard Ratio (HR)")
        self.assertLess(hr.ci_lower, hr.coefficient)
        self.assertGreater(hr.ci_upper, hr.coefficient)
        self.assertLess(hr.coefficient, 1.0)
        self.assertAlmostEqual(np.log(hr.ci_upper) - np.log(hr.coefficient), 1.96 * hr.std_error, places=2)

    def test_unweighted_cox(self):
        """Test the Cox model without weights."""
        hr = fit_weighted_cox(self.weighted, weight_col=None)
        self.assertEqual(hr.method, "Cox")

    def test_cox_rejects_negative_times(self):
        """Test negative durations are rejected."""
        bad = self.weighted.copy()
        bad.loc[0, config.TIME_COL] = -1
        with self.assertRaises(ValueError):
            fit_weighted_cox(bad)

    def test_kaplan_meier_by_group(self):
        """Test one fitted curve per arm, starting at survival 1."""
        fitters = kaplan_meier_by_group(self.weighted, weight_col="ipw")

        self.assertEqual(set(fitters), {"Control", "Treatment"})
        for kmf in fitters.values():
            self.assertAlmostEqual(survival_at(kmf, 0), 1.0)

        curves = km_curve_frame(fitters)
        self.assertEqual(set(curves['group']), {"Control", "Treatment"})
        self.assertTrue(((curves['surv'] >= 0) & (curves['surv'] <= 1)).all())
        self.assertIn('lower', curves.columns)


if __name__ == '__main__':
    unittest.main()
