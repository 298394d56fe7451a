"""
End-to-end tests for the analysis workflows on freshly simulated data.
"""

import unittest
import tempfile
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

import matplotlib
matplotlib.use("Agg")

from causal_workflow import config
from causal_workflow.data.simulate import write_all
from causal_workflow.models.causal_models import CausalEstimate
from causal_workflow.workflows import (
    run_balance_diagnostics,
    run_basics_demo,
    run_evalue_sensitivity,
    run_survival_ipw_cox,
    run_survival_tmle,
    run_tmle_binary,
    run_tmle_continuous,
)


class TestWorkflows(unittest.TestCase):
    """Run every workflow against a temporary data and output directory."""

    @classmethod
    def setUpClass(cls):
        """Generate the input datasets once."""
        cls.tmp = tempfile.TemporaryDirectory()
        root = Path(cls.tmp.name)
        cls.data_dir = root / "data"
        cls.output_dir = root / "output"
        write_all(cls.data_dir)
        cls.workflow_dir = cls.output_dir / config.WORKFLOW_SUBDIR

    @classmethod
    def tearDownClass(cls):
        cls.tmp.cleanup()

    def assertOutputs(self, directory, names):
        for name in names:
            self.assertTrue((directory / name).exists(), f"{name} was not written")

    def test_basics_demo(self):
        """Test the data-frame basics demo filters and draws the DAG."""
        results = run_basics_demo(self.data_dir, self.output_dir)

        self.assertEqual(results['x'], 10)
        self.assertEqual(results['name'], "treatment")
        self.assertAlmostEqual(results['mean_age'], 50.5)
        self.assertEqual(results['patients'][config.ID_COL].tolist(), [1, 2, 3, 4])
        self.assertEqual(results['patients'][config.TREATMENT_COL].tolist(), [1, 1, 0, 0])
        self.assertEqual(results['n_patients'], 10)
        self.assertTrue((results['filtered']['age'] > 50).all())
        self.assertOutputs(self.output_dir / config.BASICS_SUBDIR, ["causal_dag.png"])

    def test_tmle_continuous(self):
        """Test the continuous TMLE workflow and its Double ML cross-check."""
        results = run_tmle_continuous(self.data_dir, self.output_dir, q_library=('glm',),
                                      g_library=('glm',), cv_folds=3, dml_methods=['logistic'])

        self.assertIsInstance(results['ate'], CausalEstimate)
        self.assertLess(results['ate'].coefficient, 0)
        self.assertIn('logistic', results['dml'])
        self.assertOutputs(self.workflow_dir, [
            "02_baseline_continuous.html",
            "02_tmle_continuous_results.html",
            "02_tmle_continuous_forest.png",
            "02_dml_crosscheck.html",
        ])

    def test_tmle_binary(self):
        """Test the binary TMLE workflow reports ATE, RR and OR."""
        results = run_tmle_binary(self.data_dir, self.output_dir, q_library=('glm',),
                                  g_library=('glm',), cv_folds=3)

        self.assertEqual(len(results['results_table']), 3)
        self.assertGreater(results['rr'].coefficient, 0)
        self.assertOutputs(self.workflow_dir, ["03_tmle_binary_results.html"])

    def test_survival_tmle(self):
        """Test the survival TMLE workflow on the analysis subset."""
        results = run_survival_tmle(self.data_dir, self.output_dir, n_intervals=4, cv_folds=3)

        self.assertTrue(0 <= results['survival_control'] <= 1)
        self.assertTrue(0 <= results['survival_treatment'] <= 1)
        self.assertOutputs(self.workflow_dir, [
            "04_baseline_survival.html",
            "04_survtmle_results.html",
            "04_survtmle_km_curve.png",
            "04_survtmle_bar.png",
        ])

    def test_survival_ipw_cox(self):
        """Test the IPW Cox workflow and its diagnostics."""
        results = run_survival_ipw_cox(self.data_dir, self.output_dir)

        self.assertEqual(results['hr'].estimand, "Hazard Ratio (HR)")
        self.assertIn("hazard", results['interpretation'])
        self.assertOutputs(self.workflow_dir, [
            "05_baseline_ipw_cox.html",
            "05_ipw_cox_results.html",
            "05_ipw_cox_detailed.html",
            "05_ipw_cox_forest.png",
            "05_ipw_cox_km_curve.png",
            "05_ipw_weight_diagnostics.html",
        ])

    def test_balance_diagnostics(self):
        """Test the balance workflow writes every table and chart."""
        results = run_balance_diagnostics(self.data_dir, self.output_dir)

        self.assertEqual(len(results['summary']), 4)
        self.assertEqual(len(results['balance']), len(config.COVARIATE_COLS))
        self.assertOutputs(self.workflow_dir, [
            "06_baseline_unweighted.html",
            "06_balance_table.html",
            "06_love_plot.png",
            "06_ps_overlap.png",
            "06_weight_distribution.png",
            "06_ess_table.html",
            "06_diagnostics_summary.html",
        ])

    def test_evalue_sensitivity(self):
        """Test the E-value workflow."""
        results = run_evalue_sensitivity(self.data_dir, self.output_dir)

        self.assertEqual(len(results['evalues']), 4)
        self.assertOutputs(self.output_dir / config.SENSITIVITY_SUBDIR, ["01_evalue_table.html"])
        text = (self.output_dir / config.SENSITIVITY_SUBDIR / "01_evalue_table.html").read_text(encoding="utf-8")
        self.assertIn("illustrative", text)


if __name__ == '__main__':
    unittest.main()
