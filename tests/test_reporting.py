"""
Unit tests for reporting tables, plotting and utility helpers.
"""

import unittest
import tempfile
import pandas as pd
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from causal_workflow import config
from causal_workflow.data.preprocessor import label_for_display
from causal_workflow.data.simulate import simulate_binary, simulate_survival
from causal_workflow.diagnostics.balance import BalanceDiagnostics
from causal_workflow.models.causal_models import CausalEstimate
from causal_workflow.models.survival import kaplan_meier_by_group
from causal_workflow.models.weighting import PropensityScoreWeighter
from causal_workflow.reporting.tables import (
    baseline_table, estimate_frame, format_pvalue, write_html_table
)
from causal_workflow.utils.helpers import (
    ensure_directory, format_results_table, load_results, save_results, validate_data_quality
)
from causal_workflow.visualization.plots import CausalVisualization


def _estimate(coefficient=-5.0, p_value=0.001):
    return CausalEstimate(coefficient=coefficient, std_error=0.5, ci_lower=coefficient - 1,
                          ci_upper=coefficient + 1, p_value=p_value, method='TMLE')


class TestTables(unittest.TestCase):
    """Test cases for table builders and HTML export."""

    def setUp(self):
        """Set up test fixtures."""
        self.df = simulate_binary(n=400, seed=12)
        self.tmp = tempfile.TemporaryDirectory()
        self.out_dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_format_pvalue(self):
        """Test p-value formatting."""
        self.assertEqual(format_pvalue(0.0001), "<0.001")
        self.assertEqual(format_pvalue(0.04567), "0.0457")
        self.assertEqual(format_pvalue(0.5), "0.5")
        self.assertEqual(format_pvalue(None), "NA")
        self.assertEqual(format_pvalue(np.nan), "NA")

    def test_baseline_table_layout(self):
        """Test headers carry group sizes and every covariate has a row."""
        labelled = label_for_display(self.df)
        table = baseline_table(labelled)

        n_treated = int(self.df[config.TREATMENT_COL].sum())
        self.assertIn(f"Overall (N = {len(self.df)})", table.columns)
        self.assertIn(f"Treatment (N = {n_treated})", table.columns)
        self.assertIn('p-value', table.columns)

        characteristics = table['Characteristic'].tolist()
        for var in ['age', 'sex', 'comorbidity', 'severity']:
            self.assertIn(var, characteristics)

    def test_baseline_table_categorical_levels(self):
        """Test multi-level categorical variables get indented level rows."""
        labelled = label_for_display(self.df)
        table = baseline_table(labelled, variables=['sex'])

        self.assertEqual(table['Characteristic'].tolist(), ['sex', '    Female', '    Male'])
        self.assertEqual(table.loc[1, 'p-value'], "")

    def test_baseline_table_dichotomous_row(self):
        """Test 0/1 variables collapse to a single n (%) row."""
        table = baseline_table(self.df, variables=[config.OUTCOME_BINARY], add_p=False)

        self.assertEqual(len(table), 1)
        self.assertNotIn('p-value', table.columns)
        self.assertRegex(table.iloc[0, 1], r"^\d+ \(\d+%\)$")

    def test_baseline_table_missing_column(self):
        """Test missing variables are rejected."""
        with self.assertRaises(ValueError):
            baseline_table(self.df, variables=['bmi'])

    def test_estimate_frame(self):
        """Test one row per estimate."""
        frame = estimate_frame({'a': _estimate(), 'b': _estimate(-3.0)})

        self.assertEqual(len(frame), 2)
        self.assertEqual(list(frame.columns),
                         ['Estimand', 'Method', 'Estimate', 'SE', 'CI_lower', 'CI_upper', 'p_value'])

    def test_write_html_table(self):
        """Test the HTML file holds the title, escaped notes and the table."""
        path = write_html_table(
            pd.DataFrame({'Metric': ['ESS'], 'Value': [123.456]}),
            self.out_dir / "nested" / "table.html",
            title="Weight Diagnostics",
            subtitle="ATE weights",
            footnotes=["|SMD| < 0.1"],
            source_note="Simulated data"
        )

        self.assertTrue(path.exists())
        text = path.read_text(encoding="utf-8")
        self.assertIn("Weight Diagnostics", text)
        self.assertIn("123.456", text)
        self.assertIn("&lt; 0.1", text)
        self.assertIn("Simulated data", text)


class TestHelpers(unittest.TestCase):
    """Test cases for utility helpers."""

    def setUp(self):
        """Set up test fixtures."""
        self.tmp = tempfile.TemporaryDirectory()
        self.out_dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_save_and_load_json(self):
        """Test estimates, frames and numpy values survive a JSON round trip."""
        results = {
            'ate': _estimate(),
            'table': pd.DataFrame({'a': [1, 2]}),
            'values': np.array([1.5, np.nan]),
            'n': np.int64(10),
        }
        path = self.out_dir / "results.json"
        save_results(results, path)
        loaded = load_results(path)

        self.assertEqual(loaded['ate']['coefficient'], -5.0)
        self.assertEqual(loaded['table'], [{'a': 1}, {'a': 2}])
        self.assertEqual(loaded['values'], [1.5, None])
        self.assertEqual(loaded['n'], 10)

    def test_json_keeps_named_index(self):
        """Test frames indexed by a named index keep their row labels in JSON."""
        est = pd.DataFrame({'Survival': [0.4, 0.6]},
                           index=pd.Index(["Control (A=0)", "Treatment (A=1)"], name='Arm'))
        path = self.out_dir / "survival.json"
        save_results({'survival_tmle': est, 'plain': pd.DataFrame({'a': [1]})}, path)
        loaded = load_results(path)

        self.assertEqual([row['Arm'] for row in loaded['survival_tmle']], ["Control (A=0)", "Treatment (A=1)"])
        self.assertEqual(loaded['plain'], [{'a': 1}])

    def test_save_and_load_pickle(self):
        """Test pickled results keep their types."""
        path = self.out_dir / "results.pkl"
        save_results({'ate': _estimate()}, path)
        self.assertIsInstance(load_results(path)['ate'], CausalEstimate)

    def test_unsupported_format(self):
        """Test unknown file suffixes are rejected."""
        with self.assertRaises(ValueError):
            save_results({}, self.out_dir / "results.txt")
        with self.assertRaises(ValueError):
            load_results(self.out_dir / "results.txt")

    def test_validate_data_quality(self):
        """Test data quality metrics."""
        df = pd.DataFrame({config.TREATMENT_COL: [0, 1, 1, 0], 'x': [1.0, np.nan, 2.0, 3.0]})
        quality = validate_data_quality(df)

        self.assertEqual(quality['n_observations'], 4)
        self.assertEqual(quality['missing_data']['total_missing'], 1)
        self.assertEqual(quality['missing_data']['max_missing_feature'], 'x')
        self.assertEqual(quality['treatment_counts'], {0: 2, 1: 2})
        self.assertAlmostEqual(quality['treated_fraction'], 0.5)

    def test_format_results_table(self):
        """Test the text table lists every estimate."""
        text = format_results_table({'TMLE': _estimate(), 'DML': _estimate(-4.0, 0.3)}, title="Estimates")

        self.assertIn("Estimates", text)
        self.assertIn("TMLE", text)
        self.assertIn("-4.0000", text)
        self.assertIn("No", text)

    def test_ensure_directory(self):
        """Test nested directories are created."""
        path = ensure_directory(self.out_dir / "a" / "b")
        self.assertTrue(path.is_dir())


class TestCausalVisualization(unittest.TestCase):
    """Test cases for CausalVisualization."""

    @classmethod
    def setUpClass(cls):
        """Prepare weighted data and fitted curves once."""
        cls.weighted = PropensityScoreWeighter().fit_transform(simulate_survival(n=300, seed=2))
        cls.fitters = kaplan_meier_by_group(cls.weighted)
        cls.balance = BalanceDiagnostics().balance_table(cls.weighted)

    def setUp(self):
        """Set up test fixtures."""
        self.viz = CausalVisualization()
        self.tmp = tempfile.TemporaryDirectory()
        self.out_dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_forest_plot_saved(self):
        """Test the forest plot is written to disk."""
        path = self.out_dir / "forest.png"
        fig = self.viz.plot_forest({'TMLE': _estimate()}, save_path=path)

        self.assertIsInstance(fig, plt.Figure)
        self.assertTrue(path.exists())

    def test_survival_plots(self):
        """Test Kaplan-Meier and survival bar plots return figures."""
        est = pd.DataFrame({'Survival': [0.5, 0.6], 'SE': [0.05, 0.05]},
                           index=["Control (A=0)", "Treatment (A=1)"])

        self.assertIsInstance(self.viz.plot_km_curves(self.fitters, t0=365), plt.Figure)
        self.assertIsInstance(self.viz.plot_weighted_km(self.fitters), plt.Figure)
        self.assertIsInstance(self.viz.plot_survival_bar(est, t0=365), plt.Figure)

    def test_balance_plots(self):
        """Test Love, overlap and weight plots return figures."""
        self.assertIsInstance(self.viz.plot_love(self.balance), plt.Figure)
        self.assertIsInstance(self.viz.plot_ps_overlap(self.weighted), plt.Figure)
        self.assertIsInstance(self.viz.plot_weight_distribution(self.weighted, bins=20), plt.Figure)

    def test_weight_distribution_invalid_bins(self):
        """Test non-positive bin counts are rejected."""
        with self.assertRaises(ValueError):
            self.viz.plot_weight_distribution(self.weighted, bins=0)

    def test_causal_dag(self):
        """Test the DAG figure is written to disk."""
        path = self.out_dir / "dag.png"
        self.assertIsInstance(self.viz.plot_causal_dag(save_path=path), plt.Figure)
        self.assertTrue(path.exists())


if __name__ == '__main__':
    unittest.main()
