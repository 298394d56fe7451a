"""
Unit tests for data simulation, loading and preprocessing modules.
"""

import io
import unittest
import tempfile
from contextlib import redirect_stdout
import pandas as pd
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

from causal_workflow import config
from causal_workflow.data.loader import ObservationLoader, validate_schema
from causal_workflow.data.preprocessor import (
    covariate_frame, filter_select, label_for_display, survival_subset
)
from causal_workflow.data.simulate import (
    dataset_paths, simulate_binary, simulate_continuous, simulate_survival, write_all
)


class TestSimulation(unittest.TestCase):
    """Test cases for the synthetic dataset generator."""

    def test_continuous_schema(self):
        """Test continuous dataset columns and binary treatment."""
        df = simulate_continuous(n=200)

        expected = [config.ID_COL, config.TREATMENT_COL] + config.COVARIATE_COLS + [config.OUTCOME_CONTINUOUS]
        self.assertEqual(list(df.columns), expected)
        self.assertEqual(len(df), 200)
        self.assertTrue(set(df[config.TREATMENT_COL].unique()).issubset({0, 1}))

    def test_reproducible_with_seed(self):
        """Test the same seed gives identical data."""
        pd.testing.assert_frame_equal(simulate_binary(n=100, seed=7), simulate_binary(n=100, seed=7))

    def test_treatment_is_confounded(self):
        """Test treated patients are more severe on average."""
        df = simulate_continuous(n=2000)
        treated = df[df[config.TREATMENT_COL] == 1]
        control = df[df[config.TREATMENT_COL] == 0]

        self.assertGreater(treated['severity'].mean(), control['severity'].mean())

    def test_survival_times_positive(self):
        """Test survival times are positive integers and events are binary."""
        df = simulate_survival(n=300)

        self.assertTrue((df[config.TIME_COL] >= 1).all())
        self.assertTrue(set(df[config.EVENT_COL].unique()).issubset({0, 1}))
        self.assertLessEqual(df[config.TIME_COL].max(), 730)


class TestObservationLoader(unittest.TestCase):
    """Test cases for ObservationLoader."""

    def setUp(self):
        """Set up test fixtures."""
        self.tmp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self.tmp.name)
        write_all(self.data_dir)
        self.loader = ObservationLoader(self.data_dir)

    def tearDown(self):
        self.tmp.cleanup()

    def test_load_each_dataset(self):
        """Test every reader returns a non-empty frame."""
        self.assertEqual(len(self.loader.load_patients_basic()), 10)
        self.assertIn(config.OUTCOME_CONTINUOUS, self.loader.load_continuous().columns)
        self.assertIn(config.OUTCOME_BINARY, self.loader.load_binary().columns)
        self.assertIn(config.EVENT_COL, self.loader.load_survival().columns)
        self.assertEqual(len(self.loader.load_evalue_studies()), 4)

    def test_missing_file_raises(self):
        """Test a missing CSV points the user to generate_data.py."""
        loader = ObservationLoader(self.data_dir / "nowhere")

        with self.assertRaises(FileNotFoundError) as ctx:
            loader.load_binary()
        self.assertIn("generate_data.py", str(ctx.exception))

    def test_missing_column_raises(self):
        """Test a CSV without a required column is rejected."""
        path = dataset_paths(self.data_dir)['binary']
        df = pd.read_csv(path).drop(columns=['severity'])
        df.to_csv(path, index=False)

        with self.assertRaises(ValueError) as ctx:
            self.loader.load_binary()
        self.assertIn('severity', str(ctx.exception))

    def test_non_binary_treatment_raises(self):
        """Test a treatment column with values other than 0/1 is rejected."""
        path = dataset_paths(self.data_dir)['continuous']
        df = pd.read_csv(path)
        df.loc[0, config.TREATMENT_COL] = 2
        df.to_csv(path, index=False)

        with self.assertRaises(ValueError):
            self.loader.load_continuous()

    def test_unknown_dataset_raises(self):
        """Test unknown dataset names are rejected."""
        with self.assertRaises(ValueError):
            self.loader.load('unknown')

    def test_describe_prints_summary(self):
        """Test describe prints the shape and treatment split of the last loaded dataset."""
        df = self.loader.load_binary()
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            self.loader.describe()

        output = buffer.getvalue()
        self.assertIn(f"Shape: {df.shape}", output)
        self.assertIn("Treatment distribution", output)

    def test_validate_schema_accepts_valid_frame(self):
        """Test schema validation passes for a valid frame."""
        df = pd.DataFrame({'a': [0, 1], 'b': [1.5, 2.5]})
        validate_schema(df, ['a', 'b'], ['a'])


class TestPreprocessor(unittest.TestCase):
    """Test cases for the reshaping helpers."""

    def setUp(self):
        """Set up test fixtures."""
        np.random.seed(42)
        n = 20
        self.df = pd.DataFrame({
            config.ID_COL: range(1, n + 1),
            config.TREATMENT_COL: np.random.binomial(1, 0.5, n),
            'age': np.random.randint(30, 80, n),
            'sex': np.random.binomial(1, 0.5, n),
            'comorbidity': np.random.poisson(1.5, n),
            'severity': np.random.normal(5, 2, n),
            config.TIME_COL: [0, 5] + list(np.random.randint(1, 500, n - 2)),
            config.EVENT_COL: np.random.binomial(1, 0.5, n),
            config.OUTCOME_CONTINUOUS: np.random.normal(0, 1, n),
        })

    def test_label_for_display(self):
        """Test coded columns become labelled categoricals."""
        labelled = label_for_display(self.df)

        self.assertEqual(list(labelled[config.TREATMENT_COL].cat.categories), ["Control", "Treatment"])
        self.assertEqual(list(labelled['sex'].cat.categories), ["Female", "Male"])
        self.assertEqual(list(labelled[config.EVENT_COL].cat.categories), ["Censored", "Event"])
        # Original frame untouched
        self.assertTrue(pd.api.types.is_integer_dtype(self.df[config.TREATMENT_COL]))

    def test_survival_subset(self):
        """Test zero follow-up times are dropped before taking the first n rows."""
        subset = survival_subset(self.df, n=5)

        self.assertEqual(len(subset), 5)
        self.assertTrue((subset[config.TIME_COL] > 0).all())
        self.assertEqual(subset[config.ID_COL].iloc[0], 2)

    def test_filter_select(self):
        """Test the filter/select demo keeps older patients and four columns."""
        filtered = filter_select(self.df, min_age=50)

        self.assertTrue((filtered['age'] > 50).all())
        self.assertEqual(list(filtered.columns), [config.ID_COL, 'age', config.TREATMENT_COL, config.OUTCOME_CONTINUOUS])

    def test_covariate_frame(self):
        """Test the covariate matrix holds the baseline covariates as floats."""
        W = covariate_frame(self.df)

        self.assertEqual(list(W.columns), config.COVARIATE_COLS)
        self.assertTrue(all(dtype == float for dtype in W.dtypes))


if __name__ == '__main__':
    unittest.main()
