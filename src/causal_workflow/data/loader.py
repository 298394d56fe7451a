"""
Data loading module for the workflow CSV datasets.
"""

import pandas as pd
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging

from .. import config
from .simulate import dataset_paths


logger = logging.getLogger(__name__)


BASELINE_COLUMNS = [config.ID_COL, config.TREATMENT_COL] + config.COVARIATE_COLS

SCHEMAS: Dict[str, List[str]] = {
    'patients_basic': [config.ID_COL, 'age', config.TREATMENT_COL, config.OUTCOME_CONTINUOUS],
    'continuous': BASELINE_COLUMNS + [config.OUTCOME_CONTINUOUS],
    'binary': BASELINE_COLUMNS + [config.OUTCOME_BINARY],
    'survival': BASELINE_COLUMNS + [config.TIME_COL, config.EVENT_COL],
    'evalue_studies': ['study', 'rr', 'rr_lo', 'rr_hi'],
}

BINARY_COLUMNS: Dict[str, List[str]] = {
    'patients_basic': [config.TREATMENT_COL],
    'continuous': [config.TREATMENT_COL, 'sex'],
    'binary': [config.TREATMENT_COL, 'sex', config.OUTCOME_BINARY],
    'survival': [config.TREATMENT_COL, 'sex', config.EVENT_COL],
    'evalue_studies': [],
}


class ObservationLoader:
    """Loads the observation tables used by the workflow scripts."""

    def __init__(self, data_dir: Union[str, Path] = config.DATA_DIR):
        """
        Initialize the data loader.

        Args:
            data_dir: Root directory holding the basics/, workflow/ and sensitivity/ CSVs
        """
        self.data_dir = Path(data_dir)
        self.paths = dataset_paths(self.data_dir)
        self._last_loaded: Optional[pd.DataFrame] = None

    def load(self, name: str) -> pd.DataFrame:
        """
        Load a dataset by name and validate its schema.

        Args:
            name: One of 'patients_basic', 'continuous', 'binary', 'survival', 'evalue_studies'

        Returns:
            Validated dataset
        """
        if name not in SCHEMAS:
            raise ValueError(f"Unknown dataset '{name}'. Available: {sorted(SCHEMAS)}")

        path = self.paths[name]
        if not path.exists():
            raise FileNotFoundError(
                f"Dataset '{name}' not found at {path}. Run generate_data.py to create it."
            )

        logger.info(f"Loading {name} dataset from {path}")
        df = pd.read_csv(path)

        validate_schema(df, SCHEMAS[name], BINARY_COLUMNS[name], name=name)
        if name == 'survival' and (df[config.TIME_COL] < 0).any():
            raise ValueError(f"Column '{config.TIME_COL}' must contain non-negative values only.")

        self._last_loaded = df
        logger.info(f"Loaded {name} dataset with {len(df)} observations and {len(df.columns)} columns")
        return df

    def load_patients_basic(self) -> pd.DataFrame:
        """Load the small demonstration patient table."""
        return self.load('patients_basic')

    def load_continuous(self) -> pd.DataFrame:
        """Load the continuous-outcome observation table."""
        return self.load('continuous')

    def load_binary(self) -> pd.DataFrame:
        """Load the binary-outcome observation table."""
        return self.load('binary')

    def load_survival(self) -> pd.DataFrame:
        """Load the time-to-event observation table."""
        return self.load('survival')

    def load_evalue_studies(self) -> pd.DataFrame:
        """Load the example risk ratios used for E-values."""
        return self.load('evalue_studies')

    def describe(self, df: Optional[pd.DataFrame] = None) -> None:
        """Print dataset shape and treatment split."""
        df = self._last_loaded if df is None else df
        if df is None:
            logger.error("No data loaded. Call load() first.")
            return

        print("Dataset Overview:")
        print("=" * 50)
        print(f"Shape: {df.shape}")

        if config.TREATMENT_COL in df.columns:
            print("\nTreatment distribution:")
            treatment_dist = df[config.TREATMENT_COL].value_counts(normalize=True).sort_index()
            for arm, proportion in treatment_dist.items():
                print(f"  {arm}: {proportion:.3f}")

        missing_summary = df.isnull().sum()
        if missing_summary.sum() > 0:
            print("\nMissing data summary:")
            for col, count in missing_summary.items():
                if count > 0:
                    print(f"  {col}: {count / len(df) * 100:.1f}%")


def validate_schema(
    df: pd.DataFrame,
    required: List[str],
    binary: Optional[List[str]] = None,
    name: str = "dataset"
) -> None:
    """
    Check required columns are present and binary columns only contain 0/1.

    Args:
        df: Dataset to validate
        required: Columns that must be present
        binary: Columns that must be coded 0/1 without missing values
        name: Dataset name used in error messages
    """
    if not isinstance(df, pd.DataFrame):
        raise ValueError("df must be a pandas DataFrame.")

    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"The following columns are missing from the {name} dataset: {missing}")

    for col in binary or []:
        if df[col].isnull().any():
            raise ValueError(f"Column '{col}' has missing values.")
        if not set(df[col].unique()).issubset({0, 1}):
            raise ValueError(f"Column '{col}' must contain only binary values (0 and 1).")
