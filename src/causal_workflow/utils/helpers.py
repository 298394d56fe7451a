"""
Utility functions for the causal inference workflow.
"""

import pandas as pd
import numpy as np
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Union
import json
import pickle

from .. import config


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file to write logs to
    """
    log_level = getattr(logging, level.upper())

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def to_serializable(value: Any) -> Any:
    """Recursively convert estimates, frames and numpy values to JSON-friendly types."""
    if hasattr(value, 'to_dict') and not isinstance(value, (pd.DataFrame, pd.Series)):
        return to_serializable(value.to_dict())
    if isinstance(value, pd.DataFrame):
        # Named indexes carry row labels
        if any(name is not None for name in value.index.names):
            value = value.reset_index()
        return to_serializable(value.to_dict(orient='records'))
    if isinstance(value, pd.Series):
        return to_serializable(value.to_dict())
    if isinstance(value, dict):
        return {str(key): to_serializable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_serializable(item) for item in value]
    if isinstance(value, np.ndarray):
        return to_serializable(value.tolist())
    if isinstance(value, (np.bool_,)):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        value = float(value)
    if isinstance(value, float) and not np.isfinite(value):
        return None
    if isinstance(value, Path):
        return str(value)
    return value


def save_results(results: Dict[str, Any], filepath: Union[str, Path]) -> None:
    """
    Save analysis results to file.

    Args:
        results: Dictionary containing analysis results
        filepath: Path to save results (.json or .pkl)
    """
    filepath = Path(filepath)
    if filepath.suffix not in ('.json', '.pkl'):
        raise ValueError(f"Unsupported file format: {filepath.suffix}")
    filepath.parent.mkdir(parents=True, exist_ok=True)

    if filepath.suffix == '.json':
        # Anything still not JSON-native after conversion is written as its string form
        filepath.write_text(json.dumps(to_serializable(results), indent=2, default=str), encoding="utf-8")
    else:
        filepath.write_bytes(pickle.dumps(results))

    logger.info(f"Results saved to {filepath}")


def load_results(filepath: Union[str, Path]) -> Dict[str, Any]:
    """
    Load analysis results from file.

    Args:
        filepath: Path to results file

    Returns:
        Dictionary containing analysis results
    """
    filepath = Path(filepath)

    if filepath.suffix == '.json':
        results = json.loads(filepath.read_text(encoding="utf-8"))
    elif filepath.suffix == '.pkl':
        results = pickle.loads(filepath.read_bytes())
    else:
        raise ValueError(f"Unsupported file format: {filepath.suffix}")

    logger.info(f"Results loaded from {filepath}")
    return results


def validate_data_quality(df: pd.DataFrame, treatment_col: str = config.TREATMENT_COL) -> Dict[str, Any]:
    """
    Validate data quality and return quality metrics.

    Args:
        df: Dataset to validate
        treatment_col: Treatment column whose balance is reported

    Returns:
        Dictionary with data quality metrics
    """
    quality_metrics = {}

    quality_metrics['n_observations'] = len(df)
    quality_metrics['n_features'] = len(df.columns)

    missing_counts = df.isnull().sum()
    quality_metrics['missing_data'] = {
        'total_missing': int(missing_counts.sum()),
        'features_with_missing': int((missing_counts > 0).sum()),
        'max_missing_feature': missing_counts.idxmax() if missing_counts.sum() > 0 else None,
    }

    quality_metrics['duplicates'] = int(df.duplicated().sum())

    if treatment_col in df.columns:
        counts = df[treatment_col].value_counts().sort_index()
        quality_metrics['treatment_counts'] = {int(k): int(v) for k, v in counts.items()}
        quality_metrics['treated_fraction'] = float(df[treatment_col].mean())
        if min(counts.min(), len(df) - counts.max()) < 0.1 * len(df):
            logger.warning(f"Treatment '{treatment_col}' is highly imbalanced: {quality_metrics['treatment_counts']}")

    return quality_metrics


def format_results_table(estimates: Dict[str, Any], title: str = "Treatment Effect Estimates") -> str:
    """
    Format results as a nice table for reporting.

    Args:
        estimates: Dictionary of causal estimates
        title: Title for the table

    Returns:
        Formatted table string
    """
    table_lines = [f"\n{title}", "=" * len(title)]

    headers = ["Method", "Estimate", "Std Error", "95% CI", "P-value", "Significant"]
    table_lines.append(" | ".join(f"{h:>12}" for h in headers))
    table_lines.append("-" * (13 * len(headers) + len(headers) - 1))

    for method, est in estimates.items():
        if hasattr(est, 'coefficient'):
            significance = "Yes" if est.is_significant else "No"
            ci_str = f"[{est.ci_lower:.3f}, {est.ci_upper:.3f}]"

            row = [
                method[:12],
                f"{est.coefficient:.4f}",
                f"{est.std_error:.4f}",
                ci_str,
                f"{est.p_value:.4f}",
                significance
            ]
            table_lines.append(" | ".join(f"{cell:>12}" for cell in row))

    return "\n".join(table_lines)


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure directory exists, create if it doesn't.

    Args:
        path: Directory path

    Returns:
        Path object
    """
    path_obj = Path(path)
    path_obj.mkdir(parents=True, exist_ok=True)
    return path_obj
