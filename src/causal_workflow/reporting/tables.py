"""
Summary tables: baseline characteristics (Table 1), estimate tables and HTML export.
"""

import html
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union
import logging

from scipy import stats

from .. import config


logger = logging.getLogger(__name__)

# Numeric variables with fewer distinct values than this are summarised as categorical
CATEGORICAL_MAX_LEVELS = 10
INDENT = "    "


def format_pvalue(p: Optional[float], digits: int = 3, eps: float = 0.001) -> str:
    """Format a p-value with `digits` significant digits, reporting values below eps as '<eps'."""
    if p is None or pd.isna(p):
        return "NA"
    if p < eps:
        return f"<{eps:g}"
    return f"{p:.{digits}g}"


def _is_categorical(series: pd.Series) -> bool:
    if isinstance(series.dtype, pd.CategoricalDtype) or series.dtype == object or series.dtype == bool:
        return True
    return series.nunique(dropna=True) < CATEGORICAL_MAX_LEVELS


def _is_dichotomous(series: pd.Series) -> bool:
    return not isinstance(series.dtype, pd.CategoricalDtype) and set(series.dropna().unique()).issubset({0, 1})


def _mean_sd(x: pd.Series) -> str:
    return f"{x.mean():.1f} ({x.std():.1f})"


def _n_pct(count: int, total: int) -> str:
    pct = 100 * count / total if total else 0.0
    return f"{count} ({pct:.0f}%)"


def _categorical_pvalue(series: pd.Series, groups: pd.Series) -> Optional[float]:
    observed = pd.crosstab(np.asarray(series, dtype=object), np.asarray(groups, dtype=object))
    if observed.shape[0] < 2 or observed.shape[1] < 2:
        return None
    chi2, p, dof, expected = stats.chi2_contingency(observed, correction=False)
    if observed.shape == (2, 2) and (expected < 5).any():
        p = stats.fisher_exact(observed.to_numpy())[1]
    return float(p)


def baseline_table(
    df: pd.DataFrame,
    by: str = config.TREATMENT_COL,
    variables: Optional[List[str]] = None,
    labels: Optional[Dict[str, str]] = None,
    add_p: bool = True
) -> pd.DataFrame:
    """
    Baseline characteristics by arm.

    Continuous variables are summarised as mean (SD) and compared with the Wilcoxon rank-sum
    test. Categorical variables are summarised as n (%) per level and compared with the
    chi-square test, or Fisher's exact test for 2x2 tables with small expected counts.

    Args:
        df: Observation table
        by: Grouping column (the treatment)
        variables: Variables to summarise. Defaults to the baseline covariates
        labels: Display labels for variables
        add_p: Add a p-value column

    Returns:
        DataFrame with a Characteristic column, an Overall column and one column per arm
    """
    variables = list(variables or config.COVARIATE_COLS)
    labels = labels or {}
    missing = [col for col in [by] + variables if col not in df.columns]
    if missing:
        raise ValueError(f"The following columns are missing from the DataFrame: {missing}")

    groups = df[by]
    levels = list(groups.cat.categories) if isinstance(groups.dtype, pd.CategoricalDtype) else sorted(groups.unique())
    subsets = [("Overall", df)] + [(str(level), df[groups == level]) for level in levels]
    headers = [f"{name} (N = {len(subset)})" for name, subset in subsets]

    rows = []
    for var in variables:
        label = labels.get(var, var)
        series = df[var]

        if not _is_categorical(series):
            row = {'Characteristic': label}
            row.update({header: _mean_sd(subset[var]) for header, subset in zip(headers, subsets)})
            if add_p:
                arms = [subset[var].dropna() for _, subset in subsets[1:]]
                p = stats.mannwhitneyu(arms[0], arms[1], alternative='two-sided').pvalue if len(arms) == 2 else None
                row['p-value'] = format_pvalue(p)
            rows.append(row)
            continue

        p = _categorical_pvalue(series, groups) if add_p else None

        if _is_dichotomous(series):
            row = {'Characteristic': label}
            row.update({header: _n_pct(int((subset[var] == 1).sum()), len(subset))
                        for header, subset in zip(headers, subsets)})
            if add_p:
                row['p-value'] = format_pvalue(p)
            rows.append(row)
            continue

        header_row = {'Characteristic': label}
        header_row.update({header: "" for header in headers})
        if add_p:
            header_row['p-value'] = format_pvalue(p)
        rows.append(header_row)

        var_levels = list(series.cat.categories) if isinstance(series.dtype, pd.CategoricalDtype) else sorted(series.dropna().unique())
        for level in var_levels:
            row = {'Characteristic': f"{INDENT}{level}"}
            row.update({header: _n_pct(int((subset[var] == level).sum()), len(subset))
                        for header, subset in zip(headers, subsets)})
            if add_p:
                row['p-value'] = ""
            rows.append(row)

    return pd.DataFrame(rows)


BASELINE_FOOTNOTES = [
    "Mean (SD); n (%)",
    "Wilcoxon rank sum test; Pearson's Chi-squared test; Fisher's exact test",
]


def estimate_frame(estimates: Union[Dict[str, object], Iterable[object]]) -> pd.DataFrame:
    """One row per CausalEstimate: Estimand, Method, Estimate, SE, CI_lower, CI_upper, p_value."""
    values = estimates.values() if isinstance(estimates, dict) else estimates
    return pd.DataFrame([
        {
            'Estimand': est.estimand,
            'Method': est.method,
            'Estimate': est.coefficient,
            'SE': est.std_error,
            'CI_lower': est.ci_lower,
            'CI_upper': est.ci_upper,
            'p_value': est.p_value,
        }
        for est in values
    ])


def write_html_table(
    df: pd.DataFrame,
    path: Union[str, Path],
    title: str,
    subtitle: Optional[str] = None,
    footnotes: Optional[List[str]] = None,
    source_note: Optional[str] = None,
    digits: int = 3
) -> Path:
    """
    Write a table as a self-contained HTML file.

    Args:
        df: Table to write
        path: Output file
        title: Table title
        subtitle: Optional subtitle shown under the title
        footnotes: Optional footnotes shown under the table
        source_note: Optional source note shown last
        digits: Decimal places for float columns

    Returns:
        Path of the written file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    table_html = df.to_html(
        index=False,
        float_format=lambda x: f"{x:.{digits}f}",
        na_rep="NA",
        border=0,
        classes="results"
    )

    parts = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{html.escape(title)}</title>",
        "<style>",
        "body { font-family: sans-serif; margin: 2em; }",
        "table.results { border-collapse: collapse; }",
        "table.results th, table.results td { padding: 4px 12px; border-bottom: 1px solid #ddd; text-align: left; }",
        ".note { color: #555; font-size: 0.9em; }",
        "</style>",
        "</head>",
        "<body>",
        f"<h2>{html.escape(title)}</h2>",
    ]
    if subtitle:
        parts.append(f"<h4>{html.escape(subtitle)}</h4>")
    parts.append(table_html)
    for i, note in enumerate(footnotes or [], start=1):
        parts.append(f'<p class="note"><sup>{i}</sup> {html.escape(note)}</p>')
    if source_note:
        parts.append(f'<p class="note">{html.escape(source_note)}</p>')
    parts.extend(["</body>", "</html>"])

    path.write_text("\n".join(parts), encoding="utf-8")
    logger.info(f"Table saved to {path}")
    return path
