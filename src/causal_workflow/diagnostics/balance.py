"""
Covariate balance diagnostics before and after propensity-score weighting.
"""

import numpy as np
import pandas as pd
from typing import List, Optional
import logging

from .. import config
from ..models.weighting import PS_COL, WEIGHT_COL, effective_sample_size


logger = logging.getLogger(__name__)


def _is_binary(series: pd.Series) -> bool:
    return set(series.dropna().unique()).issubset({0, 1})


def _weighted_variance(x: np.ndarray, w: np.ndarray) -> float:
    """Unbiased weighted variance with reliability weights."""
    w_sum = w.sum()
    mean = np.sum(w * x) / w_sum
    denom = w_sum ** 2 - np.sum(w ** 2)
    if denom <= 0:
        return 0.0
    return float(np.sum(w * (x - mean) ** 2) * w_sum / denom)


class BalanceDiagnostics:
    """
    Covariate balance, effective sample size and a PASS/FAIL summary of weighting diagnostics.

    Continuous covariates are compared with the standardized mean difference, using the pooled
    SD of the unweighted sample for both the unweighted and weighted comparison. Binary
    covariates are compared with the raw difference in proportions.
    """

    def __init__(
        self,
        threshold: float = config.SMD_THRESHOLD,
        max_weight: float = config.MAX_WEIGHT_THRESHOLD,
        ess_ratio: float = config.ESS_RATIO_THRESHOLD
    ):
        self.threshold = threshold
        self.max_weight = max_weight
        self.ess_ratio = ess_ratio

    def _check_columns(self, df: pd.DataFrame, columns: List[str]) -> None:
        missing = [col for col in columns if col not in df.columns]
        if missing:
            raise ValueError(f"The following columns are missing from the DataFrame: {missing}")

    def balance_table(
        self,
        df: pd.DataFrame,
        treatment_col: str = config.TREATMENT_COL,
        covariates: Optional[List[str]] = None,
        weight_col: str = WEIGHT_COL
    ) -> pd.DataFrame:
        """
        Balance of each covariate before and after weighting.

        Returns:
            Columns Variable, Type, SMD_Before, SMD_After, VR_Before, VR_After, Balanced
        """
        covariates = list(covariates or config.COVARIATE_COLS)
        self._check_columns(df, [treatment_col, weight_col] + covariates)

        treated = (df[treatment_col] == 1).to_numpy()
        w = df[weight_col].to_numpy(dtype=float)
        rows = []

        for covariate in covariates:
            x = df[covariate].to_numpy(dtype=float)
            x1, x0 = x[treated], x[~treated]
            w1, w0 = w[treated], w[~treated]
            binary = _is_binary(df[covariate])

            diff_before = x1.mean() - x0.mean()
            diff_after = np.average(x1, weights=w1) - np.average(x0, weights=w0)

            if binary:
                smd_before, smd_after = diff_before, diff_after
                vr_before, vr_after = np.nan, np.nan
            else:
                pooled_sd = np.sqrt((x1.var(ddof=1) + x0.var(ddof=1)) / 2)
                smd_before = diff_before / pooled_sd if pooled_sd > 0 else 0.0
                smd_after = diff_after / pooled_sd if pooled_sd > 0 else 0.0
                vr_before = x1.var(ddof=1) / x0.var(ddof=1) if x0.var(ddof=1) > 0 else np.nan
                v0_after = _weighted_variance(x0, w0)
                vr_after = _weighted_variance(x1, w1) / v0_after if v0_after > 0 else np.nan

            rows.append({
                'Variable': covariate,
                'Type': "Binary" if binary else "Continuous",
                'SMD_Before': float(smd_before),
                'SMD_After': float(smd_after),
                'VR_Before': float(vr_before),
                'VR_After': float(vr_after),
                'Balanced': bool(abs(smd_after) < self.threshold),
            })

        table = pd.DataFrame(rows)
        logger.info(f"Balance: {table['Balanced'].sum()} of {len(table)} covariates with |SMD| < {self.threshold}")
        return table

    def unweighted_balance(
        self,
        df: pd.DataFrame,
        treatment_col: str = config.TREATMENT_COL,
        covariates: Optional[List[str]] = None
    ) -> pd.DataFrame:
        """Arm means and SMD before weighting."""
        covariates = list(covariates or config.COVARIATE_COLS)
        self._check_columns(df, [treatment_col] + covariates)

        treated = df[treatment_col] == 1
        rows = []
        for covariate in covariates:
            x1, x0 = df.loc[treated, covariate], df.loc[~treated, covariate]
            if _is_binary(df[covariate]):
                smd = x1.mean() - x0.mean()
            else:
                pooled_sd = np.sqrt((x1.var() + x0.var()) / 2)
                smd = (x1.mean() - x0.mean()) / pooled_sd if pooled_sd > 0 else 0.0
            rows.append({
                'Variable': covariate,
                'Mean_Treated': float(x1.mean()),
                'Mean_Control': float(x0.mean()),
                'SMD': float(smd),
            })

        return pd.DataFrame(rows)

    def ess_table(
        self,
        df: pd.DataFrame,
        treatment_col: str = config.TREATMENT_COL,
        weight_col: str = WEIGHT_COL
    ) -> pd.DataFrame:
        """Original and effective sample size per arm and overall."""
        self._check_columns(df, [treatment_col, weight_col])

        groups = [
            ("Control", df[treatment_col] == 0),
            ("Treatment", df[treatment_col] == 1),
            ("Total", pd.Series(True, index=df.index)),
        ]
        rows = []
        for name, mask in groups:
            n = int(mask.sum())
            ess = effective_sample_size(df.loc[mask, weight_col]) if n else 0.0
            rows.append({
                'Group': name,
                'Original N': n,
                'Effective N': ess,
                'ESS Ratio': ess / n if n else np.nan,
            })

        return pd.DataFrame(rows)

    def diagnostics_summary(
        self,
        balance: pd.DataFrame,
        df: pd.DataFrame,
        treatment_col: str = config.TREATMENT_COL,
        weight_col: str = WEIGHT_COL,
        ps_col: str = PS_COL
    ) -> pd.DataFrame:
        """
        Four PASS/FAIL checks: covariate balance, propensity score overlap, maximum weight and
        minimum ESS ratio.

        Args:
            balance: Output of balance_table
            df: Weighted observation table with propensity scores

        Returns:
            Columns Check, Value, Status
        """
        self._check_columns(df, [treatment_col, weight_col, ps_col])

        max_smd = float(balance['SMD_After'].abs().max())

        treated = df[treatment_col] == 1
        ps_treated, ps_control = df.loc[treated, ps_col], df.loc[~treated, ps_col]
        overlap = (ps_treated.min() < ps_control.max()) and (ps_treated.max() > ps_control.min())

        max_weight = float(df[weight_col].max())

        ess = self.ess_table(df, treatment_col, weight_col)
        min_ess_ratio = float(ess.loc[ess['Group'] != "Total", 'ESS Ratio'].min())

        checks = [
            (f"All SMD < {self.threshold}", f"Max |SMD| = {max_smd:.3f}", max_smd < self.threshold),
            ("Propensity score overlap",
             f"Treated [{ps_treated.min():.3f}, {ps_treated.max():.3f}], "
             f"Control [{ps_control.min():.3f}, {ps_control.max():.3f}]",
             overlap),
            (f"Max weight < {self.max_weight:g}", f"{max_weight:.2f}", max_weight < self.max_weight),
            (f"Min ESS ratio > {self.ess_ratio:.0%}", f"{min_ess_ratio:.1%}", min_ess_ratio > self.ess_ratio),
        ]

        summary = pd.DataFrame(
            [{'Check': check, 'Value': value, 'Status': "PASS" if passed else "FAIL"}
             for check, value, passed in checks]
        )
        for record in summary.itertuples(index=False):
            logger.info(f"{record.Check}: {record.Status} ({record.Value})")
        return summary
