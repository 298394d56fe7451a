"""
Visualization module for the causal inference workflow.
"""

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import seaborn as sns
import networkx as nx
import pandas as pd
import numpy as np
from typing import Dict, List, Tuple, Optional, Union
import logging
from pathlib import Path

from lifelines import KaplanMeierFitter
from lifelines.plotting import add_at_risk_counts

from .. import config
from ..models.causal_models import CausalEstimate


logger = logging.getLogger(__name__)


class CausalVisualization:
    """Creates the charts of the workflow: forest plots, survival curves and balance diagnostics."""

    def __init__(self, figsize: Tuple[int, int] = (10, 6), base_size: int = config.BASE_FONT_SIZE):
        """
        Initialize visualization settings.

        Args:
            figsize: Default figure size
            base_size: Base font size for text elements
        """
        plt.style.use('default')
        sns.set_style("ticks")
        plt.rcParams.update({
            'font.size': base_size,
            'axes.titlesize': base_size + 2,
            'axes.titleweight': 'bold',
            'axes.labelsize': base_size,
            'axes.spines.top': False,
            'axes.spines.right': False,
            'legend.fontsize': base_size - 2,
            'legend.frameon': False,
        })
        self.figsize = figsize
        self.colors = dict(config.COLORS)
        self.group_colors = {
            'Control': self.colors['control'],
            'Treatment': self.colors['treatment'],
        }

    def _finish(self, fig: plt.Figure, save_path: Optional[Union[str, Path]], name: str) -> plt.Figure:
        fig.tight_layout()
        if save_path:
            Path(save_path).parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(save_path, dpi=config.FIGURE_DPI, bbox_inches='tight')
            logger.info(f"{name} saved to {save_path}")
        plt.close(fig)
        return fig

    def plot_forest(
        self,
        estimates: Dict[str, CausalEstimate],
        reference: float = 0.0,
        title: str = "Treatment Effect Estimate",
        xlabel: str = "Estimate (95% CI)",
        caption: Optional[str] = None,
        color: Optional[str] = None,
        save_path: Optional[Union[str, Path]] = None
    ) -> plt.Figure:
        """
        Forest plot of estimates with 95% confidence intervals.

        Args:
            estimates: Mapping of row labels to estimates
            reference: Null value drawn as a dashed line (0 for differences, 1 for ratios)
            title: Plot title
            xlabel: Axis label
            caption: Optional caption under the plot
            color: Point colour
            save_path: Path to save the figure

        Returns:
            The closed figure
        """
        fig, ax = plt.subplots(figsize=(self.figsize[0], 1.2 * len(estimates) + 3))

        labels = list(estimates.keys())
        coefficients = np.array([est.coefficient for est in estimates.values()])
        ci_lower = np.array([est.ci_lower for est in estimates.values()])
        ci_upper = np.array([est.ci_upper for est in estimates.values()])

        y_pos = np.arange(len(labels))[::-1]

        ax.errorbar(coefficients, y_pos, xerr=[coefficients - ci_lower, ci_upper - coefficients],
                    fmt='o', markersize=10, capsize=6, capthick=2, linewidth=2,
                    color=color or self.colors['primary'], ecolor=self.colors['dark_gray'])

        ax.axvline(x=reference, color=self.colors['neutral'], linestyle='--', alpha=0.7)

        for y, est in zip(y_pos, estimates.values()):
            ax.annotate(f"{est.coefficient:.2f} ({est.ci_lower:.2f}, {est.ci_upper:.2f})",
                        (est.coefficient, y), textcoords="offset points", xytext=(0, 12),
                        ha='center', fontsize=config.BASE_FONT_SIZE - 4)

        ax.set_yticks(y_pos)
        ax.set_yticklabels(labels)
        ax.set_ylim(-0.8, len(labels) - 0.2)
        ax.set_xlabel(xlabel)
        ax.set_title(title)
        ax.grid(True, axis='x', alpha=0.3)

        if caption:
            fig.text(0.99, 0.01, caption, ha='right', va='bottom', fontsize=config.BASE_FONT_SIZE - 4)

        return self._finish(fig, save_path, "Forest plot")

    def plot_km_curves(
        self,
        fitters: Dict[str, KaplanMeierFitter],
        t0: Optional[float] = None,
        title: str = "Kaplan-Meier Survival Curves",
        subtitle: Optional[str] = None,
        caption: Optional[str] = None,
        show_ci: bool = True,
        at_risk: bool = True,
        save_path: Optional[Union[str, Path]] = None
    ) -> plt.Figure:
        """
        Kaplan-Meier curves with confidence bands, an at-risk table and an optional t0 marker.

        Args:
            fitters: Mapping of group label to fitted KaplanMeierFitter
            t0: Time horizon marked with a vertical dashed line
            title: Plot title
            subtitle: Optional subtitle
            caption: Optional caption
            show_ci: Draw confidence bands
            at_risk: Add a number-at-risk table below the axis
            save_path: Path to save the figure

        Returns:
            The closed figure
        """
        fig, ax = plt.subplots(figsize=(self.figsize[0], self.figsize[1] + 2))

        for label, kmf in fitters.items():
            kmf.plot_survival_function(ax=ax, ci_show=show_ci, color=self.group_colors.get(label),
                                       linewidth=2)

        if t0 is not None:
            ax.axvline(x=t0, color=self.colors['neutral'], linestyle='--', alpha=0.8)
            ax.text(t0, 0.02, f" t = {t0:g}", color=self.colors['dark_gray'], fontsize=config.BASE_FONT_SIZE - 4)

        ax.set_ylim(0, 1.02)
        ax.set_xlabel("Time (days)")
        ax.set_ylabel("Survival Probability")
        ax.set_title(f"{title}\n{subtitle}" if subtitle else title)
        ax.legend(title=None, loc='lower left')

        if at_risk:
            add_at_risk_counts(*fitters.values(), ax=ax, rows_to_show=['At risk'])

        if caption:
            fig.text(0.99, 0.01, caption, ha='right', va='bottom', fontsize=config.BASE_FONT_SIZE - 4)

        return self._finish(fig, save_path, "Kaplan-Meier plot")

    def plot_weighted_km(
        self,
        fitters: Dict[str, KaplanMeierFitter],
        title: str = "IPW-Weighted Kaplan-Meier Curves",
        subtitle: Optional[str] = None,
        save_path: Optional[Union[str, Path]] = None
    ) -> plt.Figure:
        """Weighted Kaplan-Meier step curves without confidence bands."""
        fig, ax = plt.subplots(figsize=self.figsize)

        for label, kmf in fitters.items():
            curve = kmf.survival_function_
            ax.step(curve.index, curve[label], where='post', linewidth=2,
                    color=self.group_colors.get(label), label=label)

        ax.set_ylim(0, 1.02)
        ax.set_xlabel("Time (days)")
        ax.set_ylabel("Survival Probability (weighted)")
        ax.set_title(f"{title}\n{subtitle}" if subtitle else title)
        ax.legend(loc='lower left')

        return self._finish(fig, save_path, "Weighted Kaplan-Meier plot")

    def plot_survival_bar(
        self,
        est: pd.DataFrame,
        t0: float,
        title: Optional[str] = None,
        save_path: Optional[Union[str, Path]] = None
    ) -> plt.Figure:
        """
        Bar plot of arm-specific survival at t0 with 95% error bars.

        Args:
            est: Frame indexed by arm label with Survival and SE columns
            t0: Time horizon
            title: Plot title
            save_path: Path to save the figure
        """
        fig, ax = plt.subplots(figsize=(8, 6))

        labels = list(est.index)
        colors = [self.colors['control'] if label.startswith("Control") else self.colors['treatment']
                  for label in labels]
        errors = 1.96 * est['SE'].to_numpy()

        bars = ax.bar(labels, est['Survival'], yerr=errors, capsize=8, color=colors,
                      edgecolor=self.colors['dark_gray'], alpha=0.9)
        for bar, value in zip(bars, est['Survival']):
            ax.text(bar.get_x() + bar.get_width() / 2, value / 2, f"{value:.1%}",
                    ha='center', va='center', color='white', fontweight='bold')

        ax.set_ylim(0, 1)
        ax.set_ylabel(f"Survival probability at t = {t0:g}")
        ax.set_title(title or f"TMLE Survival at t = {t0:g} days")

        return self._finish(fig, save_path, "Survival bar plot")

    def plot_love(
        self,
        balance: pd.DataFrame,
        labels: Optional[Dict[str, str]] = None,
        threshold: float = config.SMD_THRESHOLD,
        save_path: Optional[Union[str, Path]] = None
    ) -> plt.Figure:
        """
        Love plot of absolute SMD before and after weighting.

        Args:
            balance: Output of BalanceDiagnostics.balance_table
            labels: Display labels for variables
            threshold: Balance threshold drawn as a dashed line
            save_path: Path to save the figure
        """
        labels = labels or {}
        data = balance.assign(
            before=balance['SMD_Before'].abs(),
            after=balance['SMD_After'].abs(),
            label=balance['Variable'].map(lambda v: labels.get(v, v))
        ).sort_values('before').reset_index(drop=True)

        fig, ax = plt.subplots(figsize=(self.figsize[0], 0.7 * len(data) + 3))
        y_pos = np.arange(len(data))

        for y, row in zip(y_pos, data.itertuples(index=False)):
            ax.annotate("", xy=(row.after, y), xytext=(row.before, y),
                        arrowprops=dict(arrowstyle='->', color=self.colors['neutral'], lw=1.5))

        ax.scatter(data['before'], y_pos, s=120, color=self.colors['control'], label='Unweighted', zorder=3)
        ax.scatter(data['after'], y_pos, s=120, color=self.colors['treatment'], label='Weighted', zorder=3)

        ax.axvline(x=0, color='black', linewidth=1, alpha=0.5)
        ax.axvline(x=threshold, color='black', linestyle='--', alpha=0.5)

        ax.set_yticks(y_pos)
        ax.set_yticklabels(data['label'])
        ax.set_xlim(left=-0.02)
        ax.set_xlabel("Absolute Standardized Mean Difference")
        ax.set_title("Covariate Balance: Before vs After Weighting")
        ax.legend(loc='lower right')

        return self._finish(fig, save_path, "Love plot")

    def plot_ps_overlap(
        self,
        df: pd.DataFrame,
        ps_col: str = "ps",
        treatment_col: str = config.TREATMENT_COL,
        save_path: Optional[Union[str, Path]] = None
    ) -> plt.Figure:
        """Propensity score densities by arm with a rug of the individual scores."""
        fig, ax = plt.subplots(figsize=self.figsize)

        for value, label in ((0, 'Control'), (1, 'Treatment')):
            scores = df.loc[df[treatment_col] == value, ps_col]
            sns.kdeplot(scores, ax=ax, fill=True, alpha=0.4, color=self.group_colors[label],
                        label=label, clip=(0, 1))
            sns.rugplot(scores, ax=ax, color=self.group_colors[label], alpha=0.3, height=0.03)

        ax.set_xlim(0, 1)
        ax.set_xlabel("Propensity Score")
        ax.set_ylabel("Density")
        ax.set_title("Propensity Score Overlap")
        ax.legend(loc='upper right')

        return self._finish(fig, save_path, "Propensity score overlap plot")

    def plot_weight_distribution(
        self,
        df: pd.DataFrame,
        weight_col: str = "ipw",
        bins: int = 50,
        save_path: Optional[Union[str, Path]] = None
    ) -> plt.Figure:
        """Histogram of the weights with a line at the mean weight."""
        if not isinstance(bins, int) or bins <= 0:
            raise ValueError("bins must be a positive integer.")

        fig, ax = plt.subplots(figsize=self.figsize)
        weights = df[weight_col]

        ax.hist(weights, bins=bins, color=self.colors['primary'], alpha=0.8, edgecolor='white')
        ax.axvline(x=weights.mean(), color=self.colors['control'], linestyle='--', linewidth=2,
                   label=f"Mean = {weights.mean():.2f}")

        ax.set_xlabel("IPW Weight")
        ax.set_ylabel("Count")
        ax.set_title("Distribution of IPW Weights")
        ax.legend(loc='upper right')

        return self._finish(fig, save_path, "Weight distribution plot")

    def plot_causal_dag(
        self,
        confounders: Optional[List[str]] = None,
        treatment: str = "Treatment",
        outcome: str = "Outcome",
        save_path: Optional[Union[str, Path]] = None
    ) -> plt.Figure:
        """
        Directed acyclic graph of the teaching example: baseline confounders affect both treatment and outcome.

        Args:
            confounders: Confounder node names
            treatment: Treatment node name
            outcome: Outcome node name
            save_path: Path to save the figure
        """
        confounders = confounders or ["Age", "Sex", "Comorbidity", "Severity"]

        G = nx.DiGraph()
        spacing = 3.0 / max(len(confounders) - 1, 1)
        for i, node in enumerate(confounders):
            G.add_node(node, pos=(i * spacing * 1.3, 2))
        G.add_node(treatment, pos=(0, 0))
        G.add_node(outcome, pos=(4, 0))

        for node in confounders:
            G.add_edge(node, treatment)
            G.add_edge(node, outcome)
        G.add_edge(treatment, outcome)

        fig, ax = plt.subplots(figsize=(12, 7))
        pos = nx.get_node_attributes(G, 'pos')

        nx.draw_networkx_nodes(G, pos, nodelist=confounders, node_color=self.colors['neutral'],
                               node_size=3500, alpha=0.9, ax=ax)
        nx.draw_networkx_nodes(G, pos, nodelist=[treatment], node_color=self.colors['treatment'],
                               node_size=3500, alpha=0.9, ax=ax)
        nx.draw_networkx_nodes(G, pos, nodelist=[outcome], node_color=self.colors['control'],
                               node_size=3500, alpha=0.9, ax=ax)
        nx.draw_networkx_edges(G, pos, edge_color=self.colors['dark_gray'],
                               arrows=True, arrowsize=20, node_size=3500, alpha=0.7, ax=ax)
        nx.draw_networkx_labels(G, pos, font_size=10, font_weight='bold', ax=ax)

        ax.set_title("Causal Directed Acyclic Graph (DAG)")
        ax.axis('off')

        legend_elements = [
            plt.Line2D([0], [0], marker='o', color='w', markerfacecolor=self.colors['neutral'],
                       markersize=15, label='Confounders'),
            plt.Line2D([0], [0], marker='o', color='w', markerfacecolor=self.colors['treatment'],
                       markersize=15, label='Treatment'),
            plt.Line2D([0], [0], marker='o', color='w', markerfacecolor=self.colors['control'],
                       markersize=15, label='Outcome')
        ]
        ax.legend(handles=legend_elements, loc='upper right')

        return self._finish(fig, save_path, "Causal DAG")
