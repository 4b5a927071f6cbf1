"""
Exploratory Data Analysis (EDA) Module
======================================

Plots used in the lectures before any model is fit.

Functions:
    - plot_scatter_fit: Scatter plot with a least-squares line
    - plot_distributions: Histograms for numeric columns
    - plot_group_box: Outcome by category
    - plot_correlation_matrix: Correlation heatmap
    - generate_eda_report: All of the above for an outcome and its predictors
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def plot_scatter_fit(
    df: pd.DataFrame,
    x: str,
    y: str,
    hue: Optional[str] = None,
    figsize: Tuple[int, int] = (8, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter plot of y against x with a fitted line per group.

    Args:
        df: Data
        x: Predictor column
        y: Outcome column
        hue: Optional grouping column; one line per level
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    if hue is None:
        sns.regplot(data=df, x=x, y=y, ax=ax, ci=None,
                    scatter_kws={'alpha': 0.4, 's': 15}, line_kws={'color': 'red'})
    else:
        for level, group in df.groupby(hue):
            sns.regplot(data=group, x=x, y=y, ax=ax, ci=None, label=str(level),
                        scatter_kws={'alpha': 0.4, 's': 15})
        ax.legend(title=hue, fontsize=8)

    ax.set_title(f'{y} vs {x}', fontsize=12, fontweight='bold')
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Scatter plot saved to {save_path}")

    return fig


def plot_distributions(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    figsize: Tuple[int, int] = (12, 8),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create distribution plots (histogram + KDE) for numeric columns.

    Args:
        df: DataFrame with numerical data
        columns: Columns to plot (default: all numeric)
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        columns = df.select_dtypes(include=[np.number]).columns.tolist()
    if not columns:
        raise ValueError("No numeric columns to plot")

    n_rows = (len(columns) + 1) // 2
    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for idx, col in enumerate(columns):
        ax = axes[idx]
        sns.histplot(df[col], kde=True, ax=ax, bins=40, alpha=0.7)

        mean_val = df[col].mean()
        median_val = df[col].median()
        ax.axvline(mean_val, color='red', linestyle='--', label=f'Mean: {mean_val:.2f}')
        ax.axvline(median_val, color='green', linestyle='--', label=f'Median: {median_val:.2f}')
        ax.set_title(col, fontsize=10, fontweight='bold')
        ax.legend(fontsize=8)

    # Hide unused subplots
    for idx in range(len(columns), len(axes)):
        axes[idx].set_visible(False)

    fig.suptitle('Distribution Analysis', fontsize=14, fontweight='bold')
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Distribution plots saved to {save_path}")

    return fig


def plot_group_box(
    df: pd.DataFrame,
    x: str,
    y: str,
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Box plots of a numeric outcome for each level of a category.

    Args:
        df: Data
        x: Categorical column
        y: Numeric column
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)
    sns.boxplot(data=df, x=x, y=y, ax=ax)
    ax.set_title(f'{y} by {x}', fontsize=12, fontweight='bold')
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Box plot saved to {save_path}")

    return fig


def plot_correlation_matrix(
    df: pd.DataFrame,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (8, 6),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Create a correlation heatmap for all numerical columns.

    Args:
        df: DataFrame with numerical data
        method: Correlation method ('pearson', 'spearman', 'kendall')
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    corr_matrix = df.select_dtypes(include=[np.number]).corr(method=method)

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)
    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=True,
        fmt='.2f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Correlation Matrix ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def generate_eda_report(
    df: pd.DataFrame,
    outcome: str,
    predictors: List[str],
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate the exploratory plots for an outcome and its predictors.

    Numeric predictors get a scatter plot with a fitted line, categorical
    predictors a box plot.

    Args:
        df: DataFrame to analyze
        outcome: Outcome column
        predictors: Predictor columns
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing EDA results and file paths
    """
    missing = [col for col in [outcome] + list(predictors) if col not in df.columns]
    if missing:
        raise KeyError(f"Columns not found in data: {missing}")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "outcome": outcome,
        "figures": [],
        "correlation_matrix": None,
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    numeric = [c for c in [outcome] + list(predictors)
               if pd.api.types.is_numeric_dtype(df[c]) and not pd.api.types.is_bool_dtype(df[c])]

    if numeric:
        logger.info("Plotting distributions...")
        plot_distributions(df, columns=numeric, save_path=str(output_dir / "eda_distributions.png"))
        report["figures"].append("eda_distributions.png")
    else:
        logger.warning("No numeric columns; skipping distribution plots")

    if outcome not in numeric:
        logger.warning(f"Outcome '{outcome}' is not numeric; skipping predictor plots")
        predictors = []

    for pred in predictors:
        if pred in numeric:
            name = f"eda_scatter_{pred}.png"
            plot_scatter_fit(df, pred, outcome, save_path=str(output_dir / name))
        else:
            name = f"eda_box_{pred}.png"
            plot_group_box(df, pred, outcome, save_path=str(output_dir / name))
        report["figures"].append(name)

    if len(numeric) > 1:
        logger.info("Computing correlation matrix...")
        _, corr_matrix = plot_correlation_matrix(
            df[numeric], save_path=str(output_dir / "eda_correlation_matrix.png")
        )
        report["figures"].append("eda_correlation_matrix.png")
        report["correlation_matrix"] = corr_matrix.to_dict()

    for col in numeric:
        report["statistics"][col] = {
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "max": float(df[col].max())
        }

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report
