"""
Model Evaluation Module
=======================

Prediction error metrics and diagnostic plots.

Features:
    - RMSE computed by hand and by scikit-learn, with an agreement check
    - MAE, R² and error summaries
    - Actual vs Predicted and residual plots
    - Posterior coefficient plots
    - RMSE comparison bar charts
    - Evaluation report generation
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from .model import BayesianLinearModel, SIGMA

logger = logging.getLogger(__name__)


def _as_arrays(truth, pred) -> Tuple[np.ndarray, np.ndarray]:
    truth = np.asarray(truth, dtype=float).ravel()
    pred = np.asarray(pred, dtype=float).ravel()
    if len(truth) == 0:
        raise ValueError("Cannot compute metrics on empty input")
    if len(truth) != len(pred):
        raise ValueError(
            f"truth and pred must have the same length, got {len(truth)} and {len(pred)}"
        )
    return truth, pred


def rmse_manual(truth, pred) -> float:
    """
    Root mean squared error from first principles.

    Square the differences, take the mean, take the square root.
    """
    truth, pred = _as_arrays(truth, pred)
    return float(np.sqrt(np.mean((truth - pred) ** 2)))


def rmse(truth, pred) -> float:
    """Root mean squared error via scikit-learn."""
    truth, pred = _as_arrays(truth, pred)
    return float(np.sqrt(mean_squared_error(truth, pred)))


def rmse_agreement(truth, pred, tol: float = 1e-9) -> Dict[str, Any]:
    """
    Compare the hand-computed RMSE with the library RMSE.

    Args:
        truth: Observed outcomes
        pred: Predictions
        tol: Absolute tolerance

    Returns:
        Dictionary with both values, their difference and whether they agree
    """
    manual = rmse_manual(truth, pred)
    library = rmse(truth, pred)
    difference = abs(manual - library)
    agree = bool(difference <= tol)

    if not agree:
        logger.warning(f"RMSE mismatch: manual={manual:.10f}, library={library:.10f}")

    return {
        'manual': manual,
        'library': library,
        'difference': difference,
        'agree': agree
    }


def _json_ready(value):
    # JSON has no NaN; numpy scalars are not serializable
    if isinstance(value, dict):
        return {key: _json_ready(item) for key, item in value.items()}
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not np.isfinite(value):
        return None
    return value


def calculate_metrics(truth, pred) -> Dict[str, Any]:
    """
    Calculate evaluation metrics for a single outcome.

    Args:
        truth: Ground truth values
        pred: Predicted values

    Returns:
        Dictionary with rmse, mae, rsq, mean_error, max_error and n
    """
    truth, pred = _as_arrays(truth, pred)
    errors = truth - pred

    # r2_score is undefined for a single observation
    rsq = float(r2_score(truth, pred)) if len(truth) > 1 else float('nan')

    return {
        'rmse': rmse(truth, pred),
        'mae': float(mean_absolute_error(truth, pred)),
        'rsq': rsq,
        'mean_error': float(np.mean(errors)),
        'max_error': float(np.max(np.abs(errors))),
        'n': int(len(truth))
    }


def plot_actual_vs_predicted(
    truth,
    pred,
    outcome: str = 'outcome',
    figsize: Tuple[int, int] = (7, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter of predictions against observed values.

    Args:
        truth: Ground truth values
        pred: Predicted values
        outcome: Outcome name for labels
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    truth, pred = _as_arrays(truth, pred)

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(truth, pred, alpha=0.5, s=20)

    # Perfect prediction line
    min_val = min(truth.min(), pred.min())
    max_val = max(truth.max(), pred.max())
    ax.plot([min_val, max_val], [min_val, max_val], 'r--', linewidth=2, label='Perfect')

    ax.set_xlabel(f'Observed {outcome}')
    ax.set_ylabel(f'Predicted {outcome}')
    ax.set_title(f'Observed vs Predicted\nRMSE={rmse(truth, pred):.3f}',
                 fontsize=12, fontweight='bold')
    ax.legend(loc='upper left', fontsize=8)
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def plot_residuals(
    truth,
    pred,
    outcome: str = 'outcome',
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Residuals against fitted values, and the residual distribution.

    Args:
        truth: Ground truth values
        pred: Predicted values
        outcome: Outcome name for labels
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    truth, pred = _as_arrays(truth, pred)
    residuals = truth - pred

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    axes[0].scatter(pred, residuals, alpha=0.5, s=20)
    axes[0].axhline(0, color='red', linestyle='--', linewidth=2)
    axes[0].set_xlabel(f'Fitted {outcome}')
    axes[0].set_ylabel('Residual (Observed - Predicted)')
    axes[0].set_title('Residuals vs Fitted', fontweight='bold')

    sns.histplot(residuals, kde=len(residuals) > 1, ax=axes[1], bins=40, alpha=0.7)
    axes[1].axvline(0, color='red', linestyle='--', linewidth=2, label='Zero')
    axes[1].axvline(np.mean(residuals), color='green', linestyle='--',
                    linewidth=2, label=f'Mean: {np.mean(residuals):.3f}')
    axes[1].set_xlabel('Residual')
    axes[1].set_title(f'Residual Distribution (Std: {np.std(residuals):.3f})', fontweight='bold')
    axes[1].legend(fontsize=8)

    fig.suptitle('Residual Analysis', fontsize=14, fontweight='bold')
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residuals plot saved to {save_path}")

    return fig


def plot_posterior_coefficients(
    model: BayesianLinearModel,
    include_intercept: bool = False,
    figsize: Tuple[int, int] = (9, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Posterior distributions of the coefficients.

    Args:
        model: Fitted model
        include_intercept: Also plot the intercept
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    draws = model.posterior_draws().drop(columns=[SIGMA])
    if not include_intercept:
        draws = draws.drop(columns=[c for c in draws.columns if c == '(Intercept)'])
    if draws.shape[1] == 0:
        draws = model.posterior_draws()[[SIGMA]]

    long = draws.melt(var_name='term', value_name='value')

    fig, ax = plt.subplots(figsize=figsize)
    sns.histplot(data=long, x='value', hue='term', element='step', stat='density',
                 common_norm=False, bins=60, alpha=0.4, ax=ax)
    ax.axvline(0, color='gray', linestyle=':', alpha=0.7)
    ax.set_xlabel('Coefficient value')
    ax.set_ylabel('Density')
    ax.set_title(f'Posterior Distributions\n{model.builder.formula}', fontweight='bold')
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Posterior coefficient plot saved to {save_path}")

    return fig


def plot_rmse_comparison(
    values: Dict[str, float],
    title: str = 'RMSE Comparison',
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar chart of RMSE values, e.g. training vs testing or competing models.

    Args:
        values: Mapping of label to RMSE
        title: Plot title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    labels = list(values.keys())
    heights = [values[label] for label in labels]

    fig, ax = plt.subplots(figsize=figsize)
    x = np.arange(len(labels))
    ax.bar(x, heights, 0.6, color='steelblue', alpha=0.8)
    for xi, h in zip(x, heights):
        ax.text(xi, h, f'{h:.3f}', ha='center', va='bottom', fontsize=9)

    ax.set_ylabel('RMSE')
    ax.set_xticks(x)
    ax.set_xticklabels(labels, rotation=30, ha='right')
    ax.set_title(title, fontweight='bold')
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"RMSE comparison plot saved to {save_path}")

    return fig


def evaluate_model(
    model: BayesianLinearModel,
    df: pd.DataFrame,
    output_dir: str = "reports/",
    label: str = "eval",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Run model evaluation on a dataset and write metrics and figures.

    Args:
        model: Fitted model
        df: Data with the outcome column
        output_dir: Directory for output files
        label: Prefix for output file names
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing metrics, the predictions frame and file paths
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info(f"STARTING MODEL EVALUATION ({label})")
    logger.info("=" * 60)

    frame = model.predictions_frame(df)
    truth = frame[model.outcome].to_numpy()
    pred = frame['.pred'].to_numpy()

    metrics = calculate_metrics(truth, pred)
    metrics['rmse_check'] = rmse_agreement(truth, pred)
    metrics['formula'] = str(model.builder.formula)

    metrics_file = metrics_dir / f"{label}_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump(_json_ready(metrics), f, indent=2, allow_nan=False)
    logger.info(f"Metrics saved to {metrics_file}")

    figures = []

    logger.info("Generating Actual vs Predicted plot...")
    plot_actual_vs_predicted(
        truth, pred, model.outcome,
        save_path=str(figures_dir / f"{label}_actual_vs_predicted.png")
    )
    figures.append(f"{label}_actual_vs_predicted.png")

    logger.info("Generating residual analysis...")
    plot_residuals(
        truth, pred, model.outcome,
        save_path=str(figures_dir / f"{label}_residuals.png")
    )
    figures.append(f"{label}_residuals.png")

    logger.info("Generating posterior coefficient plot...")
    plot_posterior_coefficients(
        model,
        save_path=str(figures_dir / f"{label}_posterior.png")
    )
    figures.append(f"{label}_posterior.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    logger.info(f"  RMSE: {metrics['rmse']:.6f}")
    logger.info(f"  MAE: {metrics['mae']:.6f}")
    logger.info(f"  R²: {metrics['rsq']:.6f}")
    logger.info("=" * 60)

    return {
        'metrics': metrics,
        'predictions': frame,
        'figures': figures,
        'metrics_file': str(metrics_file)
    }


def print_evaluation_report(metrics: Dict[str, Any]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Metrics dictionary from calculate_metrics or evaluate_model
    """
    print("\n" + "=" * 60)
    print("MODEL EVALUATION REPORT")
    print("=" * 60)
    if 'formula' in metrics:
        print(f"Formula: {metrics['formula']}")
    print(f"  • RMSE: {metrics['rmse']:.6f}")
    print(f"  • MAE: {metrics['mae']:.6f}")
    print(f"  • R²: {metrics['rsq']:.6f}")
    print(f"  • Mean error: {metrics['mean_error']:.6f}")
    print(f"  • Max |error|: {metrics['max_error']:.6f}")
    print(f"  • Observations: {metrics['n']}")

    check = metrics.get('rmse_check')
    if check:
        status = "✓ agree" if check['agree'] else "✗ disagree"
        print(f"\nRMSE by hand: {check['manual']:.6f} | scikit-learn: {check['library']:.6f} ({status})")

    print("=" * 60 + "\n")
