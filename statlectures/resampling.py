"""
Resampling Module
=================

Out-of-sample evaluation: a single train/test split, k-fold
cross-validation and model comparison.

Functions:
    - train_test_evaluate: In-sample vs out-of-sample RMSE on one split
    - cross_validate: Per-fold metrics and their average
    - compare_models: Cross-validated RMSE for several formulas
    - plot_fold_metrics: RMSE by fold
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from .evaluation import calculate_metrics
from .model import BayesianLinearModel
from .preprocessing import make_folds, split_data

logger = logging.getLogger(__name__)


def train_test_evaluate(
    df: pd.DataFrame,
    formula: str,
    prop: float = 0.75,
    seed: Optional[int] = None,
    strata: Optional[str] = None,
    model_kwargs: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Fit on a training split and measure error on both splits.

    Training error is usually optimistic; testing error estimates how the
    model does on data it has not seen.

    Args:
        df: Full dataset
        formula: Model formula
        prop: Proportion of rows used for training
        seed: Random seed for the split
        strata: Column to stratify the split on
        model_kwargs: Extra BayesianLinearModel arguments

    Returns:
        Dictionary with train/test sets, the fitted model and metrics for each
    """
    train, test = split_data(df, prop=prop, seed=seed, strata=strata)

    model = BayesianLinearModel(formula, **(model_kwargs or {}))
    model.fit(train)

    train_frame = model.predictions_frame(train)
    test_frame = model.predictions_frame(test)

    result = {
        'train': train,
        'test': test,
        'model': model,
        'train_predictions': train_frame,
        'test_predictions': test_frame,
        'train_metrics': calculate_metrics(train_frame[model.outcome], train_frame['.pred']),
        'test_metrics': calculate_metrics(test_frame[model.outcome], test_frame['.pred'])
    }

    logger.info(
        f"Train RMSE: {result['train_metrics']['rmse']:.4f} | "
        f"Test RMSE: {result['test_metrics']['rmse']:.4f}"
    )
    return result


@dataclass
class CVResult:
    """Per-fold results of a cross-validation run."""

    formula: str
    v: int
    repeats: int
    fold_metrics: pd.DataFrame

    def collect_metrics(self) -> pd.DataFrame:
        """
        Average each metric over folds.

        Returns:
            DataFrame indexed by metric with columns mean, n (folds) and
            std_err (standard deviation / sqrt(n))
        """
        rows = []
        for metric in ('rmse', 'rsq'):
            values = self.fold_metrics[metric].dropna()
            n = len(values)
            std_err = float(values.std(ddof=1) / np.sqrt(n)) if n > 1 else float('nan')
            rows.append({
                'metric': metric,
                'mean': float(values.mean()) if n else float('nan'),
                'n': n,
                'std_err': std_err
            })
        return pd.DataFrame(rows).set_index('metric')

    @property
    def mean_rmse(self) -> float:
        return float(self.collect_metrics().loc['rmse', 'mean'])


def cross_validate(
    df: pd.DataFrame,
    formula: str,
    v: int = 10,
    repeats: int = 1,
    seed: Optional[int] = None,
    model_kwargs: Optional[Dict[str, Any]] = None
) -> CVResult:
    """
    k-fold cross-validation of a formula.

    Each fold is fit on the analysis rows and scored on the held-out
    assessment rows.

    Args:
        df: Full dataset
        formula: Model formula
        v: Number of folds
        repeats: Number of repeated partitions
        seed: Random seed for fold assignment
        model_kwargs: Extra BayesianLinearModel arguments

    Returns:
        CVResult with one row of metrics per fold
    """
    logger.info("=" * 60)
    logger.info(f"CROSS-VALIDATION: {formula} ({v}-fold, {repeats} repeat(s))")
    logger.info("=" * 60)

    folds = make_folds(df, v=v, repeats=repeats, seed=seed)
    records = []

    for fold in folds:
        analysis = df.iloc[fold.train_idx]
        assessment = df.iloc[fold.test_idx]

        model = BayesianLinearModel(formula, **(model_kwargs or {}))
        model.fit(analysis)
        frame = model.predictions_frame(assessment)
        metrics = calculate_metrics(frame[model.outcome], frame['.pred'])

        records.append({
            'fold': fold.fold_id,
            'rmse': metrics['rmse'],
            'rsq': metrics['rsq'],
            'n_analysis': len(analysis),
            'n_assessment': len(assessment)
        })
        logger.debug(f"{fold.fold_id}: RMSE={metrics['rmse']:.4f}")

    result = CVResult(
        formula=formula,
        v=v,
        repeats=repeats,
        fold_metrics=pd.DataFrame(records)
    )

    logger.info(f"Mean CV RMSE: {result.mean_rmse:.4f}")
    return result


def compare_models(
    df: pd.DataFrame,
    formulas: List[str],
    v: int = 10,
    repeats: int = 1,
    seed: Optional[int] = None,
    model_kwargs: Optional[Dict[str, Any]] = None
) -> Tuple[pd.DataFrame, Dict[str, CVResult]]:
    """
    Cross-validate several formulas on identical folds.

    Args:
        df: Full dataset
        formulas: Candidate model formulas
        v: Number of folds
        repeats: Number of repeated partitions
        seed: Random seed (shared, so every formula sees the same folds)
        model_kwargs: Extra BayesianLinearModel arguments

    Returns:
        Tuple of (comparison table sorted by mean RMSE, results by formula)
    """
    if not formulas:
        raise ValueError("Need at least one formula to compare")

    results = {}
    rows = []
    for formula in formulas:
        cv = cross_validate(df, formula, v=v, repeats=repeats, seed=seed,
                            model_kwargs=model_kwargs)
        summary = cv.collect_metrics()
        results[formula] = cv
        rows.append({
            'formula': formula,
            'mean_rmse': summary.loc['rmse', 'mean'],
            'std_err': summary.loc['rmse', 'std_err'],
            'mean_rsq': summary.loc['rsq', 'mean']
        })

    table = pd.DataFrame(rows).sort_values('mean_rmse').reset_index(drop=True)
    logger.info(f"Best model by CV RMSE: {table.loc[0, 'formula']}")
    return table, results


def plot_fold_metrics(
    cv_result: CVResult,
    figsize: Tuple[int, int] = (10, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar chart of RMSE by fold with the cross-validated mean.

    Args:
        cv_result: Result of cross_validate
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    folds = cv_result.fold_metrics
    mean_rmse = cv_result.mean_rmse

    fig, ax = plt.subplots(figsize=figsize)
    x = np.arange(len(folds))
    ax.bar(x, folds['rmse'], 0.7, color='steelblue', alpha=0.8)
    ax.axhline(mean_rmse, color='red', linestyle='--', label=f'Mean: {mean_rmse:.4f}')
    ax.set_xticks(x)
    ax.set_xticklabels(folds['fold'], rotation=45, ha='right', fontsize=8)
    ax.set_ylabel('RMSE')
    ax.set_title(f'Cross-Validation RMSE by Fold\n{cv_result.formula}', fontweight='bold')
    ax.legend()
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Fold metrics plot saved to {save_path}")

    return fig


def print_cv_report(cv_result: CVResult) -> None:
    """
    Print a formatted cross-validation report to console.

    Args:
        cv_result: Result of cross_validate
    """
    summary = cv_result.collect_metrics()

    print("\n" + "=" * 60)
    print("CROSS-VALIDATION REPORT")
    print("=" * 60)
    print(f"Formula: {cv_result.formula}")
    print(f"Folds: {cv_result.v} × {cv_result.repeats} repeat(s)")
    print("-" * 60)
    print(f"{'Fold':<18} {'RMSE':>10} {'R²':>10} {'n':>6}")
    for _, row in cv_result.fold_metrics.iterrows():
        print(f"{row['fold']:<18} {row['rmse']:>10.4f} {row['rsq']:>10.4f} {row['n_assessment']:>6}")
    print("-" * 60)
    for metric, row in summary.iterrows():
        print(f"  • mean {metric}: {row['mean']:.4f} (std err {row['std_err']:.4f})")
    print("=" * 60 + "\n")
