"""
Prediction Module
=================

Predictions for new observations from a fitted Bayesian model.

Features:
    - Posterior predictive summaries (mean, median, credible interval)
    - Export predictions to CSV
    - Prediction report generation
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime

import numpy as np
import pandas as pd

from .model import BayesianLinearModel

logger = logging.getLogger(__name__)


def posterior_predictive_summary(
    model: BayesianLinearModel,
    new_data: pd.DataFrame,
    level: float = 0.95,
    seed: Optional[int] = None
) -> pd.DataFrame:
    """
    Summarize posterior predictive draws for each new row.

    The interval covers a single new observation, so it includes residual
    noise and is wider than the interval for the expected value.

    Args:
        model: Fitted model
        new_data: Rows to predict
        level: Interval width
        seed: Random seed for the predictive draws

    Returns:
        ``new_data`` with ``.pred``, ``median``, ``lower`` and ``upper`` columns added
    """
    if not 0 < level < 1:
        raise ValueError(f"level must be between 0 and 1, got {level}")

    draws = model.posterior_predict(new_data, seed=seed)
    tail = (1 - level) / 2

    result = new_data.copy()
    result['.pred'] = draws.mean(axis=0)
    result['median'] = np.median(draws, axis=0)
    result['lower'] = np.quantile(draws, tail, axis=0)
    result['upper'] = np.quantile(draws, 1 - tail, axis=0)
    return result


def export_predictions(
    frame: pd.DataFrame,
    output_dir: str,
    name: str = "predictions",
    include_timestamp: bool = True
) -> str:
    """
    Export predictions to CSV file.

    Args:
        frame: Predictions from posterior_predictive_summary
        output_dir: Directory to save the file
        name: File name stem
        include_timestamp: Whether to add timestamp to filename

    Returns:
        Path to the saved file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if include_timestamp:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"{name}_{timestamp}.csv"
    else:
        filename = f"{name}.csv"

    filepath = output_dir / filename
    frame.to_csv(filepath, index=False)

    logger.info(f"Predictions exported to {filepath}")
    return str(filepath)


def generate_prediction_report(
    frame: pd.DataFrame,
    model: BayesianLinearModel,
    metrics: Optional[Dict[str, Any]] = None,
    level: float = 0.95,
    output_path: Optional[str] = None
) -> Dict[str, Any]:
    """
    Generate a prediction report.

    Args:
        frame: Predictions from posterior_predictive_summary
        model: Model that produced the predictions
        metrics: Evaluation metrics to attach (optional)
        level: Interval width used for the predictions
        output_path: Path to save the report (optional)

    Returns:
        Report dictionary
    """
    report = {
        'generated_at': datetime.now().isoformat(),
        'formula': str(model.builder.formula),
        'interval_level': level,
        'predictions': [],
        'summary': {
            'n_predictions': int(len(frame))
        }
    }

    for i, row in frame.reset_index(drop=True).iterrows():
        report['predictions'].append({
            'row': int(i),
            'prediction': float(row['.pred']),
            'median': float(row['median']),
            'lower_bound': float(row['lower']),
            'upper_bound': float(row['upper'])
        })

    if metrics:
        report['historical_rmse'] = metrics.get('rmse')

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w') as f:
            json.dump(report, f, indent=2)
        logger.info(f"Prediction report saved to {output_path}")

    return report


def run_prediction(
    model: BayesianLinearModel,
    new_data: pd.DataFrame,
    config: Dict[str, Any],
    metrics: Optional[Dict[str, Any]] = None,
    name: str = "predictions"
) -> Dict[str, Any]:
    """
    Predict new observations and write the CSV and JSON outputs.

    Args:
        model: Fitted model
        new_data: Rows to predict
        config: Configuration dictionary
        metrics: Evaluation metrics to attach to the report
        name: File name stem

    Returns:
        Dictionary containing the predictions frame and file paths
    """
    logger.info("=" * 60)
    logger.info(f"PREDICTING {len(new_data)} NEW OBSERVATION(S)")
    logger.info("=" * 60)

    output_dir = config.get('output', {}).get('predictions_path', 'data/predictions/')
    level = config.get('model', {}).get('credible_level', 0.95)

    frame = posterior_predictive_summary(model, new_data, level=level)
    csv_path = export_predictions(frame, output_dir, name=name)

    report_path = Path(output_dir) / f"{name}_report.json"
    report = generate_prediction_report(
        frame, model, metrics, level=level, output_path=str(report_path)
    )

    logger.info("=" * 60)
    logger.info("PREDICTION COMPLETE")
    logger.info(f"  Output: {csv_path}")
    logger.info("=" * 60)

    return {
        'predictions': frame,
        'level': level,
        'csv_path': csv_path,
        'report_path': str(report_path),
        'report': report
    }


def print_prediction_results(result: Dict[str, Any]) -> None:
    """
    Print formatted prediction results to console.

    Args:
        result: Result dictionary from run_prediction
    """
    frame = result['predictions']
    pct = f"{result['level']:.0%}"

    print("\n" + "=" * 60)
    print("PREDICTION RESULTS")
    print("=" * 60)
    print(f"{'Row':<6} {'Prediction':>12} {pct + ' Lower':>12} {pct + ' Upper':>12}")
    print("-" * 60)
    for i, row in frame.reset_index(drop=True).iterrows():
        print(f"{i:<6} {row['.pred']:>12.3f} {row['lower']:>12.3f} {row['upper']:>12.3f}")
    print("-" * 60)
    print(f"\nPredictions exported to: {result['csv_path']}")
    print(f"Full report saved to: {result['report_path']}")
    print("=" * 60 + "\n")
