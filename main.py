#!/usr/bin/env python3
"""
Statistics Lectures - Command Line Runner
=========================================

Renders the lecture documents to HTML, or runs a single stage of the
modeling workflow on a dataset.

Stages:
    1. EDA - Exploratory plots
    2. Fit - Bayesian linear regression
    3. Evaluate - RMSE and diagnostics
    4. CV - k-fold cross-validation
    5. Predict - Posterior predictions for new rows
    6. Report - Render the lectures (same as --lecture)

Usage:
    # Render every lecture
    python main.py --lecture all

    # Render one lecture with a custom config
    python main.py --lecture regression --config config/config.yaml

    # Run one stage on a dataset
    python main.py --phase cv --data survey
"""

import argparse
import copy
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

# Add the repository root to the path
sys.path.insert(0, str(Path(__file__).parent))

from statlectures.data_loader import load_config, load_data, filter_data, validate_data, print_data_summary
from statlectures.eda import generate_eda_report
from statlectures.evaluation import evaluate_model, print_evaluation_report
from statlectures.lectures import dataset_settings, list_lectures, run_lecture
from statlectures.model import BayesianLinearModel, model_kwargs_from_config, train_model, print_model_summary
from statlectures.prediction import run_prediction, print_prediction_results
from statlectures.preprocessing import parse_formula, split_data
from statlectures.resampling import cross_validate, plot_fold_metrics, print_cv_report

PHASES = ['eda', 'fit', 'evaluate', 'cv', 'predict', 'report']


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure logging for the runner."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def resolve_phase_config(config: Dict[str, Any], data: Optional[str] = None) -> Dict[str, Any]:
    """
    Match the data and model sections of the config to the dataset being loaded.

    The configured query, columns and formula belong to ``data.dataset``. When
    --data names another packaged dataset, the settings of the lecture built on
    it are used instead; any other source is loaded unfiltered.

    Returns:
        A copy of config
    """
    config = copy.deepcopy(config)
    data_config = config.get('data') or {}
    model_config = config.get('model') or {}
    configured = data_config.get('dataset', 'elections')

    if data is not None and data != configured:
        data_config.update({'dataset': data, 'query': None, 'columns': None})
        settings = dataset_settings(config, data)
        if settings is not None:
            data_config.update({'query': settings.get('query'), 'columns': settings.get('columns')})
            model_config['formula'] = settings['formula']
            logging.info(f"Using lecture settings for '{data}': {settings['formula']}")

    config['data'] = data_config
    config['model'] = model_config
    return config


def load_phase_data(config: Dict[str, Any], data: Optional[str] = None) -> pd.DataFrame:
    """Load and filter the dataset named on the command line or in the config."""
    data_config = config.get('data') or {}
    source = data or data_config.get('dataset', 'elections')

    df = load_data(source, raw_dir=data_config.get('raw_path', 'data/raw/'))
    df = filter_data(df, query=data_config.get('query'), columns=data_config.get('columns'))
    print_data_summary(df)

    is_valid, _ = validate_data(df, strict=False)
    if not is_valid:
        print("⚠️  Data validation warnings detected. Proceeding anyway...")
    return df


def run_eda(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    print("\n" + "=" * 70)
    print("STAGE 1: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    formula = parse_formula(config['model']['formula'])
    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')
    report = generate_eda_report(df, formula.outcome, formula.variables, output_dir=output_dir)

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")
    return report


def run_fit(df: pd.DataFrame, config: Dict[str, Any]) -> BayesianLinearModel:
    print("\n" + "=" * 70)
    print("STAGE 2: MODEL FITTING")
    print("=" * 70)

    model_path = config.get('output', {}).get('model_path', 'models/model.joblib')
    model = train_model(df, config, save_path=model_path)

    print_model_summary(model)
    for sentence in model.interpret_coefficients():
        print(f"  • {sentence}")
    return model


def run_evaluation(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fit on a training split and evaluate on the held-out rows.
    """
    print("\n" + "=" * 70)
    print("STAGE 3: MODEL EVALUATION")
    print("=" * 70)

    split_config = config.get('split', {}) or {}
    train, test = split_data(
        df,
        prop=split_config.get('prop', 0.75),
        seed=split_config.get('seed'),
        strata=split_config.get('strata')
    )
    model = run_fit(train, config)

    output_dir = config.get('output', {}).get('reports_path', 'reports/')
    result = evaluate_model(model, test, output_dir=output_dir, label='test')
    print_evaluation_report(result['metrics'])

    result['model'] = model
    return result


def run_cv(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    print("\n" + "=" * 70)
    print("STAGE 4: CROSS-VALIDATION")
    print("=" * 70)

    cv_config = config.get('cross_validation', {}) or {}
    cv = cross_validate(
        df,
        config['model']['formula'],
        v=cv_config.get('v', 10),
        repeats=cv_config.get('repeats', 1),
        seed=cv_config.get('seed'),
        model_kwargs=model_kwargs_from_config(config)
    )
    print_cv_report(cv)

    figures_dir = Path(config.get('output', {}).get('figures_path', 'reports/figures/'))
    figures_dir.mkdir(parents=True, exist_ok=True)
    plot_fold_metrics(cv, save_path=str(figures_dir / "cv_fold_rmse.png"))

    return {'cv': cv, 'summary': cv.collect_metrics()}


def run_predict(df: pd.DataFrame, config: Dict[str, Any], new_data: Optional[str] = None) -> Dict[str, Any]:
    """
    Predict new rows from a CSV, or the held-out test rows when none is given.
    """
    evaluation = run_evaluation(df, config)

    print("\n" + "=" * 70)
    print("STAGE 5: PREDICTION")
    print("=" * 70)

    if new_data:
        rows = load_data(new_data)
    else:
        split_config = config.get('split', {}) or {}
        _, rows = split_data(df, prop=split_config.get('prop', 0.75), seed=split_config.get('seed'),
                             strata=split_config.get('strata'))

    result = run_prediction(evaluation['model'], rows, config, metrics=evaluation['metrics'])
    print_prediction_results(result)
    return result


def run_single_phase(
    phase: str,
    config: Dict[str, Any],
    data: Optional[str] = None,
    new_data: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute a single stage of the workflow.

    Args:
        phase: Stage to run ('eda', 'fit', 'evaluate', 'cv', 'predict')
        config: Configuration dictionary
        data: Dataset name, CSV path or URL (default: config data.dataset)
        new_data: CSV of rows to predict (predict stage only)

    Returns:
        Stage result dictionary
    """
    config = resolve_phase_config(config, data)
    if not config['model'].get('formula'):
        raise ValueError("config['model']['formula'] is required to run a single stage")

    df = load_phase_data(config, data)

    if phase == 'eda':
        return run_eda(df, config)

    elif phase == 'fit':
        return {'model': run_fit(df, config)}

    elif phase == 'evaluate':
        return run_evaluation(df, config)

    elif phase == 'cv':
        return run_cv(df, config)

    elif phase == 'predict':
        return run_predict(df, config, new_data)

    else:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")


def run_lectures(names, config: Dict[str, Any], output_dir: Optional[str] = None) -> Dict[str, Any]:
    print("\n" + "=" * 70)
    print("STATISTICS LECTURES")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    results = {}
    for name in names:
        results[name] = run_lecture(name, config, output_dir=output_dir)
        print(f"  • {name}: {results[name]['path']}")

    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")
    return results


def main(argv=None):
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Render statistics lecture documents or run a modeling stage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --lecture all
  python main.py --lecture validation --output site/
  python main.py --phase fit --data elections
  python main.py --phase predict --data survey --new-data data/new_rows.csv
        """
    )

    parser.add_argument(
        '--lecture', '-l',
        type=str,
        choices=list_lectures() + ['all'],
        default=None,
        help='Lecture to render (default: all, unless --phase is given)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES,
        default=None,
        help='Run a single stage (report renders the lectures)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        default=None,
        help='Dataset name, CSV path or URL for --phase (default: config data.dataset)'
    )

    parser.add_argument(
        '--new-data',
        type=str,
        default=None,
        help='CSV of rows to predict with --phase predict'
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        default=None,
        help='Directory for rendered lectures and stage reports (default: config output.reports_path)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args(argv)

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    try:
        config = load_config(args.config)
        log_config = config.get('logging', {}) or {}
        level = 'DEBUG' if args.verbose else log_config.get('level', 'INFO')
        setup_logging(level, log_config.get('file'))

        if args.output:
            output_config = config.get('output') or {}
            output_config['reports_path'] = args.output
            output_config['figures_path'] = str(Path(args.output) / 'figures')
            config['output'] = output_config

        if args.phase and args.phase != 'report':
            run_single_phase(args.phase, config, args.data, args.new_data)
        else:
            lecture = args.lecture or 'all'
            names = list_lectures() if lecture == 'all' else [lecture]
            run_lectures(names, config, output_dir=args.output)

        return 0

    except Exception as e:
        logging.error(f"Run failed: {e}", exc_info=True)
        print(f"\n❌ Run failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
