"""
Lectures Module
===============

The lecture documents. Each lecture is a linear narrative (load data,
filter, fit, interpret, predict, measure error, plot) that produces a
LectureReport.

Lectures:
    - regression: Bayesian linear regression on the elections data
    - validation: Train/test splits and cross-validation on the survey data
"""

import copy
import logging
from pathlib import Path
from typing import Callable, Dict, Any, List, Optional, Tuple

import pandas as pd

from .data_loader import load_data, filter_data, validate_data
from .eda import plot_scatter_fit, plot_group_box
from .evaluation import (
    calculate_metrics, rmse_agreement, plot_actual_vs_predicted, plot_residuals,
    plot_posterior_coefficients, plot_rmse_comparison
)
from .model import BayesianLinearModel, model_kwargs_from_config
from .prediction import posterior_predictive_summary
from .preprocessing import parse_formula
from .report import LectureReport
from .resampling import train_test_evaluate, cross_validate, compare_models, plot_fold_metrics

logger = logging.getLogger(__name__)

DEFAULT_LECTURES: Dict[str, Dict[str, Any]] = {
    'regression': {
        'title': 'Bayesian Linear Regression',
        'dataset': 'elections',
        'query': "party != 'Third party'",
        'columns': ['lived_after', 'election_age', 'sex', 'party', 'won'],
        'simple_formula': 'lived_after ~ election_age',
        'formula': 'lived_after ~ election_age + sex + won + election_age:sex',
    },
    'validation': {
        'title': 'Training, Testing and Cross-Validation',
        'dataset': 'survey',
        'query': None,
        'columns': ['att_end', 'att_start', 'treatment', 'liberal', 'party', 'age', 'income'],
        'formula': 'att_end ~ att_start + treatment',
        'candidates': [
            'att_end ~ 1',
            'att_end ~ att_start',
            'att_end ~ att_start + treatment',
            'att_end ~ att_start + treatment + liberal',
            'att_end ~ att_start*treatment + liberal + party + age + income',
        ],
    },
}


def lecture_settings(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """
    Merge a lecture's defaults with the ``lectures.<name>`` config section.

    Raises:
        KeyError: If the lecture is unknown
    """
    if name not in DEFAULT_LECTURES:
        raise KeyError(f"Unknown lecture: {name}. Choose from: {', '.join(list_lectures())}")

    settings = copy.deepcopy(DEFAULT_LECTURES[name])
    settings.update((config.get('lectures', {}) or {}).get(name, {}) or {})
    return settings


def dataset_settings(config: Dict[str, Any], dataset: str) -> Optional[Dict[str, Any]]:
    """Settings of the first lecture built on ``dataset``, or None if no lecture uses it."""
    for name in list_lectures():
        settings = lecture_settings(config, name)
        if settings['dataset'] == dataset:
            return settings
    return None


def _load_filtered(settings: Dict[str, Any], config: Dict[str, Any]) -> Tuple[pd.DataFrame, pd.DataFrame]:
    raw_path = (config.get('data') or {}).get('raw_path', 'data/raw/')
    raw = load_data(settings['dataset'], raw_dir=raw_path)
    df = filter_data(raw, query=settings.get('query'), columns=settings.get('columns'))
    validate_data(df, required_columns=settings.get('columns'), strict=False)
    return raw, df


def _scenarios(model: BayesianLinearModel, df: pd.DataFrame) -> pd.DataFrame:
    """New observations for prediction: vary one predictor, hold the rest at typical values."""
    builder = model.builder
    variables = builder.formula.variables

    base = {}
    for var in variables:
        if var in builder.numeric:
            base[var] = float(df[var].median())
        else:
            base[var] = builder.reference_level(var)

    categorical = [v for v in variables if v not in builder.numeric]
    if categorical:
        var = categorical[0]
        rows = [dict(base, **{var: level}) for level in builder.levels[var]]
    elif variables:
        var = variables[0]
        rows = [dict(base, **{var: float(df[var].quantile(q))}) for q in (0.1, 0.5, 0.9)]
    else:
        rows = [{}]

    return pd.DataFrame(rows, columns=variables)


def regression_lecture(config: Dict[str, Any]) -> Tuple[LectureReport, Dict[str, Any]]:
    """
    Fit and interpret Bayesian linear regressions, then measure their error.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (report, headline metrics)
    """
    settings = lecture_settings(config, 'regression')
    model_kwargs = model_kwargs_from_config(config)
    report = LectureReport(settings['title'], author=config.get('author'))
    metrics: Dict[str, Any] = {}

    # Data
    raw, df = _load_filtered(settings, config)
    simple = parse_formula(settings['simple_formula'])
    full = parse_formula(settings['formula'])
    outcome = full.outcome

    report.add_heading('The data')
    report.add_text(
        f"We work with the `{settings['dataset']}` dataset: {len(raw)} rows and "
        f"{raw.shape[1]} columns. Each row is one candidate for governor. The outcome, "
        f"`{outcome}`, is the number of years the candidate lived after the election."
    )
    report.add_code(
        f"raw = load_data('{settings['dataset']}')\n"
        f"df = filter_data(raw, query={settings.get('query')!r}, columns={settings.get('columns')!r})"
    )
    report.add_text(
        f"After filtering, {len(df)} rows remain. A quick look at the first few:"
    )
    report.add_table(df.head(8), caption='First rows of the filtered data', index=False)

    predictor = simple.variables[0] if simple.variables else None
    if predictor is not None:
        report.add_figure(
            plot_scatter_fit(df, predictor, outcome),
            caption=f'{outcome} against {predictor}, with a least-squares line'
        )
    categorical = [v for v in full.variables if not pd.api.types.is_numeric_dtype(df[v])
                   or pd.api.types.is_bool_dtype(df[v])]
    if categorical:
        report.add_figure(
            plot_group_box(df, categorical[0], outcome),
            caption=f'{outcome} by {categorical[0]}'
        )

    # Intercept-only model
    report.add_heading('The simplest model')
    report.add_text(
        f"Before adding predictors, fit `{outcome} ~ 1`. The only parameter besides sigma is "
        f"the intercept, and its posterior describes our uncertainty about the average "
        f"`{outcome}`."
    )
    null_model = BayesianLinearModel(f"{outcome} ~ 1", **model_kwargs).fit(df)
    report.add_table(null_model.coefficients(), caption='Posterior summary: median, MAD_SD and interval')
    report.add_text(' '.join(null_model.interpret_coefficients()))

    # One predictor
    report.add_heading('One predictor')
    simple_model = BayesianLinearModel(str(simple), **model_kwargs).fit(df)
    report.add_code(f"fit_1 = BayesianLinearModel('{simple}').fit(df)\nfit_1.coefficients()")
    report.add_table(simple_model.coefficients(), caption='Posterior summary for the one-predictor model')
    for sentence in simple_model.interpret_coefficients():
        report.add_text(sentence)
    report.add_figure(
        plot_posterior_coefficients(simple_model),
        caption='Posterior draws of the slope'
    )

    # Several predictors and an interaction
    report.add_heading('Several predictors and an interaction')
    report.add_text(
        f"Now fit `{full}`. Categorical predictors are compared with their reference "
        f"level, and an interaction term lets the slope of one variable depend on another."
    )
    full_model = BayesianLinearModel(str(full), **model_kwargs).fit(df)
    report.add_table(full_model.coefficients(), caption='Posterior summary for the full model')
    for sentence in full_model.interpret_coefficients():
        report.add_text(sentence)
    report.add_figure(
        plot_posterior_coefficients(full_model),
        caption='Posterior draws of each coefficient'
    )

    # Prediction error
    report.add_heading('How good are the predictions?')
    frame = full_model.predictions_frame(df)
    report.add_text(
        "Pair every observed outcome with the model's prediction. The residual is the "
        "observed value minus the prediction."
    )
    report.add_table(frame.head(8), caption='Truth, prediction and residual')

    check = rmse_agreement(frame[outcome], frame['.pred'])
    report.add_text(
        "The root mean squared error squares each residual, takes the mean, and takes the "
        "square root, which puts the error back on the scale of the outcome."
    )
    report.add_code(
        f"np.sqrt(np.mean((frame['{outcome}'] - frame['.pred']) ** 2))\n"
        f"np.sqrt(mean_squared_error(frame['{outcome}'], frame['.pred']))"
    )
    report.add_metrics(
        {'RMSE by hand': check['manual'], 'RMSE from scikit-learn': check['library'],
         'agree': check['agree']},
        caption='The same number, computed two ways'
    )

    in_sample = {
        f"{outcome} ~ 1": calculate_metrics(df[outcome], null_model.predict(df))['rmse'],
        str(simple): calculate_metrics(df[outcome], simple_model.predict(df))['rmse'],
        str(full): check['library'],
    }
    report.add_figure(
        plot_rmse_comparison(in_sample, title='In-sample RMSE by model'),
        caption='Adding predictors never increases in-sample error, which is why we will need held-out data'
    )
    report.add_figure(
        plot_actual_vs_predicted(frame[outcome], frame['.pred'], outcome),
        caption='Observed vs predicted'
    )
    report.add_figure(
        plot_residuals(frame[outcome], frame['.pred'], outcome),
        caption='Residual diagnostics'
    )

    # New observations
    report.add_heading('Predicting new candidates')
    level = model_kwargs['credible_level']
    scenarios = _scenarios(full_model, df)
    predicted = posterior_predictive_summary(full_model, scenarios, level=level)
    report.add_text(
        f"The posterior predictive distribution includes both parameter uncertainty and "
        f"the individual variation measured by sigma, so these {level:.0%} intervals are wide."
    )
    report.add_table(predicted, caption='Posterior predictions for hypothetical candidates', index=False)

    metrics['n_rows'] = int(len(df))
    metrics['rmse'] = check['library']
    metrics['rmse_manual'] = check['manual']
    metrics['rmse_agree'] = check['agree']
    metrics['in_sample_rmse'] = in_sample
    return report, metrics


def validation_lecture(config: Dict[str, Any]) -> Tuple[LectureReport, Dict[str, Any]]:
    """
    Estimate out-of-sample error with a train/test split and cross-validation.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (report, headline metrics)
    """
    settings = lecture_settings(config, 'validation')
    model_kwargs = model_kwargs_from_config(config)
    split_config = config.get('split', {}) or {}
    cv_config = config.get('cross_validation', {}) or {}
    prop = split_config.get('prop', 0.75)
    v = cv_config.get('v', 10)
    repeats = cv_config.get('repeats', 1)

    report = LectureReport(settings['title'], author=config.get('author'))
    metrics: Dict[str, Any] = {}

    raw, df = _load_filtered(settings, config)
    formula = parse_formula(settings['formula'])
    outcome = formula.outcome

    report.add_heading('The data')
    report.add_text(
        f"The `{settings['dataset']}` dataset has {len(raw)} respondents. `{outcome}` is the "
        f"attitude toward immigration measured after the experiment, on a 3 to 15 scale."
    )
    report.add_table(df.head(8), caption='First rows', index=False)

    # Train/test
    report.add_heading('Training and testing')
    report.add_text(
        f"Error measured on the data used to fit a model is optimistic. Hold out "
        f"{1 - prop:.0%} of the rows, fit on the remaining {prop:.0%}, and measure the error "
        f"on the rows the model never saw."
    )
    report.add_code(
        f"train, test = split_data(df, prop={prop}, seed={split_config.get('seed')})"
    )
    tt = train_test_evaluate(
        df, str(formula), prop=prop, seed=split_config.get('seed'),
        strata=split_config.get('strata'), model_kwargs=model_kwargs
    )
    report.add_metrics({
        'training rows': len(tt['train']),
        'testing rows': len(tt['test']),
        'training RMSE': tt['train_metrics']['rmse'],
        'testing RMSE': tt['test_metrics']['rmse'],
    }, caption=f'Fitting `{formula}` on the training set')
    report.add_table(tt['model'].coefficients(), caption='Posterior summary, training fit')
    report.add_figure(
        plot_rmse_comparison(
            {'training': tt['train_metrics']['rmse'], 'testing': tt['test_metrics']['rmse']},
            title='Training vs testing RMSE'
        ),
        caption='Out-of-sample error is the honest estimate'
    )

    # Cross-validation
    report.add_heading('Cross-validation')
    report.add_text(
        f"A single split depends on which rows happened to land in the test set. "
        f"{v}-fold cross-validation splits the data into {v} folds, holds each one out in "
        f"turn, and averages the {v} error estimates."
    )
    cv = cross_validate(df, str(formula), v=v, repeats=repeats,
                        seed=cv_config.get('seed'), model_kwargs=model_kwargs)
    report.add_table(cv.fold_metrics, caption='Metrics for each fold', index=False)
    summary = cv.collect_metrics()
    report.add_table(summary, caption='Averaged over folds (std_err = sd / sqrt(folds))')
    report.add_figure(plot_fold_metrics(cv), caption='RMSE by fold')

    # Model comparison
    report.add_heading('Choosing between models')
    candidates: List[str] = settings.get('candidates') or [str(formula)]
    table, _ = compare_models(df, candidates, v=v, repeats=repeats,
                              seed=cv_config.get('seed'), model_kwargs=model_kwargs)
    report.add_text(
        "Every candidate is scored on the same folds, so the comparison is fair. Prefer the "
        "lowest cross-validated RMSE, and prefer the simpler model when the difference is "
        "within a standard error."
    )
    report.add_table(table, caption='Cross-validated RMSE by model', index=False)
    report.add_figure(
        plot_rmse_comparison(dict(zip(table['formula'], table['mean_rmse'])),
                             title='Cross-validated RMSE by model'),
        caption='Lower is better'
    )
    best = table.loc[0, 'formula']
    report.add_text(f"The lowest cross-validated error belongs to `{best}`.")

    metrics['n_rows'] = int(len(df))
    metrics['train_rmse'] = tt['train_metrics']['rmse']
    metrics['test_rmse'] = tt['test_metrics']['rmse']
    metrics['cv_rmse'] = float(summary.loc['rmse', 'mean'])
    metrics['cv_rmse_std_err'] = float(summary.loc['rmse', 'std_err'])
    metrics['best_formula'] = best
    return report, metrics


LECTURES: Dict[str, Callable[[Dict[str, Any]], Tuple[LectureReport, Dict[str, Any]]]] = {
    'regression': regression_lecture,
    'validation': validation_lecture,
}


def list_lectures() -> List[str]:
    """Names of the available lectures."""
    return sorted(LECTURES)


def run_lecture(name: str, config: Dict[str, Any], output_dir: Optional[str] = None) -> Dict[str, Any]:
    """
    Run a lecture and render its HTML report.

    Args:
        name: Lecture name (see list_lectures)
        config: Configuration dictionary
        output_dir: Directory for the HTML file (default: ``output.reports_path``)

    Returns:
        Dictionary with the lecture name, report path and headline metrics

    Raises:
        KeyError: If the lecture is unknown
    """
    if name not in LECTURES:
        raise KeyError(f"Unknown lecture: {name}. Choose from: {', '.join(list_lectures())}")

    output_dir = output_dir or config.get('output', {}).get('reports_path', 'reports/')

    logger.info("=" * 60)
    logger.info(f"RENDERING LECTURE: {name}")
    logger.info("=" * 60)

    report, metrics = LECTURES[name](config)
    path = report.save(str(Path(output_dir) / f"{name}.html"))

    return {
        'name': name,
        'path': str(path),
        'metrics': metrics
    }
