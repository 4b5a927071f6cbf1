"""
Test Suite for Resampling Module
================================

Tests for train/test evaluation, cross-validation and model comparison.
"""

import pytest
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from statlectures.resampling import (
    CVResult, train_test_evaluate, cross_validate, compare_models, plot_fold_metrics, print_cv_report
)

MODEL_KWARGS = {'n_draws': 200, 'seed': 1}


@pytest.fixture
def sample_data():
    """y depends on x and treatment; noise is unrelated to anything."""
    rng = np.random.default_rng(11)
    n = 300
    x = rng.uniform(3, 15, n)
    treatment = rng.choice(['Control', 'Treated'], n)
    noise_col = rng.normal(0, 1, n)
    y = 1 + 0.9 * x + 1.5 * (treatment == 'Treated') + rng.normal(0, 1, n)
    return pd.DataFrame({'y': y, 'x': x, 'treatment': treatment, 'junk': noise_col})


class TestTrainTestEvaluate:
    """Tests for train_test_evaluate."""

    def test_result(self, sample_data):
        result = train_test_evaluate(sample_data, 'y ~ x + treatment', prop=0.75, seed=4,
                                     model_kwargs=MODEL_KWARGS)

        assert len(result['train']) == 225
        assert len(result['test']) == 75
        assert result['train_metrics']['n'] == 225
        assert result['test_metrics']['n'] == 75
        assert result['model'].n_obs_ == 225
        assert result['test_metrics']['rmse'] == pytest.approx(1.0, abs=0.3)
        assert list(result['test_predictions'].index) == list(result['test'].index)


class TestCrossValidate:
    """Tests for cross_validate and CVResult."""

    def test_fold_metrics(self, sample_data):
        cv = cross_validate(sample_data, 'y ~ x + treatment', v=5, seed=2, model_kwargs=MODEL_KWARGS)

        assert isinstance(cv, CVResult)
        assert list(cv.fold_metrics.columns) == ['fold', 'rmse', 'rsq', 'n_analysis', 'n_assessment']
        assert len(cv.fold_metrics) == 5
        assert cv.fold_metrics['n_assessment'].sum() == 300
        assert (cv.fold_metrics['n_analysis'] == 240).all()

    def test_collect_metrics(self, sample_data):
        cv = cross_validate(sample_data, 'y ~ x + treatment', v=5, seed=2, model_kwargs=MODEL_KWARGS)
        summary = cv.collect_metrics()

        assert list(summary.index) == ['rmse', 'rsq']
        assert list(summary.columns) == ['mean', 'n', 'std_err']
        rmses = cv.fold_metrics['rmse']
        assert summary.loc['rmse', 'mean'] == pytest.approx(rmses.mean())
        assert summary.loc['rmse', 'std_err'] == pytest.approx(rmses.std(ddof=1) / np.sqrt(5))
        assert summary.loc['rmse', 'n'] == 5
        assert cv.mean_rmse == pytest.approx(rmses.mean())

    def test_repeated(self, sample_data):
        cv = cross_validate(sample_data, 'y ~ x', v=4, repeats=3, seed=2, model_kwargs=MODEL_KWARGS)

        assert len(cv.fold_metrics) == 12
        assert cv.collect_metrics().loc['rmse', 'n'] == 12
        assert cv.fold_metrics['fold'].iloc[-1] == 'Repeat3_Fold04'

    def test_reproducible(self, sample_data):
        first = cross_validate(sample_data, 'y ~ x', v=5, seed=8, model_kwargs=MODEL_KWARGS)
        second = cross_validate(sample_data, 'y ~ x', v=5, seed=8, model_kwargs=MODEL_KWARGS)
        pd.testing.assert_frame_equal(first.fold_metrics, second.fold_metrics)

    def test_plot_and_print(self, sample_data, capsys):
        cv = cross_validate(sample_data, 'y ~ x', v=5, seed=8, model_kwargs=MODEL_KWARGS)

        fig = plot_fold_metrics(cv)
        assert isinstance(fig, plt.Figure)

        print_cv_report(cv)
        assert 'CROSS-VALIDATION REPORT' in capsys.readouterr().out


class TestCompareModels:
    """Tests for compare_models."""

    def test_ranks_true_model_first(self, sample_data):
        formulas = ['y ~ 1', 'y ~ junk', 'y ~ x + treatment']
        table, results = compare_models(sample_data, formulas, v=5, seed=3, model_kwargs=MODEL_KWARGS)

        assert list(table.columns) == ['formula', 'mean_rmse', 'std_err', 'mean_rsq']
        assert table.loc[0, 'formula'] == 'y ~ x + treatment'
        assert table['mean_rmse'].is_monotonic_increasing
        assert set(results) == set(formulas)

    def test_same_folds_for_every_formula(self, sample_data):
        _, results = compare_models(sample_data, ['y ~ x', 'y ~ x + treatment'], v=5, seed=3,
                                    model_kwargs=MODEL_KWARGS)
        sizes = [list(cv.fold_metrics['n_assessment']) for cv in results.values()]
        assert sizes[0] == sizes[1]

    def test_empty(self, sample_data):
        with pytest.raises(ValueError):
            compare_models(sample_data, [])
