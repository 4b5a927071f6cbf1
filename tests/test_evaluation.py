"""
Test Suite for Evaluation Module
================================

Tests for RMSE and the other prediction error metrics, plots and the
evaluation report.
"""

import json

import pytest
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from statlectures.evaluation import (
    rmse, rmse_manual, rmse_agreement, calculate_metrics, evaluate_model,
    plot_actual_vs_predicted, plot_residuals, plot_posterior_coefficients, plot_rmse_comparison
)
from statlectures.model import BayesianLinearModel


class TestRMSE:
    """Tests for the RMSE functions."""

    def test_known_value(self):
        truth = [1.0, 2.0, 3.0, 4.0]
        pred = [1.0, 3.0, 3.0, 2.0]
        # squared errors 0, 1, 0, 4 -> mean 1.25
        assert rmse_manual(truth, pred) == pytest.approx(np.sqrt(1.25))
        assert rmse(truth, pred) == pytest.approx(np.sqrt(1.25))

    def test_perfect_predictions(self):
        assert rmse([2.0, 5.0], [2.0, 5.0]) == 0.0

    def test_manual_matches_library(self):
        rng = np.random.default_rng(0)
        truth = rng.normal(50, 10, 500)
        pred = truth + rng.normal(0, 3, 500)

        check = rmse_agreement(truth, pred)
        assert check['agree']
        assert check['difference'] < 1e-9
        assert check['manual'] == pytest.approx(check['library'])

    def test_accepts_series(self):
        truth = pd.Series([1.0, 2.0, 3.0])
        pred = pd.Series([2.0, 2.0, 2.0], index=[10, 11, 12])
        assert rmse(truth, pred) == pytest.approx(np.sqrt(2 / 3))

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            rmse([1.0, 2.0], [1.0])

    def test_empty(self):
        with pytest.raises(ValueError):
            rmse_manual([], [])


class TestCalculateMetrics:
    """Tests for calculate_metrics."""

    def test_keys_and_values(self):
        truth = np.array([1.0, 2.0, 3.0, 4.0])
        pred = np.array([1.5, 2.0, 2.5, 5.0])

        metrics = calculate_metrics(truth, pred)

        assert set(metrics) == {'rmse', 'mae', 'rsq', 'mean_error', 'max_error', 'n'}
        assert metrics['mae'] == pytest.approx(0.5)
        assert metrics['mean_error'] == pytest.approx(-0.25)
        assert metrics['max_error'] == pytest.approx(1.0)
        assert metrics['n'] == 4

    def test_single_observation(self):
        metrics = calculate_metrics([3.0], [2.0])
        assert metrics['rmse'] == pytest.approx(1.0)
        assert np.isnan(metrics['rsq'])


class TestPlots:
    """Tests for the evaluation plots."""

    @pytest.fixture
    def fitted(self):
        rng = np.random.default_rng(1)
        df = pd.DataFrame({'x': rng.uniform(0, 5, 100), 'g': rng.choice(['a', 'b'], 100)})
        df['y'] = 1 + df['x'] + rng.normal(0, 0.5, 100)
        return BayesianLinearModel('y ~ x + g', n_draws=300, seed=1).fit(df), df

    def test_actual_vs_predicted(self, tmp_path):
        path = tmp_path / 'avp.png'
        fig = plot_actual_vs_predicted([1, 2, 3], [1.1, 1.9, 3.2], 'y', save_path=str(path))
        assert isinstance(fig, plt.Figure)
        assert path.exists()

    def test_residuals(self):
        fig = plot_residuals(np.arange(20.0), np.arange(20.0) + 0.5)
        assert len(fig.axes) == 2

    def test_posterior_coefficients(self, fitted):
        model, _ = fitted
        fig = plot_posterior_coefficients(model)
        assert isinstance(fig, plt.Figure)

    def test_posterior_intercept_only(self, fitted):
        _, df = fitted
        model = BayesianLinearModel('y ~ 1', n_draws=200, seed=1).fit(df)
        fig = plot_posterior_coefficients(model)
        assert isinstance(fig, plt.Figure)

    def test_rmse_comparison(self):
        fig = plot_rmse_comparison({'training': 1.2, 'testing': 1.5})
        assert len(fig.axes[0].patches) == 2


class TestEvaluateModel:
    """Tests for evaluate_model."""

    def test_outputs(self, tmp_path):
        rng = np.random.default_rng(2)
        df = pd.DataFrame({'x': rng.uniform(0, 5, 120)})
        df['y'] = 2 * df['x'] + rng.normal(0, 1, 120)
        model = BayesianLinearModel('y ~ x', n_draws=300, seed=1).fit(df)

        result = evaluate_model(model, df, output_dir=str(tmp_path), label='test')

        assert result['metrics']['rmse'] == pytest.approx(1.0, abs=0.2)
        assert result['metrics']['rmse_check']['agree']
        assert result['metrics']['formula'] == 'y ~ x'
        assert len(result['figures']) == 3
        for name in result['figures']:
            assert (tmp_path / 'figures' / name).exists()

        with open(result['metrics_file']) as f:
            saved = json.load(f)
        assert saved['n'] == 120

    def test_single_row_writes_valid_json(self, tmp_path):
        """R² is undefined for one row and is saved as null."""
        rng = np.random.default_rng(4)
        df = pd.DataFrame({'x': rng.uniform(0, 5, 60)})
        df['y'] = 1 + df['x'] + rng.normal(0, 1, 60)
        model = BayesianLinearModel('y ~ x', n_draws=200, seed=1).fit(df)

        result = evaluate_model(model, df.head(1), output_dir=str(tmp_path), label='one')

        assert np.isnan(result['metrics']['rsq'])
        text = Path(result['metrics_file']).read_text()
        assert 'NaN' not in text
        saved = json.loads(text)
        assert saved['rsq'] is None
        assert saved['n'] == 1
