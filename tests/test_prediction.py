"""
Test Suite for Prediction Module
================================

Tests for posterior predictive summaries and prediction outputs.
"""

import json

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from statlectures.model import BayesianLinearModel
from statlectures.prediction import (
    posterior_predictive_summary, export_predictions, generate_prediction_report,
    run_prediction, print_prediction_results
)


@pytest.fixture
def fitted_model():
    rng = np.random.default_rng(5)
    n = 200
    df = pd.DataFrame({'x': rng.uniform(0, 10, n), 'party': rng.choice(['D', 'R'], n)})
    df['y'] = 3 + 1.5 * df['x'] + 2 * (df['party'] == 'R') + rng.normal(0, 2, n)
    return BayesianLinearModel('y ~ x + party', n_draws=1000, seed=1).fit(df)


@pytest.fixture
def new_data():
    return pd.DataFrame({'x': [1.0, 5.0, 9.0], 'party': ['D', 'R', 'D']})


class TestPosteriorPredictiveSummary:
    """Tests for posterior_predictive_summary."""

    def test_columns(self, fitted_model, new_data):
        frame = posterior_predictive_summary(fitted_model, new_data, seed=1)

        assert list(frame.columns) == ['x', 'party', '.pred', 'median', 'lower', 'upper']
        assert len(frame) == 3
        assert (frame['lower'] < frame['median']).all()
        assert (frame['median'] < frame['upper']).all()

    def test_centered_on_linear_predictor(self, fitted_model, new_data):
        frame = posterior_predictive_summary(fitted_model, new_data, seed=1)
        np.testing.assert_allclose(frame['.pred'], fitted_model.predict(new_data), atol=0.5)

    def test_interval_includes_noise(self, fitted_model, new_data):
        """A 95% predictive interval spans roughly four residual standard deviations."""
        frame = posterior_predictive_summary(fitted_model, new_data, level=0.95, seed=1)
        width = frame['upper'] - frame['lower']
        assert (width > 6).all()
        assert (width < 10).all()

    def test_level(self, fitted_model, new_data):
        wide = posterior_predictive_summary(fitted_model, new_data, level=0.95, seed=1)
        narrow = posterior_predictive_summary(fitted_model, new_data, level=0.5, seed=1)
        assert ((narrow['upper'] - narrow['lower']) < (wide['upper'] - wide['lower'])).all()

        with pytest.raises(ValueError):
            posterior_predictive_summary(fitted_model, new_data, level=1.5)

    def test_input_not_modified(self, fitted_model, new_data):
        posterior_predictive_summary(fitted_model, new_data)
        assert list(new_data.columns) == ['x', 'party']


class TestPredictionOutputs:
    """Tests for export, report and run_prediction."""

    def test_export(self, fitted_model, new_data, tmp_path):
        frame = posterior_predictive_summary(fitted_model, new_data, seed=1)
        path = export_predictions(frame, str(tmp_path), name='preds', include_timestamp=False)

        assert path.endswith('preds.csv')
        assert len(pd.read_csv(path)) == 3

    def test_report(self, fitted_model, new_data, tmp_path):
        frame = posterior_predictive_summary(fitted_model, new_data, seed=1)
        path = tmp_path / 'report.json'

        report = generate_prediction_report(frame, fitted_model, {'rmse': 2.1}, output_path=str(path))

        assert report['formula'] == 'y ~ x + party'
        assert report['summary']['n_predictions'] == 3
        assert report['historical_rmse'] == 2.1
        assert len(report['predictions']) == 3
        with open(path) as f:
            assert json.load(f)['interval_level'] == 0.95

    def test_run_prediction(self, fitted_model, new_data, tmp_path, capsys):
        config = {
            'model': {'credible_level': 0.9},
            'output': {'predictions_path': str(tmp_path / 'predictions')}
        }

        result = run_prediction(fitted_model, new_data, config)

        assert result['level'] == 0.9
        assert Path(result['csv_path']).exists()
        assert Path(result['report_path']).exists()
        assert len(result['predictions']) == 3

        print_prediction_results(result)
        assert '90% Lower' in capsys.readouterr().out
