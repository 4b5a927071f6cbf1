"""
Test Suite for Model Module
===========================

Tests for the BayesianLinearModel class and model utilities.
"""

import pytest
import numpy as np
import pandas as pd
import tempfile
import os

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from statlectures.model import (
    BayesianLinearModel, INTERCEPT, SIGMA, model_kwargs_from_config, train_model
)


@pytest.fixture
def sample_data():
    """Data with known coefficients: y = 5 + 2x - 3(groupb) + noise(sd=1)."""
    rng = np.random.default_rng(42)
    n = 400
    x = rng.uniform(0, 10, n)
    group = rng.choice(['a', 'b'], n)
    y = 5 + 2 * x - 3 * (group == 'b') + rng.normal(0, 1, n)
    return pd.DataFrame({'y': y, 'x': x, 'group': group})


class TestBayesianLinearModel:
    """Tests for BayesianLinearModel class."""

    @pytest.fixture
    def model(self):
        """Create a model instance."""
        return BayesianLinearModel('y ~ x + group', n_draws=2000, seed=1)

    def test_init(self, model):
        """Test model initialization."""
        assert model.n_draws == 2000
        assert model.credible_level == 0.95
        assert model.outcome == 'y'
        assert model.has_intercept
        assert model._is_fitted == False

    @pytest.mark.parametrize('kwargs', [{'n_draws': 1}, {'credible_level': 1.0}, {'credible_level': 0}])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            BayesianLinearModel('y ~ x', **kwargs)

    def test_predict_before_fit(self, model, sample_data):
        with pytest.raises(ValueError, match="must be fitted"):
            model.predict(sample_data)

    def test_fit_recovers_coefficients(self, model, sample_data):
        model.fit(sample_data)
        table = model.coefficients()

        assert list(table.index) == [INTERCEPT, 'x', 'groupb', SIGMA]
        assert table.loc[INTERCEPT, 'median'] == pytest.approx(5, abs=0.4)
        assert table.loc['x', 'median'] == pytest.approx(2, abs=0.1)
        assert table.loc['groupb', 'median'] == pytest.approx(-3, abs=0.3)
        assert table.loc[SIGMA, 'median'] == pytest.approx(1, abs=0.15)

    def test_coefficient_summary(self, model, sample_data):
        table = model.fit(sample_data).coefficients()

        assert list(table.columns) == ['median', 'mad_sd', 'lower', 'upper']
        assert (table['mad_sd'] > 0).all()
        assert (table['lower'] < table['median']).all()
        assert (table['median'] < table['upper']).all()

    def test_narrower_interval_at_lower_level(self, model, sample_data):
        model.fit(sample_data)
        wide = model.coefficients(level=0.95)
        narrow = model.coefficients(level=0.5)

        assert ((narrow['upper'] - narrow['lower']) < (wide['upper'] - wide['lower'])).all()

    def test_posterior_draws(self, model, sample_data):
        draws = model.fit(sample_data).posterior_draws()

        assert draws.shape == (2000, 4)
        assert (draws[SIGMA] > 0).all()

    def test_reproducible(self, sample_data):
        first = BayesianLinearModel('y ~ x', n_draws=200, seed=3).fit(sample_data)
        second = BayesianLinearModel('y ~ x', n_draws=200, seed=3).fit(sample_data)
        pd.testing.assert_frame_equal(first.posterior_draws(), second.posterior_draws())

    def test_predict(self, model, sample_data):
        model.fit(sample_data)
        new = pd.DataFrame({'x': [0.0, 5.0], 'group': ['a', 'b']})

        pred = model.predict(new)
        assert pred.shape == (2,)
        assert pred[0] == pytest.approx(5, abs=0.4)
        assert pred[1] == pytest.approx(5 + 10 - 3, abs=0.4)

    def test_posterior_epred_and_predict(self, model, sample_data):
        model.fit(sample_data)
        new = sample_data.head(3)

        epred = model.posterior_epred(new)
        ppred = model.posterior_predict(new, seed=5)

        assert epred.shape == (2000, 3)
        assert ppred.shape == (2000, 3)
        # Predictive draws include residual noise
        assert (ppred.std(axis=0) > epred.std(axis=0)).all()
        np.testing.assert_allclose(epred.mean(axis=0), model.predict(new), rtol=1e-10)

    def test_predictions_frame(self, model, sample_data):
        frame = model.fit(sample_data).predictions_frame(sample_data)

        assert list(frame.columns) == ['y', '.pred', '.resid']
        np.testing.assert_allclose(frame['.resid'], frame['y'] - frame['.pred'])

        with pytest.raises(KeyError):
            model.predictions_frame(sample_data.drop(columns=['y']))

    def test_intercept_only(self, sample_data):
        model = BayesianLinearModel('y ~ 1', n_draws=1000, seed=2).fit(sample_data)
        table = model.coefficients()

        assert list(table.index) == [INTERCEPT, SIGMA]
        assert table.loc[INTERCEPT, 'median'] == pytest.approx(sample_data['y'].mean(), abs=0.5)
        assert table.loc[SIGMA, 'median'] == pytest.approx(sample_data['y'].std(), rel=0.1)
        assert model.estimator is None

    def test_no_intercept(self, sample_data):
        model = BayesianLinearModel('y ~ x - 1', n_draws=500, seed=2).fit(sample_data)
        assert INTERCEPT not in model.posterior_draws().columns
        assert model.predict(pd.DataFrame({'x': [0.0]}))[0] == 0.0

    def test_missing_values(self, model, sample_data):
        df = sample_data.copy()
        df.loc[0, 'x'] = np.nan
        with pytest.raises(ValueError, match="missing values"):
            model.fit(df)

    def test_missing_category_rejected(self, sample_data):
        """A missing group is an error, not the reference level."""
        df = sample_data.copy()
        df['group'] = df['group'].astype(object)
        df.loc[:9, 'group'] = None

        with pytest.raises(ValueError, match="missing values"):
            BayesianLinearModel('y ~ group', n_draws=100, seed=1).fit(df)

    def test_missing_outcome_rejected(self, model, sample_data):
        df = sample_data.copy()
        df.loc[3, 'y'] = np.nan
        with pytest.raises(ValueError, match="missing values"):
            model.fit(df)

    def test_too_few_rows(self, model, sample_data):
        with pytest.raises(ValueError, match="more rows"):
            model.fit(sample_data.head(2))

    def test_training_info(self, model, sample_data):
        model.fit(sample_data)

        assert model.training_info['n_obs'] == 400
        assert model.training_info['n_predictors'] == 2
        assert model.training_info['formula'] == 'y ~ x + group'

    def test_save_load(self, model, sample_data):
        """Test saving and loading model."""
        model.fit(sample_data)
        original = model.predict(sample_data)

        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'model.joblib')
            model.save(path)

            loaded = BayesianLinearModel.load(path)

        np.testing.assert_allclose(loaded.predict(sample_data), original)
        pd.testing.assert_frame_equal(loaded.coefficients(), model.coefficients())
        assert loaded.n_draws == 2000


class TestInterpretation:
    """Tests for interpret_coefficients."""

    @pytest.fixture
    def interaction_data(self):
        rng = np.random.default_rng(7)
        n = 500
        age = rng.uniform(30, 70, n)
        sex = rng.choice(['Female', 'Male'], n)
        won = rng.random(n) < 0.5
        y = 70 - 0.8 * age + 2 * (sex == 'Male') + 1 * won + rng.normal(0, 3, n)
        return pd.DataFrame({'y': y, 'age': age, 'sex': sex, 'won': won})

    def test_sentences(self, interaction_data):
        model = BayesianLinearModel('y ~ age + sex + won + age:sex', n_draws=500, seed=1)
        sentences = model.fit(interaction_data).interpret_coefficients()

        # Intercept, four slopes, sigma
        assert len(sentences) == 6
        assert sentences[0].startswith('The intercept')
        assert 'sex = Female' in sentences[0]
        assert 'one unit increase in age' in sentences[1]
        assert 'Compared with sex = Female, sex = Male' in sentences[2]
        assert 'Compared with won = False, won = True' in sentences[3]
        assert sentences[4].startswith('The interaction age:sexMale')
        assert sentences[5].startswith('sigma')
        assert '95% interval' in sentences[1]

    def test_intercept_only_sentence(self, interaction_data):
        model = BayesianLinearModel('y ~ 1', n_draws=200, seed=1).fit(interaction_data)
        sentences = model.interpret_coefficients(digits=1)
        assert 'estimated average y' in sentences[0]


class TestTrainModel:
    """Tests for config-driven training."""

    def test_kwargs_defaults(self):
        kwargs = model_kwargs_from_config({})
        assert kwargs['n_draws'] == 4000
        assert kwargs['seed'] == 42
        assert kwargs['credible_level'] == 0.95

    def test_train_model(self, sample_data, tmp_path):
        config = {'model': {'formula': 'y ~ x', 'n_draws': 300, 'seed': 9, 'credible_level': 0.9}}
        path = tmp_path / 'models' / 'model.joblib'

        model = train_model(sample_data, config, save_path=str(path))

        assert model.n_draws == 300
        assert model.credible_level == 0.9
        assert path.exists()

    def test_formula_argument_overrides_config(self, sample_data):
        model = train_model(sample_data, {'model': {'n_draws': 100}}, formula='y ~ group')
        assert model.builder.get_feature_names() == ['groupb']

    def test_missing_formula(self, sample_data):
        with pytest.raises(ValueError):
            train_model(sample_data, {})

    def test_null_model_section(self, sample_data):
        """An empty ``model:`` section in YAML loads as None."""
        config = {'model': None}

        assert model_kwargs_from_config(config)['n_draws'] == 4000
        with pytest.raises(ValueError, match="No model formula"):
            train_model(sample_data, config)

        model = train_model(sample_data, {'model': None}, formula='y ~ x')
        assert model.n_draws == 4000
