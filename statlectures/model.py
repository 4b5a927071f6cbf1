"""
Model Fitting Module
====================

Bayesian linear regression built on scikit-learn's BayesianRidge.

BayesianRidge returns a Gaussian posterior for the slopes (``coef_`` and
``sigma_``) and a point estimate of the noise precision (``alpha_``). This
module samples that posterior to produce draws of every parameter, so the
lectures can report posterior medians, MAD_SD and credible intervals, and
generate posterior predictive draws.

Features:
    - Formula interface with dummy coding and interactions
    - Posterior draws for intercept, slopes and sigma
    - Coefficient summaries and plain-language interpretation
    - Linear predictor and posterior predictive draws for new data
    - Model persistence (save/load)
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, List
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
from scipy import stats
from sklearn.linear_model import BayesianRidge

from .preprocessing import DesignMatrixBuilder

logger = logging.getLogger(__name__)

INTERCEPT = '(Intercept)'
SIGMA = 'sigma'


class BayesianLinearModel:
    """
    Bayesian linear regression with a formula interface.

    Slopes are drawn from the BayesianRidge posterior. The intercept draw is
    recovered from the centered fit as ``mean(y) - mean(X) @ slopes`` plus its
    own sampling noise, and sigma is drawn from the scaled inverse chi-square
    distribution implied by the residual variance.
    """

    def __init__(
        self,
        formula: str,
        n_draws: int = 4000,
        seed: Optional[int] = None,
        credible_level: float = 0.95,
        alpha_1: float = 1e-6,
        alpha_2: float = 1e-6,
        lambda_1: float = 1e-6,
        lambda_2: float = 1e-6,
        max_iter: int = 300,
        tol: float = 1e-3
    ):
        """
        Initialize the model.

        Args:
            formula: Model formula, e.g. ``"lived_after ~ election_age + party"``
            n_draws: Number of posterior draws to keep
            seed: Random seed for posterior sampling
            credible_level: Width of the reported credible intervals
            alpha_1: Shape of the Gamma prior on the noise precision
            alpha_2: Rate of the Gamma prior on the noise precision
            lambda_1: Shape of the Gamma prior on the weight precision
            lambda_2: Rate of the Gamma prior on the weight precision
            max_iter: Maximum iterations of the evidence maximization
            tol: Convergence tolerance
        """
        if n_draws < 2:
            raise ValueError(f"n_draws must be at least 2, got {n_draws}")
        if not 0 < credible_level < 1:
            raise ValueError(f"credible_level must be between 0 and 1, got {credible_level}")

        self.formula = formula
        self.n_draws = n_draws
        self.seed = seed
        self.credible_level = credible_level
        self.alpha_1 = alpha_1
        self.alpha_2 = alpha_2
        self.lambda_1 = lambda_1
        self.lambda_2 = lambda_2
        self.max_iter = max_iter
        self.tol = tol

        self.builder = DesignMatrixBuilder(formula)
        self.estimator: Optional[BayesianRidge] = None
        self.draws: Optional[pd.DataFrame] = None
        self.n_obs_: Optional[int] = None
        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    @property
    def outcome(self) -> str:
        return self.builder.formula.outcome

    @property
    def has_intercept(self) -> bool:
        return self.builder.formula.intercept

    def _create_base_estimator(self) -> BayesianRidge:
        """Create the underlying BayesianRidge estimator."""
        return BayesianRidge(
            max_iter=self.max_iter,
            tol=self.tol,
            alpha_1=self.alpha_1,
            alpha_2=self.alpha_2,
            lambda_1=self.lambda_1,
            lambda_2=self.lambda_2,
            fit_intercept=self.has_intercept,
            compute_score=True
        )

    def hyperparameters(self) -> Dict[str, Any]:
        return {
            'n_draws': self.n_draws,
            'seed': self.seed,
            'credible_level': self.credible_level,
            'alpha_1': self.alpha_1,
            'alpha_2': self.alpha_2,
            'lambda_1': self.lambda_1,
            'lambda_2': self.lambda_2,
            'max_iter': self.max_iter,
            'tol': self.tol
        }

    def fit(self, df: pd.DataFrame) -> 'BayesianLinearModel':
        """
        Fit the model and draw from the posterior.

        Args:
            df: Data containing the outcome and every predictor

        Returns:
            Self for method chaining
        """
        start_time = datetime.now()

        logger.info("=" * 60)
        logger.info(f"FITTING BAYESIAN LINEAR REGRESSION: {self.builder.formula}")
        logger.info("=" * 60)

        X, y = self.builder.fit_transform(df)

        n, p = X.shape
        k = p + int(self.has_intercept)
        if n <= k:
            raise ValueError(f"Need more rows ({n}) than parameters ({k}) to fit the model")

        logger.info(f"Design matrix: {n} rows × {p} predictors (intercept: {self.has_intercept})")

        rng = np.random.default_rng(self.seed)

        if p > 0:
            self.estimator = self._create_base_estimator()
            self.estimator.fit(X, y)
            coef = self.estimator.coef_
            cov = self.estimator.sigma_
            residual_var = 1.0 / self.estimator.alpha_
            slope_draws = rng.multivariate_normal(coef, cov, size=self.n_draws, method='eigh')
            logger.info(f"BayesianRidge converged in {self.estimator.n_iter_} iterations")
        else:
            # Intercept-only: posterior for the mean of y
            self.estimator = None
            residual_var = float(np.var(y, ddof=1))
            slope_draws = np.empty((self.n_draws, 0))

        dof = max(n - k, 1)
        sigma_draws = np.sqrt(dof * residual_var / rng.chisquare(dof, size=self.n_draws))

        columns = {}
        if self.has_intercept:
            intercept_draws = (
                y.mean()
                - slope_draws @ X.mean(axis=0)
                + rng.normal(0.0, 1.0, size=self.n_draws) * sigma_draws / np.sqrt(n)
            )
            columns[INTERCEPT] = intercept_draws
        for j, name in enumerate(self.builder.get_feature_names()):
            columns[name] = slope_draws[:, j]
        columns[SIGMA] = sigma_draws

        self.draws = pd.DataFrame(columns)
        self.n_obs_ = n
        self._is_fitted = True

        duration = (datetime.now() - start_time).total_seconds()
        self.training_info = {
            'fit_duration_seconds': duration,
            'n_obs': n,
            'n_predictors': p,
            'formula': str(self.builder.formula),
            'fitted_at': datetime.now().isoformat(),
            'hyperparameters': self.hyperparameters()
        }
        if self.estimator is not None:
            self.training_info['noise_precision'] = float(self.estimator.alpha_)
            self.training_info['weight_precision'] = float(self.estimator.lambda_)
            self.training_info['n_iter'] = int(self.estimator.n_iter_)

        logger.info("=" * 60)
        logger.info(f"MODEL FIT COMPLETE in {duration:.2f} seconds ({self.n_draws} posterior draws)")
        logger.info("=" * 60)

        return self

    def _check_fitted(self) -> None:
        if not self._is_fitted:
            raise ValueError("Model must be fitted before use. Call fit() first.")

    def _design(self, df: pd.DataFrame) -> np.ndarray:
        X, _ = self.builder.transform(df, require_outcome=False)
        return X

    def _intercept_draws(self) -> np.ndarray:
        if self.has_intercept:
            return self.draws[INTERCEPT].to_numpy()
        return np.zeros(len(self.draws))

    def _slope_draws(self) -> np.ndarray:
        return self.draws[self.builder.get_feature_names()].to_numpy()

    def posterior_draws(self) -> pd.DataFrame:
        """
        Posterior draws of every parameter.

        Returns:
            DataFrame with one row per draw and one column per parameter
            (``(Intercept)``, each slope, ``sigma``)
        """
        self._check_fitted()
        return self.draws.copy()

    def coefficients(self, level: Optional[float] = None) -> pd.DataFrame:
        """
        Summarize the posterior of each parameter.

        Args:
            level: Credible interval width (default: the model's credible_level)

        Returns:
            DataFrame indexed by parameter with columns median, mad_sd,
            lower and upper
        """
        self._check_fitted()
        level = self.credible_level if level is None else level
        tail = (1 - level) / 2

        values = self.draws.to_numpy()
        summary = pd.DataFrame({
            'median': np.median(values, axis=0),
            'mad_sd': stats.median_abs_deviation(values, axis=0, scale='normal'),
            'lower': np.quantile(values, tail, axis=0),
            'upper': np.quantile(values, 1 - tail, axis=0)
        }, index=self.draws.columns)
        summary.index.name = 'term'
        return summary

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """
        Posterior mean of the linear predictor.

        Args:
            df: New data containing every predictor

        Returns:
            Array of shape (n_rows,)
        """
        self._check_fitted()
        X = self._design(df)
        return self._intercept_draws().mean() + X @ self._slope_draws().mean(axis=0)

    def posterior_epred(self, df: pd.DataFrame) -> np.ndarray:
        """
        Draws of the expected outcome (linear predictor) for each row.

        Args:
            df: New data containing every predictor

        Returns:
            Array of shape (n_draws, n_rows)
        """
        self._check_fitted()
        X = self._design(df)
        return self._intercept_draws()[:, None] + self._slope_draws() @ X.T

    def posterior_predict(self, df: pd.DataFrame, seed: Optional[int] = None) -> np.ndarray:
        """
        Posterior predictive draws, including residual noise.

        Args:
            df: New data containing every predictor
            seed: Random seed (default: the model's seed)

        Returns:
            Array of shape (n_draws, n_rows)
        """
        epred = self.posterior_epred(df)
        rng = np.random.default_rng(self.seed if seed is None else seed)
        noise = rng.normal(0.0, 1.0, size=epred.shape) * self.draws[SIGMA].to_numpy()[:, None]
        return epred + noise

    def predictions_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Pair predictions with the truth.

        Args:
            df: Data containing the outcome and every predictor

        Returns:
            DataFrame with the outcome column, ``.pred`` and ``.resid``
        """
        self._check_fitted()
        if self.outcome not in df.columns:
            raise KeyError(f"Outcome column not found in data: {self.outcome}")

        truth = df[self.outcome].to_numpy(dtype=float)
        pred = self.predict(df)
        return pd.DataFrame({
            self.outcome: truth,
            '.pred': pred,
            '.resid': truth - pred
        }, index=df.index)

    def interpret_coefficients(self, digits: int = 2) -> List[str]:
        """
        Describe each coefficient in plain language.

        Args:
            digits: Decimal places in the sentences

        Returns:
            One sentence per parameter
        """
        table = self.coefficients()
        pct = f"{self.credible_level:.0%}"
        sentences = []

        def fmt(value: float) -> str:
            return f"{value:.{digits}f}"

        for term, row in table.iterrows():
            interval = f"({pct} interval {fmt(row['lower'])} to {fmt(row['upper'])})"

            if term == INTERCEPT:
                refs = [
                    f"{var} = {self.builder.reference_level(var)}"
                    for var in self.builder.levels
                ]
                baseline = "all numeric predictors are zero"
                if refs:
                    baseline += " and " + ", ".join(refs)
                if not self.builder.formula.terms:
                    sentences.append(
                        f"The intercept {fmt(row['median'])} is the estimated average "
                        f"{self.outcome} {interval}."
                    )
                else:
                    sentences.append(
                        f"The intercept {fmt(row['median'])} is the expected {self.outcome} "
                        f"when {baseline} {interval}."
                    )
                continue

            if term == SIGMA:
                sentences.append(
                    f"sigma {fmt(row['median'])} is the typical distance between an observed "
                    f"{self.outcome} and the model's prediction {interval}."
                )
                continue

            parts = self.builder.describe_feature(term)
            if len(parts) == 1:
                var, level = parts[0]
                if level is None:
                    sentences.append(
                        f"Holding the other predictors constant, a one unit increase in {var} "
                        f"is associated with a change of {fmt(row['median'])} in {self.outcome} "
                        f"{interval}."
                    )
                else:
                    ref = self.builder.reference_level(var)
                    sentences.append(
                        f"Compared with {var} = {ref}, {var} = {level} is associated with a "
                        f"difference of {fmt(row['median'])} in {self.outcome} {interval}."
                    )
            else:
                first = parts[0][0] if parts[0][1] is None else f"{parts[0][0]} = {parts[0][1]}"
                conditions = [
                    f"for each one unit increase in {var}" if level is None
                    else f"when {var} = {level}"
                    for var, level in parts[1:]
                ]
                sentences.append(
                    f"The interaction {term}: the association of {first} with {self.outcome} "
                    f"shifts by {fmt(row['median'])} {' and '.join(conditions)} {interval}."
                )

        return sentences

    def save(self, filepath: str) -> None:
        """
        Save the fitted model to disk.

        Args:
            filepath: Path to save the model
        """
        self._check_fitted()

        state = {
            'formula': self.formula,
            'hyperparameters': self.hyperparameters(),
            'builder': self.builder.get_state(),
            'estimator': self.estimator,
            'draws': self.draws,
            'n_obs_': self.n_obs_,
            'training_info': self.training_info,
            '_is_fitted': self._is_fitted
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'BayesianLinearModel':
        """
        Load a fitted model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded BayesianLinearModel instance
        """
        state = joblib.load(filepath)

        model = cls(state['formula'], **state['hyperparameters'])
        model.builder.set_state(state['builder'])
        model.estimator = state['estimator']
        model.draws = state['draws']
        model.n_obs_ = state['n_obs_']
        model.training_info = state['training_info']
        model._is_fitted = state['_is_fitted']

        logger.info(f"Model loaded from {filepath}")
        return model


def model_kwargs_from_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Extract BayesianLinearModel keyword arguments from the ``model`` config section."""
    model_config = config.get('model') or {}
    return {
        'n_draws': model_config.get('n_draws', 4000),
        'seed': model_config.get('seed', 42),
        'credible_level': model_config.get('credible_level', 0.95),
        'alpha_1': model_config.get('alpha_1', 1e-6),
        'alpha_2': model_config.get('alpha_2', 1e-6),
        'lambda_1': model_config.get('lambda_1', 1e-6),
        'lambda_2': model_config.get('lambda_2', 1e-6),
        'max_iter': model_config.get('max_iter', 300)
    }


def train_model(
    df: pd.DataFrame,
    config: Dict[str, Any],
    formula: Optional[str] = None,
    save_path: Optional[str] = None
) -> BayesianLinearModel:
    """
    Fit a model using configuration parameters.

    Args:
        df: Training data
        config: Configuration dictionary
        formula: Model formula (default: ``config['model']['formula']``)
        save_path: Path to save the fitted model (optional)

    Returns:
        Fitted BayesianLinearModel
    """
    formula = formula or (config.get('model') or {}).get('formula')
    if not formula:
        raise ValueError("No model formula given and none found in config['model']['formula']")

    model = BayesianLinearModel(formula, **model_kwargs_from_config(config))
    model.fit(df)

    if save_path:
        model.save(save_path)

    return model


def print_model_summary(model: BayesianLinearModel) -> None:
    """
    Print a summary of the fitted model.

    Args:
        model: Fitted model instance
    """
    table = model.coefficients()

    print("\n" + "=" * 60)
    print("MODEL SUMMARY")
    print("=" * 60)
    print("Family:       gaussian [identity]")
    print(f"Formula:      {model.builder.formula}")
    print(f"Observations: {model.n_obs_}")
    print(f"Draws:        {model.n_draws}")
    print("\nCoefficients:")
    print("-" * 60)
    print(f"{'':<28} {'Median':>10} {'MAD_SD':>10}")
    for term, row in table.drop(index=SIGMA).iterrows():
        print(f"{term:<28} {row['median']:>10.2f} {row['mad_sd']:>10.2f}")

    print("\nAuxiliary parameter(s):")
    print(f"{SIGMA:<28} {table.loc[SIGMA, 'median']:>10.2f} {table.loc[SIGMA, 'mad_sd']:>10.2f}")
    print("=" * 60 + "\n")
