"""
Data Preprocessing Module
=========================

Turns model formulas and data frames into design matrices, and partitions
data for out-of-sample evaluation.

Functions:
    - parse_formula: Parse ``"y ~ a + b + a:b"`` style model formulas
    - DesignMatrixBuilder: patsy design matrices with treatment-coded dummies
    - split_data: Random train/test split (optionally stratified)
    - make_folds: k-fold (optionally repeated) cross-validation folds
"""

import logging
import re
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Any, Tuple, Optional, List, NamedTuple

import pandas as pd
import numpy as np
import joblib
import patsy
from sklearn.model_selection import KFold, RepeatedKFold, train_test_split

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_PATSY_LEVEL_RE = re.compile(r'^(?P<var>[^\[]+)\[(?:T\.)?(?P<level>.*)\]$')


@dataclass
class Formula:
    """A parsed model formula."""

    outcome: str
    terms: List[str] = field(default_factory=list)
    intercept: bool = True

    @property
    def variables(self) -> List[str]:
        """Predictor variables referenced by any term, in order of appearance."""
        seen: List[str] = []
        for term in self.terms:
            for var in term.split(':'):
                if var not in seen:
                    seen.append(var)
        return seen

    def __str__(self) -> str:
        rhs = ' + '.join(self.terms)
        if not self.intercept:
            rhs = f"{rhs} - 1"
        elif not rhs:
            rhs = '1'
        return f"{self.outcome} ~ {rhs}"


def parse_formula(formula: str) -> Formula:
    """
    Parse a model formula.

    Supported syntax:
        - ``y ~ x``: single predictor
        - ``y ~ a + b``: additive terms
        - ``y ~ a:b``: interaction only
        - ``y ~ a*b``: shorthand for ``a + b + a:b``
        - ``y ~ 1``: intercept-only model
        - ``y ~ x - 1`` or ``y ~ 0 + x``: no intercept

    Args:
        formula: Formula string

    Returns:
        Parsed Formula

    Raises:
        ValueError: If the formula is malformed
    """
    if not isinstance(formula, str) or formula.count('~') != 1:
        raise ValueError(f"Formula must contain exactly one '~': {formula!r}")

    lhs, rhs = (part.strip() for part in formula.split('~'))
    if not lhs or not _NAME_RE.match(lhs):
        raise ValueError(f"Invalid outcome in formula: {formula!r}")
    if not rhs:
        raise ValueError(f"Formula has no right-hand side: {formula!r}")

    rhs = rhs.replace(' ', '')
    intercept = True
    if re.search(r'-1(?![0-9])', rhs):
        intercept = False
        rhs = re.sub(r'-1(?![0-9])', '', rhs).strip('+')

    terms: List[str] = []
    for token in rhs.split('+') if rhs else []:
        if token == '':
            raise ValueError(f"Empty term in formula: {formula!r}")
        if token == '1':
            continue
        if token == '0':
            intercept = False
            continue

        if '*' in token:
            parts = token.split('*')
            expanded = list(parts)
            for size in range(2, len(parts) + 1):
                # a*b*c -> a + b + c + a:b + a:c + b:c + a:b:c
                for combo in combinations(parts, size):
                    expanded.append(':'.join(combo))
        else:
            expanded = [token]

        for term in expanded:
            for var in term.split(':'):
                if not _NAME_RE.match(var):
                    raise ValueError(f"Invalid variable {var!r} in formula: {formula!r}")
                if var == lhs:
                    raise ValueError(f"Outcome {lhs!r} cannot appear as a predictor")
            if term not in terms:
                terms.append(term)

    if not terms and not intercept:
        raise ValueError(f"Formula has neither an intercept nor any terms: {formula!r}")

    return Formula(outcome=lhs, terms=terms, intercept=intercept)


class DesignMatrixBuilder:
    """
    Build numeric design matrices from a formula and a data frame.

    The matrix itself comes from patsy. Numeric columns enter as-is. Text,
    categorical and boolean columns are dummy coded against their first
    level (treatment contrasts), so a coefficient named ``partyRepublican``
    is the difference from the reference party. Patsy column names such as
    ``party[T.Republican]`` are reported as ``partyRepublican``.

    Missing values in any predictor or in the outcome are rejected rather
    than silently encoded.
    """

    def __init__(self, formula):
        """
        Initialize the builder.

        Args:
            formula: Formula string or parsed Formula
        """
        self.formula = parse_formula(formula) if isinstance(formula, str) else formula
        self.levels: Dict[str, List[Any]] = {}
        self.numeric: List[str] = []
        self.feature_names: Optional[List[str]] = None
        self.feature_parts: Dict[str, List[Tuple[str, Any]]] = {}
        self._columns: List[str] = []
        self._is_fitted = False

    def _rhs(self) -> str:
        rhs = ' + '.join(self.formula.terms) or '1'
        if not self.formula.intercept:
            rhs = f"{rhs} - 1"
        return rhs

    def _dmatrix(self, data: pd.DataFrame) -> pd.DataFrame:
        na_action = patsy.NAAction(on_NA='raise', NA_types=['None', 'NaN'])
        return patsy.dmatrix(self._rhs(), data, NA_action=na_action, return_type='dataframe')

    def fit(self, df: pd.DataFrame) -> 'DesignMatrixBuilder':
        """
        Learn variable types and categorical levels.

        Args:
            df: Training data

        Returns:
            Self for method chaining

        Raises:
            KeyError: If a predictor column is absent
            ValueError: If a predictor or the outcome has missing values
        """
        self._check_columns(df, self.formula.variables)
        self._check_missing(df)

        self.levels = {}
        self.numeric = []
        columns: List[str] = []

        if self.formula.terms:
            design = self._dmatrix(df[self.formula.variables])
            info = design.design_info
            factors = {factor.name(): factor_info for factor, factor_info in info.factor_infos.items()}
            for var in self.formula.variables:
                if factors[var].type == 'categorical':
                    self.levels[var] = list(factors[var].categories)
                else:
                    self.numeric.append(var)
            columns = self._ordered_columns(info)

        self._is_fitted = True
        self._set_columns(columns)
        logger.debug(f"Design matrix columns for '{self.formula}': {self.feature_names}")
        return self

    def _check_columns(self, df: pd.DataFrame, columns: List[str]) -> None:
        missing = [col for col in columns if col not in df.columns]
        if missing:
            raise KeyError(f"Columns not found in data: {missing}")

    def _check_missing(self, df: pd.DataFrame) -> None:
        columns = self.formula.variables + [
            col for col in [self.formula.outcome] if col in df.columns
        ]
        with_na = [col for col in columns if df[col].isnull().any()]
        if with_na:
            raise ValueError(
                f"Data contains missing values in {with_na}; filter them out before fitting."
            )

    def _ordered_columns(self, info) -> List[str]:
        # Patsy groups terms by their numeric factors; keep the formula's order instead
        slices = {
            frozenset(factor.name() for factor in term.factors): info.term_slices[term]
            for term in info.terms
        }
        columns = []
        for term in self.formula.terms:
            for column in info.column_names[slices[frozenset(term.split(':'))]]:
                # a:b and b:a are one patsy term
                if column not in columns:
                    columns.append(column)
        return columns

    def _split_column(self, column: str) -> List[Tuple[str, Any]]:
        # "age:sex[T.Male]" -> [("age", None), ("sex", "Male")]
        parts = []
        for piece in column.split(':'):
            match = _PATSY_LEVEL_RE.match(piece)
            if match is None:
                parts.append((piece, None))
                continue
            var, label = match.group('var'), match.group('level')
            level = next(candidate for candidate in self.levels[var] if str(candidate) == label)
            parts.append((var, level))
        return parts

    def _set_columns(self, columns: List[str]) -> None:
        self._columns = list(columns)
        self.feature_names = []
        self.feature_parts = {}
        for column in self._columns:
            parts = self._split_column(column)
            name = ':'.join(var if level is None else f"{var}{level}" for var, level in parts)
            self.feature_names.append(name)
            self.feature_parts[name] = parts

    def describe_feature(self, name: str) -> List[Tuple[str, Any]]:
        """
        Break a design column name into its variables.

        Args:
            name: Feature name from get_feature_names()

        Returns:
            List of (variable, level) pairs; level is None for numeric variables
        """
        if not self._is_fitted:
            raise ValueError("Builder must be fitted first.")
        return list(self.feature_parts[name])

    def reference_level(self, var: str) -> Any:
        """Reference (first) level of a categorical variable."""
        return self.levels[var][0]

    def _coded_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        # Fix the categorical levels so new data yields the training columns
        data = {}
        for var in self.formula.variables:
            if var in self.numeric:
                data[var] = df[var].to_numpy(dtype=float)
                continue

            levels = self.levels[var]
            series = df[var].astype(object)
            unseen = ~series.isin(levels)
            if unseen.any():
                logger.warning(
                    f"Unseen levels for '{var}' encoded as reference: "
                    f"{sorted(map(str, series[unseen].unique()))}"
                )
                series = series.where(~unseen, levels[0])
            data[var] = pd.Categorical(series, categories=levels)
        return pd.DataFrame(data, index=df.index)

    def transform(
        self,
        df: pd.DataFrame,
        require_outcome: bool = True
    ) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """
        Build the design matrix and outcome vector.

        Args:
            df: Data to transform
            require_outcome: Raise if the outcome column is absent

        Returns:
            Tuple of (X, y). X has shape (n_rows, n_features); y is None when
            the outcome is absent and not required.
        """
        if not self._is_fitted:
            raise ValueError("Builder must be fitted before transform. Call fit() first.")

        self._check_columns(df, self.formula.variables)
        self._check_missing(df)

        if self._columns:
            design = self._dmatrix(self._coded_frame(df))
            X = design[self._columns].to_numpy(dtype=float)
        else:
            X = np.empty((len(df), 0))

        y = None
        if self.formula.outcome in df.columns:
            y = df[self.formula.outcome].to_numpy(dtype=float)
        elif require_outcome:
            raise KeyError(f"Outcome column not found in data: {self.formula.outcome}")

        return X, y

    def fit_transform(self, df: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray]:
        """Fit and transform in one step."""
        self.fit(df)
        return self.transform(df)

    def get_feature_names(self) -> List[str]:
        """
        Names of the design matrix columns, excluding the intercept.

        Returns:
            List of names such as ``election_age``, ``sexMale`` or
            ``election_age:sexMale``
        """
        if not self._is_fitted:
            raise ValueError("Builder must be fitted first.")
        return list(self.feature_names)

    def get_state(self) -> Dict[str, Any]:
        """Picklable state; patsy design info is not picklable, so only levels are kept."""
        return {
            'formula': str(self.formula),
            'levels': self.levels,
            'numeric': self.numeric,
            'columns': self._columns,
            '_is_fitted': self._is_fitted
        }

    def set_state(self, state: Dict[str, Any]) -> None:
        """Restore the state returned by get_state()."""
        self.levels = state['levels']
        self.numeric = state['numeric']
        self._is_fitted = state['_is_fitted']
        if self._is_fitted:
            self._set_columns(state['columns'])

    def save(self, filepath: str) -> None:
        """
        Save the builder state to disk.

        Args:
            filepath: Path to save the builder
        """
        joblib.dump(self.get_state(), filepath)
        logger.info(f"Design matrix builder saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'DesignMatrixBuilder':
        """
        Load a builder from disk.

        Args:
            filepath: Path to the saved builder

        Returns:
            Loaded DesignMatrixBuilder instance
        """
        state = joblib.load(filepath)

        builder = cls(state['formula'])
        builder.set_state(state)

        logger.info(f"Design matrix builder loaded from {filepath}")
        return builder


def _strata_labels(series: pd.Series, n_bins: int = 4) -> pd.Series:
    # Numeric strata with many values are binned into quantiles
    if pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series) \
            and series.nunique() > 10:
        return pd.qcut(series, q=n_bins, labels=False, duplicates='drop')
    return series


def split_data(
    df: pd.DataFrame,
    prop: float = 0.75,
    seed: Optional[int] = None,
    strata: Optional[str] = None
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Randomly split data into training and testing sets.

    Args:
        df: Data to split
        prop: Proportion of rows assigned to training
        seed: Random seed
        strata: Column to stratify on (numeric columns are binned into quartiles)

    Returns:
        Tuple of (train, test), each keeping the original row index
    """
    if not 0 < prop < 1:
        raise ValueError(f"prop must be between 0 and 1, got {prop}")
    if len(df) < 2:
        raise ValueError(f"Need at least 2 rows to split, got {len(df)}")

    stratify = None
    if strata is not None:
        if strata not in df.columns:
            raise KeyError(f"Strata column not found: {strata}")
        stratify = _strata_labels(df[strata])

    train, test = train_test_split(
        df,
        train_size=prop,
        random_state=seed,
        shuffle=True,
        stratify=stratify
    )

    logger.info(f"Train/Test split: {len(train)} train rows, {len(test)} test rows")
    return train, test


class Fold(NamedTuple):
    """One cross-validation fold: positional row indices for analysis and assessment."""

    fold_id: str
    train_idx: np.ndarray
    test_idx: np.ndarray


def make_folds(
    df: pd.DataFrame,
    v: int = 10,
    repeats: int = 1,
    seed: Optional[int] = None
) -> List[Fold]:
    """
    Partition rows into v folds for cross-validation.

    Every row lands in exactly one assessment set per repeat.

    Args:
        df: Data to partition
        v: Number of folds
        repeats: Number of times to repeat the partitioning
        seed: Random seed

    Returns:
        List of Fold objects, ``v * repeats`` long
    """
    n = len(df)
    if v < 2:
        raise ValueError(f"v must be at least 2, got {v}")
    if v > n:
        raise ValueError(f"Cannot make {v} folds from {n} rows")
    if repeats < 1:
        raise ValueError(f"repeats must be at least 1, got {repeats}")

    if repeats == 1:
        splitter = KFold(n_splits=v, shuffle=True, random_state=seed)
    else:
        splitter = RepeatedKFold(n_splits=v, n_repeats=repeats, random_state=seed)

    folds = []
    for i, (train_idx, test_idx) in enumerate(splitter.split(np.arange(n))):
        fold_num = i % v + 1
        if repeats == 1:
            fold_id = f"Fold{fold_num:02d}"
        else:
            fold_id = f"Repeat{i // v + 1}_Fold{fold_num:02d}"
        folds.append(Fold(fold_id=fold_id, train_idx=train_idx, test_idx=test_idx))

    logger.info(f"Created {len(folds)} folds ({v}-fold, {repeats} repeat(s)) from {n} rows")
    return folds
