"""
Packaged Datasets
=================

Teaching datasets shipped with the lectures. The tables are generated from a
fixed seed so that every student works with identical rows.

Datasets:
    - elections: Gubernatorial candidates and how long they lived after the election
    - survey: Commuter attitudes toward immigration before and after an exposure experiment
"""

import logging
from typing import Callable, Dict, List

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_SEED = 2024

STATES = [
    'Alabama', 'Arizona', 'California', 'Colorado', 'Florida', 'Georgia',
    'Illinois', 'Iowa', 'Kansas', 'Maine', 'Michigan', 'Minnesota',
    'New York', 'Ohio', 'Oregon', 'Pennsylvania', 'Texas', 'Vermont',
    'Virginia', 'Wisconsin'
]


def simulate_elections(n: int = 1000, seed: int = DEFAULT_SEED) -> pd.DataFrame:
    """
    Generate the elections dataset.

    Each row is a major-party (or third-party) candidate in a gubernatorial
    election who has since died. ``lived_after`` is the number of years the
    candidate lived after election day.

    Args:
        n: Number of candidates
        seed: Random seed

    Returns:
        DataFrame with columns state, year, party, sex, won, election_age,
        death_age, lived_after
    """
    if n < 1:
        raise ValueError(f"n must be positive, got {n}")

    rng = np.random.default_rng(seed)

    year = rng.integers(1945, 2012, size=n)
    party = rng.choice(
        ['Democrat', 'Republican', 'Third party'], size=n, p=[0.47, 0.47, 0.06]
    )
    # Women only appear in later elections
    p_female = np.where(year >= 1975, 0.12, 0.02)
    sex = np.where(rng.random(n) < p_female, 'Female', 'Male')
    won = rng.random(n) < 0.5
    election_age = np.clip(rng.normal(51, 8.5, size=n), 30, 85)

    party_effect = pd.Series(party).map(
        {'Democrat': 0.0, 'Republican': -0.6, 'Third party': -1.5}
    ).to_numpy()
    lived_after = (
        73.0
        - 0.85 * election_age
        + np.where(sex == 'Female', 3.2, 0.0)
        + np.where(won, 1.1, 0.0)
        + party_effect
        + rng.normal(0, 10.5, size=n)
    )
    # Everyone in the table lived at least a few months past the election
    lived_after = np.clip(lived_after, 0.25, None)

    df = pd.DataFrame({
        'state': rng.choice(STATES, size=n),
        'year': year,
        'party': party,
        'sex': sex,
        'won': won,
        'election_age': np.round(election_age, 2),
        'death_age': np.round(election_age + lived_after, 2),
        'lived_after': np.round(lived_after, 2)
    })

    logger.debug(f"Simulated elections dataset: {df.shape[0]} rows")
    return df


def simulate_survey(n: int = 1200, seed: int = DEFAULT_SEED) -> pd.DataFrame:
    """
    Generate the survey dataset.

    Commuters on train platforms were randomly assigned to treatment
    (exposure to Spanish speakers on the platform) or control. Attitude
    toward immigration is measured on a 3 to 15 scale, higher meaning more
    conservative, before (``att_start``) and after (``att_end``) the
    experiment.

    Args:
        n: Number of respondents
        seed: Random seed

    Returns:
        DataFrame with columns gender, age, income, party, liberal,
        treatment, att_start, att_end
    """
    if n < 1:
        raise ValueError(f"n must be positive, got {n}")

    rng = np.random.default_rng(seed + 1)

    gender = rng.choice(['Female', 'Male'], size=n)
    age = rng.integers(20, 69, size=n)
    income = np.round(rng.lognormal(mean=11.7, sigma=0.45, size=n), -2)
    party = rng.choice(['Democrat', 'Republican'], size=n, p=[0.6, 0.4])
    liberal = np.where(party == 'Democrat', rng.random(n) < 0.7, rng.random(n) < 0.15)
    treatment = rng.choice(['Control', 'Treated'], size=n)

    att_start = np.rint(
        9.5
        - np.where(liberal, 1.6, 0.0)
        + np.where(party == 'Republican', 1.2, 0.0)
        + 0.02 * (age - 40)
        + rng.normal(0, 2.2, size=n)
    )
    att_start = np.clip(att_start, 3, 15)

    att_end = np.rint(
        1.2
        + 0.85 * att_start
        + np.where(treatment == 'Treated', 1.4, 0.0)
        - np.where(liberal, 0.5, 0.0)
        + rng.normal(0, 1.3, size=n)
    )
    att_end = np.clip(att_end, 3, 15)

    df = pd.DataFrame({
        'gender': gender,
        'age': age,
        'income': income,
        'party': party,
        'liberal': liberal,
        'treatment': treatment,
        'att_start': att_start.astype(int),
        'att_end': att_end.astype(int)
    })

    logger.debug(f"Simulated survey dataset: {df.shape[0]} rows")
    return df


DATASETS: Dict[str, Callable[[], pd.DataFrame]] = {
    'elections': simulate_elections,
    'survey': simulate_survey,
}


def list_datasets() -> List[str]:
    """Names of the packaged datasets."""
    return sorted(DATASETS)


def load_dataset(name: str) -> pd.DataFrame:
    """
    Load a packaged dataset by name.

    Args:
        name: Dataset name (see list_datasets)

    Returns:
        Fresh copy of the dataset

    Raises:
        KeyError: If the dataset is unknown
    """
    if name not in DATASETS:
        raise KeyError(f"Unknown dataset: {name}. Choose from: {', '.join(list_datasets())}")

    df = DATASETS[name]()
    logger.info(f"Loaded packaged dataset '{name}': {df.shape[0]} rows × {df.shape[1]} columns")
    return df
