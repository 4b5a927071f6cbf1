"""
Data Loader Module
==================

Handles configuration, data ingestion, validation and filtering.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load a packaged dataset, a local CSV or a CSV served over HTTP
    - download_dataset: Fetch a remote CSV into the raw data directory
    - validate_data: Check data quality constraints
    - filter_data: Row filtering and column selection
    - get_data_summary: Generate basic statistics
"""

import hashlib
import logging
import time
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple
from urllib.parse import urlparse

import numpy as np
import pandas as pd
import requests
import yaml

from .datasets import DATASETS, load_dataset

logger = logging.getLogger(__name__)

USER_AGENT = 'statlectures/1.0 (+course materials)'


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def _is_url(source: str) -> bool:
    return urlparse(str(source)).scheme in ('http', 'https')


def download_dataset(
    url: str,
    output_dir: str = "data/raw",
    max_retries: int = 3,
    timeout: float = 30.0,
    backoff: float = 1.0,
    overwrite: bool = False
) -> Path:
    """
    Download a CSV file into the raw data directory.

    The cached file is named after a hash of the URL plus its basename and
    is reused unless ``overwrite`` is set.

    Args:
        url: Address of the CSV file
        output_dir: Directory for the downloaded file
        max_retries: Number of attempts before giving up
        timeout: Per-request timeout in seconds
        backoff: Seconds to wait between attempts (multiplied by attempt number)
        overwrite: Re-download even if a cached copy exists

    Returns:
        Path to the local file

    Raises:
        requests.RequestException: If every attempt fails
    """
    if max_retries < 1:
        raise ValueError(f"max_retries must be at least 1, got {max_retries}")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    # Same basename from different URLs must not share a cache entry
    url_key = hashlib.sha256(url.encode()).hexdigest()[:12]
    filename = Path(urlparse(url).path).name or "dataset.csv"
    filepath = output_dir / f"{url_key}_{filename}"

    if filepath.exists() and not overwrite:
        logger.info(f"Using cached download: {filepath}")
        return filepath

    headers = {'User-Agent': USER_AGENT}
    last_error: Optional[requests.RequestException] = None

    for attempt in range(1, max_retries + 1):
        logger.info(f"Fetching {url} (attempt {attempt}/{max_retries})")
        try:
            response = requests.get(url, headers=headers, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            last_error = e
            logger.warning(f"Download failed for {url}: {e}")
            if attempt < max_retries:
                # Be polite to the server
                time.sleep(backoff * attempt)
            continue

        filepath.write_bytes(response.content)
        logger.info(f"Saved {len(response.content)} bytes to {filepath}")
        return filepath

    raise last_error


def load_data(
    source: str,
    required_columns: Optional[List[str]] = None,
    raw_dir: str = "data/raw",
    index_col: Optional[int] = None
) -> pd.DataFrame:
    """
    Load data from a packaged dataset name, a CSV path or a CSV URL.

    Args:
        source: Dataset name, local path or http(s) URL
        required_columns: Columns that must be present (optional validation)
        raw_dir: Cache directory for downloaded files
        index_col: Column to use as index when reading CSV (optional)

    Returns:
        DataFrame containing the loaded data

    Raises:
        FileNotFoundError: If a local data file doesn't exist
        KeyError: If required columns are missing
    """
    if source in DATASETS:
        df = load_dataset(source)
    else:
        if _is_url(source):
            file_path = download_dataset(source, output_dir=raw_dir)
        else:
            file_path = Path(source)
            if not file_path.exists():
                raise FileNotFoundError(f"Data file not found: {file_path}")

        df = pd.read_csv(file_path, index_col=index_col)
        logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    if required_columns:
        missing = [col for col in required_columns if col not in df.columns]
        if missing:
            raise KeyError(
                f"Missing required columns: {missing}. Columns: {list(df.columns)}"
            )

    return df


def validate_data(
    df: pd.DataFrame,
    required_columns: Optional[List[str]] = None,
    strict: bool = True
) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints for regression modeling.

    Checks:
        - Required columns are present
        - No missing values in the required columns
        - Duplicate rows
        - At least two rows remain

    Args:
        df: DataFrame to validate
        required_columns: Columns the model will use (default: all)
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    columns = list(required_columns) if required_columns else list(df.columns)

    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": []
    }

    # Check 1: Required columns
    missing_cols = [col for col in columns if col not in df.columns]
    if missing_cols:
        issue = f"Missing columns: {missing_cols}"
        report["issues"].append(issue)
        logger.warning(issue)
    present = [col for col in columns if col in df.columns]

    # Check 2: Missing values
    missing_counts = df[present].isnull().sum()
    total_missing = int(missing_counts.sum())
    if total_missing > 0:
        issue = f"Missing values: {total_missing} in columns {missing_counts[missing_counts > 0].index.tolist()}"
        report["issues"].append(issue)
        report["missing_by_column"] = missing_counts[missing_counts > 0].to_dict()
        logger.warning(issue)

    # Check 3: Duplicate rows
    duplicates = int(df.duplicated().sum())
    if duplicates > 0:
        issue = f"Duplicate rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 4: Enough rows to fit anything
    if len(df) < 2:
        issue = f"Too few rows: {len(df)}"
        report["issues"].append(issue)
        logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def filter_data(
    df: pd.DataFrame,
    query: Optional[str] = None,
    columns: Optional[List[str]] = None,
    dropna: bool = True
) -> pd.DataFrame:
    """
    Filter rows and select columns.

    Args:
        df: Source DataFrame
        query: pandas query expression, e.g. ``"party != 'Third party'"``
        columns: Columns to keep (default: all)
        dropna: Drop rows with missing values in the kept columns

    Returns:
        Filtered copy with a fresh index

    Raises:
        KeyError: If a requested column is missing
    """
    n_before = len(df)
    result = df

    if query:
        result = result.query(query)

    if columns:
        missing = [col for col in columns if col not in result.columns]
        if missing:
            raise KeyError(f"Unknown columns: {missing}")
        result = result[list(columns)]

    if dropna:
        result = result.dropna()

    result = result.reset_index(drop=True)
    logger.info(f"Filtered data: {n_before} -> {len(result)} rows, {result.shape[1]} columns")
    return result


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the dataset.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "statistics": {},
        "levels": {}
    }

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "25%": float(df[col].quantile(0.25)),
            "50%": float(df[col].quantile(0.50)),
            "75%": float(df[col].quantile(0.75)),
            "max": float(df[col].max())
        }

    for col in df.select_dtypes(exclude=[np.number]).columns:
        summary["levels"][col] = {str(k): int(v) for k, v in df[col].value_counts().items()}

    return summary


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100 if len(df) else 0.0
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    print("\nBasic Statistics:")
    print("-" * 40)
    print(df.describe().round(4).to_string())
    print("=" * 60 + "\n")
