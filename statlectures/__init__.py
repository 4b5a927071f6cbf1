"""
Statistics Lecture Companions
=============================

Lecture documents for an introductory statistics / data science course:
Bayesian linear regression, coefficient interpretation, RMSE, train/test
splitting and cross-validation, rendered as HTML reports.

Modules:
    - datasets: Packaged teaching datasets (elections, survey)
    - data_loader: Config loading, CSV/URL ingestion, validation, filtering
    - eda: Exploratory plots
    - preprocessing: Formulas, design matrices, train/test splits and folds
    - model: Bayesian linear regression with posterior draws
    - evaluation: RMSE and related prediction-error metrics
    - resampling: Train/test evaluation and k-fold cross-validation
    - prediction: Posterior predictions for new observations
    - report: HTML report rendering
    - lectures: The lecture documents and their runner
"""

__version__ = "1.0.0"
__author__ = "Statistics Teaching Team"
