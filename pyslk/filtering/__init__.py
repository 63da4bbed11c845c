"""
Filtering module for the pyslk library.

Kalman filtering of raw GPS readings into smoothed positions, speeds and
headings, with outage prediction and confidence reporting.
"""

from pyslk.filtering.ekf import (
    GpsReading,
    FilterConfig,
    FilterState,
    FilterOutput,
    PredictionInfo,
    VelocitySample,
    DEFAULT_FILTER_CONFIG,
    initialize,
    predict,
    correct,
    step,
    output,
    prediction_info,
    is_acceptable,
    GpsKalmanFilter,
    kalman_filter_trajectory,
)

__all__ = [
    'GpsReading',
    'FilterConfig',
    'FilterState',
    'FilterOutput',
    'PredictionInfo',
    'VelocitySample',
    'DEFAULT_FILTER_CONFIG',
    'initialize',
    'predict',
    'correct',
    'step',
    'output',
    'prediction_info',
    'is_acceptable',
    'GpsKalmanFilter',
    'kalman_filter_trajectory',
]
