"""Revenue projection toolkit: calibrated and combined ARIMA, Prophet and ETS model tables."""

from .calibration import CalibrationResult, calibrate, calibration_frame
from .combine import combine_tables
from .config import PipelineConfig, load_config
from .data import ArtifactBundle, Split, future_frame, load_artifact_bundle, time_series_split
from .errors import (
    AllCalibrationsFailed,
    CalibrationFailure,
    DuplicateModelId,
    FitFailure,
    MissingTransformParameters,
    NonInvertibleTransform,
    NotCalibrated,
    UnknownModel,
)
from .forecast import ForecastResult, forecast
from .metrics import accuracy_table
from .pipeline import PipelineResult, default_specs, run_pipeline
from .refit import RefitResult, refit
from .registry import ModelTable, fit_table
from .transforms import TransformChain, invert_forecast

__all__ = [
    "AllCalibrationsFailed",
    "ArtifactBundle",
    "CalibrationFailure",
    "CalibrationResult",
    "DuplicateModelId",
    "FitFailure",
    "ForecastResult",
    "MissingTransformParameters",
    "ModelTable",
    "NonInvertibleTransform",
    "NotCalibrated",
    "PipelineConfig",
    "PipelineResult",
    "RefitResult",
    "Split",
    "TransformChain",
    "UnknownModel",
    "accuracy_table",
    "calibrate",
    "calibration_frame",
    "combine_tables",
    "default_specs",
    "fit_table",
    "forecast",
    "future_frame",
    "invert_forecast",
    "load_artifact_bundle",
    "load_config",
    "refit",
    "run_pipeline",
    "time_series_split",
]

__version__ = "0.1.0"
