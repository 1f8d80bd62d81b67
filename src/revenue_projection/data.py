from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .errors import InvalidDataset

logger = logging.getLogger(__name__)

DATE_COLUMN = "ds"
TARGET_COLUMN = "y"
BUNDLE_KEYS: Sequence[str] = ("data_prepared", "forecast_data", "transform_params")


def validate_dataset(
    df: pd.DataFrame,
    date_col: str = DATE_COLUMN,
    target_col: Optional[str] = TARGET_COLUMN,
) -> pd.DataFrame:
    """Check the row contract shared by every window: ordered, unique, numeric."""
    required = [date_col] if target_col is None else [date_col, target_col]
    missing = set(required) - set(df.columns)
    if missing:
        raise InvalidDataset(f"Dataset missing required columns: {sorted(missing)}")

    dates = pd.to_datetime(df[date_col], errors="coerce")
    if dates.isna().any():
        raise InvalidDataset(f"Column '{date_col}' contains unparseable timestamps.")
    if dates.duplicated().any():
        duplicates = dates[dates.duplicated()].dt.strftime("%Y-%m-%d").tolist()
        raise InvalidDataset(f"Duplicate timestamps found: {duplicates[:5]}")
    if not dates.is_monotonic_increasing:
        raise InvalidDataset(f"Rows must be strictly ordered by '{date_col}'.")

    if target_col is not None and not pd.api.types.is_numeric_dtype(df[target_col]):
        raise InvalidDataset(f"Target column '{target_col}' must be numeric.")

    validated = df.copy()
    validated[date_col] = dates
    return validated.reset_index(drop=True)


@dataclass(frozen=True)
class Split:
    training: pd.DataFrame
    testing: pd.DataFrame
    future: Optional[pd.DataFrame] = None
    date_col: str = DATE_COLUMN

    def __post_init__(self) -> None:
        windows = [("training", self.training), ("testing", self.testing)]
        if self.future is not None:
            windows.append(("future", self.future))
        previous_end = None
        for name, window in windows:
            if window.empty:
                raise InvalidDataset(f"The {name} window is empty.")
            start = window[self.date_col].iloc[0]
            if previous_end is not None and start <= previous_end:
                raise InvalidDataset(f"The {name} window overlaps the window before it.")
            previous_end = window[self.date_col].iloc[-1]

    @property
    def full(self) -> pd.DataFrame:
        """Training and testing rows together, the data used for refitting."""
        return pd.concat([self.training, self.testing], ignore_index=True)


def time_series_split(
    df: pd.DataFrame,
    assess: int,
    future: Optional[pd.DataFrame] = None,
    date_col: str = DATE_COLUMN,
    target_col: str = TARGET_COLUMN,
) -> Split:
    """Hold out the last ``assess`` rows as the testing window."""
    if assess <= 0:
        raise ValueError("assess must be a positive number of rows.")
    ordered = validate_dataset(df, date_col, target_col)
    if len(ordered) <= assess:
        raise InvalidDataset(
            f"Need more than {assess} rows to hold out {assess} for testing; got {len(ordered)}."
        )
    training = ordered.iloc[:-assess].reset_index(drop=True)
    testing = ordered.iloc[-assess:].reset_index(drop=True)
    if future is not None:
        future = validate_dataset(future, date_col, target_col=None)
    return Split(training=training, testing=testing, future=future, date_col=date_col)


def future_frame(
    df: pd.DataFrame,
    periods: int,
    freq: Optional[str] = None,
    regressors: Optional[pd.DataFrame] = None,
    date_col: str = DATE_COLUMN,
) -> pd.DataFrame:
    """Build timestamp-only rows for the horizon after the last observation.

    ``freq`` defaults to the frequency pandas infers from ``df``. Regressor
    values for the horizon, when a model needs them, are supplied by the
    caller row-aligned with the generated timestamps.
    """
    if periods <= 0:
        raise ValueError("periods must be positive.")
    dates = pd.DatetimeIndex(pd.to_datetime(df[date_col]))
    if freq is None:
        freq = pd.infer_freq(dates)
        if freq is None:
            raise InvalidDataset("Could not infer a frequency; pass freq explicitly.")
    horizon = pd.date_range(start=dates[-1], periods=periods + 1, freq=freq)[1:]
    frame = pd.DataFrame({date_col: horizon})
    if regressors is not None:
        if len(regressors) != periods:
            raise InvalidDataset(
                f"Got {len(regressors)} regressor rows for a {periods}-period horizon."
            )
        frame = pd.concat([frame, regressors.reset_index(drop=True)], axis=1)
    return frame


@dataclass(frozen=True)
class ArtifactBundle:
    data_prepared: pd.DataFrame
    forecast_data: pd.DataFrame
    split: Split
    transform_params: List[Dict[str, Any]]
    metadata: Dict[str, Any] = field(default_factory=dict)


def load_artifact_bundle(
    path: Path,
    date_col: str = DATE_COLUMN,
    target_col: str = TARGET_COLUMN,
    assess: Optional[int] = None,
) -> ArtifactBundle:
    """Read the pickled preprocessing bundle.

    The bundle is a mapping holding ``data_prepared`` (rows with actuals),
    ``forecast_data`` (future rows), ``transform_params`` (the chain of
    preprocessing steps in the order they were applied) and either a
    ``splits`` mapping with ``training``/``testing`` frames or an ``assess``
    row count.
    """
    raw = pd.read_pickle(path)
    if not isinstance(raw, Mapping):
        raise InvalidDataset(f"Artifact bundle at {path} is not a mapping.")
    missing = set(BUNDLE_KEYS) - set(raw)
    if missing:
        raise InvalidDataset(f"Artifact bundle missing keys: {sorted(missing)}")
    return bundle_from_mapping(raw, date_col=date_col, target_col=target_col, assess=assess)


def bundle_from_mapping(
    raw: Mapping[str, Any],
    date_col: str = DATE_COLUMN,
    target_col: str = TARGET_COLUMN,
    assess: Optional[int] = None,
) -> ArtifactBundle:
    data_prepared = validate_dataset(raw["data_prepared"], date_col, target_col)
    forecast_data = validate_dataset(raw["forecast_data"], date_col, target_col=None)

    splits = raw.get("splits")
    if splits is not None:
        split = Split(
            training=validate_dataset(splits["training"], date_col, target_col),
            testing=validate_dataset(splits["testing"], date_col, target_col),
            future=forecast_data,
            date_col=date_col,
        )
    else:
        assess = assess if assess is not None else raw.get("assess")
        if assess is None:
            raise InvalidDataset("Bundle has neither 'splits' nor 'assess'.")
        split = time_series_split(
            data_prepared, int(assess), future=forecast_data, date_col=date_col, target_col=target_col
        )

    transform_params = raw["transform_params"]
    if isinstance(transform_params, Mapping):
        # A mapping keeps insertion order, which is the order of application.
        transform_params = [{"kind": kind, **dict(params)} for kind, params in transform_params.items()]

    metadata = {key: value for key, value in raw.items() if key not in set(BUNDLE_KEYS) | {"splits", "assess"}}
    logger.info(
        "Loaded bundle: %s training rows, %s testing rows, %s future rows",
        len(split.training),
        len(split.testing),
        len(forecast_data),
    )
    return ArtifactBundle(
        data_prepared=data_prepared,
        forecast_data=forecast_data,
        split=split,
        transform_params=list(transform_params),
        metadata=metadata,
    )


def regressor_columns(df: pd.DataFrame, date_col: str = DATE_COLUMN, target_col: str = TARGET_COLUMN) -> List[str]:
    """Every numeric column other than the timestamp and target."""
    return [
        column
        for column in df.columns
        if column not in (date_col, target_col) and pd.api.types.is_numeric_dtype(df[column])
    ]
