"""Reversible preprocessing steps and their inversion on forecast output.

A chain is listed in the order the steps were applied to the target before
modeling; inversion walks it backwards. Only strictly increasing transforms
are accepted, so a forecast's ``lower <= prediction <= upper`` ordering
survives inversion.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping, Sequence, Tuple, Union

import numpy as np

from .errors import MissingTransformParameters, NonInvertibleTransform
from .forecast import SCALE_ORIGINAL, SCALE_TRANSFORMED, ForecastResult

logger = logging.getLogger(__name__)

ArrayFn = Callable[[np.ndarray, Dict[str, Any]], np.ndarray]

_NON_MONOTONIC = {
    "difference": "depends on the previous observation, not on the value alone",
    "diff": "depends on the previous observation, not on the value alone",
    "square": "not monotonic over the real line",
    "abs": "not monotonic over the real line",
}


@dataclass(frozen=True)
class _Kind:
    required: Tuple[str, ...]
    defaults: Dict[str, Any]
    forward: ArrayFn
    inverse: ArrayFn
    check: Callable[[Dict[str, Any]], None] = lambda params: None


def _check_standardize(params):
    if not params["sd"] > 0:
        raise NonInvertibleTransform("standardize", "sd must be positive")


def _check_log(params):
    if not params["base"] > 1:
        raise NonInvertibleTransform("log", "base must be greater than 1")


def _check_scale(params):
    if not params["factor"] > 0:
        raise NonInvertibleTransform("scale", "factor must be positive")


def _box_cox_forward(values, params):
    lam = params["lambda"]
    if lam == 0:
        return np.log(values)
    return (np.power(values, lam) - 1) / lam


def _box_cox_inverse(values, params):
    lam = params["lambda"]
    if lam == 0:
        return np.exp(values)
    # Values outside the forward range map to its bound: 0 for lambda > 0, +inf for lambda < 0.
    base = np.clip(lam * values + 1, 0.0, None)
    with np.errstate(divide="ignore"):
        return np.power(base, 1 / lam)


_KINDS: Dict[str, _Kind] = {
    "standardize": _Kind(
        required=("mean", "sd"),
        defaults={},
        forward=lambda v, p: (v - p["mean"]) / p["sd"],
        inverse=lambda v, p: v * p["sd"] + p["mean"],
        check=_check_standardize,
    ),
    "log": _Kind(
        required=(),
        defaults={"base": math.e, "offset": 0.0},
        forward=lambda v, p: np.log(v + p["offset"]) / np.log(p["base"]),
        inverse=lambda v, p: np.power(p["base"], v) - p["offset"],
        check=_check_log,
    ),
    "log1p": _Kind(
        required=(),
        defaults={},
        forward=lambda v, p: np.log1p(v),
        inverse=lambda v, p: np.expm1(v),
    ),
    "box_cox": _Kind(
        required=("lambda",),
        defaults={},
        forward=_box_cox_forward,
        inverse=_box_cox_inverse,
    ),
    "scale": _Kind(
        required=("factor",),
        defaults={"offset": 0.0},
        forward=lambda v, p: v * p["factor"] + p["offset"],
        inverse=lambda v, p: (v - p["offset"]) / p["factor"],
        check=_check_scale,
    ),
}

_ALIASES = {"standardise": "standardize", "standardization": "standardize", "boxcox": "box_cox"}


@dataclass(frozen=True)
class TransformStep:
    kind: str
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Union["TransformStep", Mapping[str, Any]]) -> "TransformStep":
        if isinstance(raw, TransformStep):
            return raw
        if "kind" not in raw:
            raise ValueError(f"Transform step {dict(raw)} has no 'kind'.")
        params = {key: value for key, value in raw.items() if key != "kind"}
        if isinstance(params.get("params"), Mapping):
            params = dict(params["params"])
        return cls(kind=str(raw["kind"]), params=params)

    def resolved(self) -> Tuple[_Kind, Dict[str, Any]]:
        kind_name = _ALIASES.get(self.kind.lower(), self.kind.lower())
        if kind_name in _NON_MONOTONIC:
            raise NonInvertibleTransform(self.kind, _NON_MONOTONIC[kind_name])
        kind = _KINDS.get(kind_name)
        if kind is None:
            raise NonInvertibleTransform(self.kind, "unknown transform kind")
        missing = [name for name in kind.required if self.params.get(name) is None]
        if missing:
            raise MissingTransformParameters(self.kind, missing)
        params = {**kind.defaults, **{k: v for k, v in self.params.items() if v is not None}}
        for name in list(kind.required) + list(kind.defaults):
            params[name] = float(params[name])
        kind.check(params)
        return kind, params


class TransformChain:
    def __init__(self, steps: Sequence[Union[TransformStep, Mapping[str, Any]]]) -> None:
        self.steps = tuple(TransformStep.from_mapping(step) for step in steps)
        # Resolve every step up front so a bad chain fails before any data is touched.
        self._resolved = [step.resolved() for step in self.steps]

    def __len__(self) -> int:
        return len(self.steps)

    def __repr__(self) -> str:
        return f"TransformChain({[step.kind for step in self.steps]})"

    def apply(self, values) -> np.ndarray:
        result = np.asarray(values, dtype=float)
        for kind, params in self._resolved:
            result = kind.forward(result, params)
        return result

    def invert(self, values) -> np.ndarray:
        result = np.asarray(values, dtype=float)
        for kind, params in reversed(self._resolved):
            result = kind.inverse(result, params)
        return result


def apply_chain(values, steps: Sequence[Union[TransformStep, Mapping[str, Any]]]) -> np.ndarray:
    return TransformChain(steps).apply(values)


def invert_values(values, steps: Sequence[Union[TransformStep, Mapping[str, Any]]]) -> np.ndarray:
    return TransformChain(steps).invert(values)


def invert_forecast(
    result: ForecastResult,
    steps: Union[TransformChain, Sequence[Union[TransformStep, Mapping[str, Any]]]],
) -> ForecastResult:
    """Map a transformed-scale forecast back to the original scale."""
    if result.scale != SCALE_TRANSFORMED:
        raise ValueError(f"Forecast is already on the '{result.scale}' scale.")
    chain = steps if isinstance(steps, TransformChain) else TransformChain(steps)

    frame = result.frame.copy()
    for column in ("prediction", "lower", "upper", "actual"):
        if column in frame.columns:
            frame[column] = chain.invert(frame[column].to_numpy(dtype=float))
    logger.info("Inverted %s forecast rows through %s", len(frame), chain)
    return replace(result, frame=frame, scale=SCALE_ORIGINAL)

