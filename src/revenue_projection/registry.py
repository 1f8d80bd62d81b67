"""The model table: an ordered set of fitted models keyed by integer id."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from .data import DATE_COLUMN, TARGET_COLUMN
from .errors import FitFailure, ModelFailure, UnknownModel
from .executor import run_per_model
from .models import FittedModel, ModelSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Calibration:
    """Actual, prediction and residual per testing timestamp for one model.

    ``stale`` marks records inherited through a refit: they still size
    intervals but no longer describe the current fitted model.
    """

    records: pd.DataFrame
    stale: bool = False

    @property
    def residuals(self):
        return self.records["residual"].to_numpy(dtype=float)

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class RegistryEntry:
    model_id: int
    model: FittedModel
    label: str
    calibration: Optional[Calibration] = None
    failure: Optional[ModelFailure] = None

    @property
    def is_calibrated(self) -> bool:
        return self.calibration is not None and len(self.calibration) > 0


class ModelTable:
    """Ordered registry of fitted models.

    Ids are assigned on ``register`` and never reused by the table. Entries
    are immutable; every stage that changes calibration or membership returns
    a new table.
    """

    def __init__(self, entries: Sequence[RegistryEntry] = ()) -> None:
        self._entries: List[RegistryEntry] = []
        self._index: Dict[int, RegistryEntry] = {}
        self._next_id = 1
        for entry in entries:
            self._add(entry)

    def _add(self, entry: RegistryEntry) -> None:
        if entry.model_id in self._index:
            raise ValueError(f"Model id {entry.model_id} is already registered.")
        self._entries.append(entry)
        self._index[entry.model_id] = entry
        self._next_id = max(self._next_id, entry.model_id + 1)

    def register(self, model: FittedModel, label: Optional[str] = None, model_id: Optional[int] = None) -> int:
        if model_id is None:
            model_id = self._next_id
        elif model_id < self._next_id and model_id not in self._index:
            raise ValueError(f"Model id {model_id} was already handed out by this table.")
        self._add(RegistryEntry(model_id=model_id, model=model, label=label or model.description))
        return model_id

    def get(self, model_id: int) -> FittedModel:
        return self.entry(model_id).model

    def entry(self, model_id: int) -> RegistryEntry:
        try:
            return self._index[model_id]
        except KeyError:
            raise UnknownModel(model_id) from None

    def list(self) -> Tuple[RegistryEntry, ...]:
        return tuple(self._entries)

    @property
    def ids(self) -> Tuple[int, ...]:
        return tuple(entry.model_id for entry in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RegistryEntry]:
        return iter(tuple(self._entries))

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._index

    def __repr__(self) -> str:
        return f"ModelTable(ids={list(self.ids)})"

    def with_entries(self, entries: Sequence[RegistryEntry]) -> "ModelTable":
        table = ModelTable(entries)
        table._next_id = max(table._next_id, self._next_id)
        return table

    def relabel(self, model_id: int, label: str) -> "ModelTable":
        target = self.entry(model_id)
        return self.with_entries(
            [replace(entry, label=label) if entry is target else entry for entry in self._entries]
        )

    def renumbered(self, start: int = 1) -> "ModelTable":
        """Copy of the table with ids ``start, start + 1, ...`` in display order."""
        return self.with_entries(
            [replace(entry, model_id=new_id) for new_id, entry in zip(itertools.count(start), self._entries)]
        )

    def select(self, model_ids: Sequence[int]) -> "ModelTable":
        wanted = [self.entry(model_id) for model_id in model_ids]
        return self.with_entries(wanted)

    def summary(self) -> pd.DataFrame:
        return pd.DataFrame.from_records(
            [
                {
                    "model_id": entry.model_id,
                    "family": entry.model.spec.family,
                    "label": entry.label,
                    "calibrated": entry.is_calibrated,
                    "stale": bool(entry.calibration is not None and entry.calibration.stale),
                    "failure": "" if entry.failure is None else str(entry.failure),
                }
                for entry in self._entries
            ],
            columns=["model_id", "family", "label", "calibrated", "stale", "failure"],
        )


@dataclass(frozen=True)
class FitResult:
    table: ModelTable
    failures: Dict[int, FitFailure]


def fit_table(
    specs: Sequence[ModelSpec],
    data: pd.DataFrame,
    target: str = TARGET_COLUMN,
    date_col: str = DATE_COLUMN,
    labels: Optional[Sequence[Optional[str]]] = None,
    start_id: int = 1,
    max_workers: Optional[int] = 1,
    timeout: Optional[float] = None,
) -> FitResult:
    """Fit every spec on ``data`` and register the successes.

    Spec ``i`` gets id ``start_id + i`` whether or not it fits, so a failed
    spec leaves a gap rather than shifting the ids of its siblings.
    """
    labels = list(labels) if labels is not None else [None] * len(specs)
    if len(labels) != len(specs):
        raise ValueError("labels must align with specs.")
    ids = [start_id + offset for offset in range(len(specs))]

    outcomes = run_per_model(
        {model_id: (lambda spec=spec: spec.fit(data, target=target, date_col=date_col)) for model_id, spec in zip(ids, specs)},
        max_workers=max_workers,
        timeout=timeout,
    )

    table = ModelTable()
    failures: Dict[int, FitFailure] = {}
    for model_id, label in zip(ids, labels):
        model, error = outcomes[model_id]
        if error is not None:
            failure = FitFailure(model_id, str(error))
            failure.__cause__ = error
            failures[model_id] = failure
            logger.warning("Fit failed for model %s: %s", model_id, error)
            continue
        table.register(model, label=label, model_id=model_id)
    # Ids of failed specs count as handed out, trailing ones included.
    table._next_id = max(table._next_id, start_id + len(specs))
    logger.info("Fitted %s of %s models", len(table), len(specs))
    return FitResult(table=table, failures=failures)
