"""Error taxonomy shared by every stage of the model table pipeline."""

from __future__ import annotations

from typing import Iterable, Optional


class ModelTableError(Exception):
    """Base class for all pipeline errors."""


class InvalidDataset(ModelTableError, ValueError):
    pass


class UnknownModel(ModelTableError, KeyError):
    def __init__(self, model_id: int) -> None:
        super().__init__(model_id)
        self.model_id = model_id

    def __str__(self) -> str:
        return f"No model with id {self.model_id} in the table."


class ModelFailure(ModelTableError):
    """A failure scoped to a single model; siblings are unaffected."""

    def __init__(self, model_id: int, message: str) -> None:
        super().__init__(f"model {model_id}: {message}")
        self.model_id = model_id
        self.message = message


class FitFailure(ModelFailure):
    pass


class CalibrationFailure(ModelFailure):
    pass


class NotCalibrated(ModelFailure):
    def __init__(self, model_id: int, message: str = "model has no calibration records") -> None:
        super().__init__(model_id, message)


class AllCalibrationsFailed(ModelTableError):
    def __init__(self, model_ids: Iterable[int]) -> None:
        self.model_ids = tuple(model_ids)
        super().__init__(f"Calibration failed for every model: {list(self.model_ids)}")


class DuplicateModelId(ModelTableError):
    def __init__(self, model_ids: Iterable[int]) -> None:
        self.model_ids = tuple(sorted(set(model_ids)))
        super().__init__(
            f"Model ids {list(self.model_ids)} appear in more than one table; "
            "renumber the tables before combining them."
        )


class MissingTransformParameters(ModelTableError):
    def __init__(self, kind: str, missing: Iterable[str]) -> None:
        self.kind = kind
        self.missing = tuple(missing)
        super().__init__(f"Transform step '{kind}' is missing parameters: {list(self.missing)}")


class NonInvertibleTransform(ModelTableError):
    def __init__(self, kind: str, reason: Optional[str] = None) -> None:
        self.kind = kind
        detail = f": {reason}" if reason else ""
        super().__init__(f"Transform step '{kind}' cannot be inverted monotonically{detail}")
