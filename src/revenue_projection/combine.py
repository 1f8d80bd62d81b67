from __future__ import annotations

import logging
from collections import Counter
from typing import List

from .errors import DuplicateModelId
from .registry import ModelTable, RegistryEntry

logger = logging.getLogger(__name__)


def combine_tables(*tables: ModelTable) -> ModelTable:
    """Union of the tables' entries in argument order.

    Entries travel unchanged, calibration included. Ids are never
    renumbered here: any id present in more than one table raises
    ``DuplicateModelId``; use ``ModelTable.renumbered`` first.
    """
    if len(tables) < 2:
        raise ValueError("combine_tables needs at least two tables.")

    counts = Counter(model_id for table in tables for model_id in table.ids)
    collisions = [model_id for model_id, count in counts.items() if count > 1]
    if collisions:
        raise DuplicateModelId(collisions)

    entries: List[RegistryEntry] = [entry for table in tables for entry in table]
    logger.info("Combined %s tables into %s models", len(tables), len(entries))
    combined = ModelTable(entries)
    combined._next_id = max(combined._next_id, *(table._next_id for table in tables))
    return combined
