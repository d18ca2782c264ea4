# coherence_lint/ingestion/loader.py
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from coherence_lint.models.world_schemas import ConfigSnapshot


class SnapshotLoadError(Exception):
    """Файл проекта не читается или это не JSON-объект."""


def snapshot_from_parts(
    schema: Optional[Any] = None,
    eras: Optional[List[Any]] = None,
    pressures: Optional[List[Any]] = None,
    generators: Optional[List[Any]] = None,
    systems: Optional[List[Any]] = None,
    usage_map: Optional[Any] = None,
) -> ConfigSnapshot:
    """Собирает снапшот из отдельных частей. Любая часть может отсутствовать."""
    return ConfigSnapshot.model_validate({
        "schema": schema if schema is not None else {},
        "eras": eras if eras is not None else [],
        "pressures": pressures if pressures is not None else [],
        "generators": generators if generators is not None else [],
        "systems": systems if systems is not None else [],
        "usageMap": usage_map,
    })


def load_snapshot(path: Union[str, Path]) -> ConfigSnapshot:
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SnapshotLoadError(f"Cannot read config file {path}: {e}") from e

    try:
        data: Dict[str, Any] = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SnapshotLoadError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise SnapshotLoadError(f"Top-level value in {path} must be an object, got {type(data).__name__}")

    snapshot = ConfigSnapshot.model_validate(data)
    logging.info(
        f"Loaded {path.name}: {len(snapshot.generators)} generators, {len(snapshot.systems)} systems, "
        f"{len(snapshot.pressures)} pressures, {len(snapshot.eras)} eras"
    )
    return snapshot
