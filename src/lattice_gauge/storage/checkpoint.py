"""
Checkpoints at sweep boundaries.

A checkpoint is a pair of files sharing a stem: `<stem>.npz` with the link
array and presence mask, and `<stem>.json` with the lattice, group,
precision, coupling and (optionally) the updater state including the
random generator. A non-vacuum source is pickled to `<stem>.source.pkl`.
"""

import json
import logging
import pickle
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

from ..core.groups import get_group
from ..core.lattice import Lattice
from ..core.links import LinkMap
from ..core.numerics import Precision
from ..models.gauge_field import LatticeGaugeField
from ..models.sources import VACUUM

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def _paths(path: Union[str, Path]) -> Tuple[Path, Path, Path]:
    stem = Path(path)
    if stem.suffix in (".npz", ".json"):
        stem = stem.with_suffix("")
    return (stem.with_suffix(".npz"), stem.with_suffix(".json"),
            stem.with_name(stem.name + ".source.pkl"))


def save_checkpoint(path: Union[str, Path], field, updater=None,
                    metadata: Optional[Dict[str, Any]] = None) -> Path:
    """
    Write a field (and optionally its updater state) to disk.

    Args:
        path: File stem; '.npz' and '.json' are appended
        field: Field to save
        updater: Updater whose sweep count, statistics and RNG state are saved
        metadata: Extra JSON-serializable entries

    Returns:
        Path of the JSON metadata file
    """
    npz_path, json_path, source_path = _paths(path)
    npz_path.parent.mkdir(parents=True, exist_ok=True)

    links = field.links
    np.savez_compressed(npz_path, links=links.data, present=links.present)

    info = {
        "format_version": FORMAT_VERSION,
        "created": datetime.now().isoformat(),
        "lattice": field.lattice.to_dict(),
        "group": field.group.name,
        "precision": field.precision.value,
        "beta": field.beta,
        "has_source": field.has_source,
        "updater": updater.get_state() if updater is not None else None,
        "metadata": metadata or {},
    }
    with open(json_path, "w") as f:
        json.dump(info, f, indent=2)

    if field.has_source:
        with open(source_path, "wb") as f:
            pickle.dump(field.source, f)
    elif source_path.exists():
        source_path.unlink()

    logger.info(f"Saved checkpoint to {json_path}")
    return json_path


def load_checkpoint(path: Union[str, Path],
                    lattice: Optional[Lattice] = None) -> Tuple[LatticeGaugeField, Dict[str, Any]]:
    """
    Read a checkpoint written by save_checkpoint.

    Args:
        path: File stem (or either of the two files)
        lattice: Existing lattice to attach the field to; must match the
            saved topology (default: build a new one)

    Returns:
        (field, info) where info is the JSON metadata; pass
        info['updater'] to `GaugeUpdater.set_state` to resume a run
    """
    npz_path, json_path, source_path = _paths(path)
    with open(json_path, "r") as f:
        info = json.load(f)
    if info.get("format_version") != FORMAT_VERSION:
        raise ValueError(f"Unsupported checkpoint format {info.get('format_version')}")

    saved = Lattice(info["lattice"]["extents"], info["lattice"]["periodic"])
    if lattice is None:
        lattice = saved
    elif lattice != saved:
        raise ValueError(f"Checkpoint lattice {saved} does not match {lattice}")

    group = get_group(info["group"])
    precision = Precision.parse(info["precision"])
    with np.load(npz_path) as data:
        links = LinkMap(lattice, group, data["links"].astype(precision.complex_dtype),
                        data["present"].copy())

    source = VACUUM
    if info.get("has_source"):
        with open(source_path, "rb") as f:
            source = pickle.load(f)

    field = LatticeGaugeField(lattice, group, info["beta"], links, source, precision)
    logger.info(f"Loaded checkpoint from {json_path}")
    return field, info
