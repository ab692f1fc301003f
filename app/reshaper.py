"""
Flattening of JSON-stat2 datasets into labeled records.

JSON-stat stores cells as one flat array in row-major order over the
dimensions listed in `id` (the last dimension varies fastest):

    flat_index = sum(coord[k] * product(size[k+1:]))

decompose_index() inverts that formula, so every cell can be paired with the
category on each axis it belongs to.
"""

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import MalformedDataset
from .translator import category_codes, dimension_base_name


def decompose_index(flat_index: int, sizes: Sequence[int]) -> List[int]:
    """Split a flat row-major index into one coordinate per axis."""
    coords = [0] * len(sizes)
    remaining = flat_index
    for axis in range(len(sizes) - 1, -1, -1):
        coords[axis] = remaining % sizes[axis]
        remaining //= sizes[axis]
    if remaining:
        raise IndexError(f"Index {flat_index} is out of range for sizes {list(sizes)}")
    return coords


def compose_index(coords: Sequence[int], sizes: Sequence[int]) -> int:
    """Inverse of decompose_index()."""
    if len(coords) != len(sizes):
        raise ValueError("coords and sizes must have the same length")
    flat_index = 0
    for coord, size in zip(coords, sizes):
        if not 0 <= coord < size:
            raise IndexError(f"Coordinate {coord} is out of range for axis size {size}")
        flat_index = flat_index * size + coord
    return flat_index


def _axis_categories(dataset: Dict[str, Any]) -> List[List[str]]:
    """Category codes per axis, ordered by ordinal position, after checking the shape invariants."""
    dim_ids = dataset.get("id") or []
    sizes = dataset.get("size") or []
    dimensions = dataset.get("dimension") or {}

    if len(dim_ids) != len(sizes):
        raise MalformedDataset(f"Dataset has {len(dim_ids)} dimension ids but {len(sizes)} sizes")

    axes = []
    for code, size in zip(dim_ids, sizes):
        if code not in dimensions:
            raise MalformedDataset(f"Dimension '{code}' is listed in id but not described")
        index = (dimensions[code].get("category") or {}).get("index")
        if isinstance(index, dict) and sorted(index.values()) != list(range(len(index))):
            raise MalformedDataset(f"Category index of '{code}' is not a permutation of 0..{len(index) - 1}")
        codes = category_codes(dimensions[code])
        if len(codes) != size:
            raise MalformedDataset(f"Dimension '{code}' has {len(codes)} categories but size {size}")
        axes.append(codes)
    return axes


def _cell(values: Any, flat_index: int) -> Any:
    if isinstance(values, Mapping):
        return values.get(str(flat_index))
    return values[flat_index]


def _base_names(dim_ids: Sequence[str]) -> Dict[str, str]:
    """Base name per dimension, falling back to the code when two dimensions collide."""
    proposed = {code: dimension_base_name(code) for code in dim_ids}
    counts: Dict[str, int] = {}
    for name in proposed.values():
        counts[name] = counts.get(name, 0) + 1
    return {code: name if counts[name] == 1 else code for code, name in proposed.items()}


def _summarize(records: List[Dict[str, Any]], total: int, base_names: Sequence[str]) -> Dict[str, Any]:
    numbers = [record["value"] for record in records if isinstance(record["value"], (int, float))]
    summary: Dict[str, Any] = {
        "total_records": total,
        "dimensions": sorted(base_names),
        "non_null_values": len(numbers),
        "null_values": sum(1 for record in records if record["value"] is None),
    }
    if numbers:
        summary["min"] = min(numbers)
        summary["max"] = max(numbers)
        summary["mean"] = round(sum(numbers) / len(numbers), 4)
    return summary


def transform_to_structured_data(
    dataset: Dict[str, Any],
    selection: Optional[Mapping[str, Any]] = None,
    table_id: Optional[str] = None,
    max_records: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Flatten a JSON-stat2 dataset into records.

    Args:
        dataset: JSON-stat2 dataset as returned by the data endpoint
        selection: The selection the caller asked for, echoed in `query`
        table_id: The table id the caller asked for, echoed in `query`.
            It is never derived from the dataset itself.
        max_records: Optional cap on returned records; summary still counts every cell

    Returns:
        Dict with `query`, `data` (records), `metadata` and `summary`
    """
    dim_ids = list(dataset.get("id") or [])
    sizes = list(dataset.get("size") or [])
    dimensions = dataset.get("dimension") or {}
    axes = _axis_categories(dataset)

    total = math.prod(sizes) if sizes else 0
    values = dataset.get("value")
    if values is None:
        values = {}
    if not isinstance(values, Mapping) and len(values) != total:
        raise MalformedDataset(f"Dataset has {len(values)} values but its sizes describe {total} cells")
    status = dataset.get("status")

    base_names = _base_names(dim_ids)
    labels = [(dimensions[code].get("category") or {}).get("label") or {} for code in dim_ids]

    limit = total if max_records is None else min(total, max(0, max_records))
    records: List[Dict[str, Any]] = []
    for flat_index in range(total):
        coords = decompose_index(flat_index, sizes)
        record: Dict[str, Any] = {}
        for axis, code in enumerate(dim_ids):
            category = axes[axis][coords[axis]]
            record[base_names[code]] = labels[axis].get(category, category)
            record[f"{base_names[code]}_code"] = category
        record["value"] = _cell(values, flat_index)
        if status:
            if isinstance(status, str):
                cell_status = status
            elif isinstance(status, Mapping) or flat_index < len(status):
                cell_status = _cell(status, flat_index)
            else:
                cell_status = None
            if cell_status is not None:
                record["status"] = cell_status
        records.append(record)

    summary = _summarize(records, total, list(base_names.values()))

    return {
        "query": {"table_id": table_id, "selection": dict(selection) if selection else {}},
        "data": records[:limit],
        "metadata": {
            "label": dataset.get("label"),
            "source": dataset.get("source"),
            "updated": dataset.get("updated"),
            "size": sizes,
            "dimensions": {
                code: {
                    "base_name": base_names[code],
                    "label": dimensions[code].get("label") or code,
                    "size": size,
                }
                for code, size in zip(dim_ids, sizes)
            },
        },
        "summary": summary,
    }
