"""Export utilities (CSV / JSON)."""
from __future__ import annotations
import json
import math
import os
import numpy as np
import pandas as pd
from typing import Iterable, Any


def ensure_dir(path: str) -> None:
    """Ensure directory exists (create if needed)."""
    os.makedirs(path, exist_ok=True)


def to_jsonable(data: Any) -> Any:
    """Recursively convert numpy scalars/arrays to Python types and NaN/inf to None."""
    if isinstance(data, dict):
        return {str(k): to_jsonable(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [to_jsonable(v) for v in data]
    if isinstance(data, np.ndarray):
        return [to_jsonable(v) for v in data.tolist()]
    if isinstance(data, np.generic):
        data = data.item()
    if isinstance(data, float) and not math.isfinite(data):
        return None
    return data


def write_json(path: str, data: Any, *, indent: int = 2) -> None:
    """Write JSON with UTF-8 encoding and indentation (NaN written as null)."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(to_jsonable(data), f, indent=indent, ensure_ascii=False)


def write_csv(path: str, df: pd.DataFrame) -> None:
    """Write DataFrame to CSV (UTF-8)."""
    df.to_csv(path, index=False)


def dataclasses_to_dataframe(items: Iterable[Any]) -> pd.DataFrame:
    """Convert a sequence of result objects exposing to_dict() to a DataFrame."""
    rows = [getattr(x, "to_dict")() if hasattr(x, "to_dict") else x for x in items]
    return pd.DataFrame(rows)


def write_table(outdir: str, stem: str, df: pd.DataFrame) -> list[str]:
    """Write df as <stem>.csv and <stem>.json (records) in outdir."""
    ensure_dir(outdir)
    csv_path = os.path.join(outdir, f"{stem}.csv")
    json_path = os.path.join(outdir, f"{stem}.json")
    write_csv(csv_path, df)
    write_json(json_path, df.to_dict(orient="records"))
    return [csv_path, json_path]
