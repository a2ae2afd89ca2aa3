r"""merchcore\engine\services\history_service.py

Adapters between tabular extracts and the engine's value objects.

Weekly sales history and SKU snapshots normally arrive from a sales ledger;
these helpers read them from CSV (preferring a sibling Parquet file when one
exists) and convert rows into ``HistoricalPoint`` / ``SKUSnapshot`` records.
``synthetic_history`` produces a seasonal demo series for environments
without a ledger extract.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any, Iterable, List, Optional

import numpy as np
import pandas as pd

from ..core.config import get_settings
from ..core.numeric import round_half_up
from ..models.schemas import HistoricalPoint, SKUSnapshot

LOGGER = logging.getLogger(__name__)

REQUIRED_HISTORY_COLS = ["period_index", "value"]
REQUIRED_SNAPSHOT_COLS = ["sku_id", "current_stock", "current_price", "cost_price"]

SEASONAL_CYCLE_WEEKS = 13
SEASONAL_AMPLITUDE = 0.2
WEEKLY_TREND = 0.005


def prefer_parquet(
    csv_path: str | Path,
    parquet_path: Optional[str | Path] = None,
    *,
    columns: Optional[Iterable[str]] = None,
    **csv_kwargs: Any,
) -> pd.DataFrame:
    """Load a dataset preferring Parquet with CSV fallback.

    Parameters
    ----------
    csv_path:
        Location of the canonical CSV file.
    parquet_path:
        Optional explicit Parquet path. When omitted we look for ``<csv>.parquet``.
    columns:
        Optional columns to read. Forwarded to the Parquet reader and mapped
        to ``usecols`` for CSV reads.
    csv_kwargs:
        Additional keyword arguments forwarded to :func:`pandas.read_csv`.
    """

    csv_path = Path(csv_path)
    pq_path = Path(parquet_path) if parquet_path is not None else csv_path.with_suffix(".parquet")
    column_list = list(columns) if columns is not None else None

    if pq_path.exists():
        return pd.read_parquet(pq_path, columns=column_list)

    if not csv_path.exists():
        raise FileNotFoundError(f"Neither {csv_path} nor {pq_path} exists")

    if column_list is not None and "usecols" not in csv_kwargs:
        csv_kwargs["usecols"] = column_list
    return pd.read_csv(csv_path, **csv_kwargs)


def resolve_data_path(path: str | Path) -> Path:
    """Return ``path`` when it exists as given, else the same path under ``Settings.data_dir``."""

    candidate = Path(path)
    if candidate.is_absolute() or candidate.exists() or candidate.with_suffix(".parquet").exists():
        return candidate
    return Path(get_settings().data_dir) / candidate


def _require_columns(frame: pd.DataFrame, required: List[str], source: Path) -> None:
    missing = [col for col in required if col not in frame.columns]
    if missing:
        raise ValueError(f"{source} is missing required columns: {', '.join(missing)}")


def history_from_frame(frame: pd.DataFrame) -> List[HistoricalPoint]:
    """Convert a ``period_index, value[, units]`` frame into ordered points."""

    ordered = frame.sort_values("period_index")
    has_units = "units" in ordered.columns
    points = []
    for row in ordered.itertuples(index=False):
        units = row.units if has_units else None
        points.append(
            HistoricalPoint(
                period_index=int(row.period_index),
                value=float(row.value),
                units=None if units is None or pd.isna(units) else float(units),
            )
        )
    return points


def load_history(path: str | Path) -> List[HistoricalPoint]:
    """Read a weekly series; rows are returned in chronological order."""

    source = resolve_data_path(path)
    frame = prefer_parquet(source)
    _require_columns(frame, REQUIRED_HISTORY_COLS, source)
    frame = frame.dropna(subset=REQUIRED_HISTORY_COLS)
    points = history_from_frame(frame)
    LOGGER.info("Loaded %d history points from %s", len(points), source)
    return points


def load_sku_snapshots(path: str | Path) -> List[SKUSnapshot]:
    """Read SKU snapshot rows; unknown columns are ignored."""

    source = resolve_data_path(path)
    frame = prefer_parquet(source, dtype={"sku_id": "string", "sku_code": "string"})
    _require_columns(frame, REQUIRED_SNAPSHOT_COLS, source)

    known = [col for col in frame.columns if col in SKUSnapshot.model_fields]
    snapshots = []
    for record in frame[known].to_dict(orient="records"):
        cleaned = {k: v for k, v in record.items() if not pd.isna(v)}
        snapshots.append(SKUSnapshot(**cleaned))

    LOGGER.info("Loaded %d SKU snapshots from %s", len(snapshots), source)
    return snapshots


def synthetic_history(
    weeks: int,
    base_value: float = 50_000.0,
    base_units: float = 500.0,
    seed: Optional[int] = None,
) -> List[HistoricalPoint]:
    """Generate a demo weekly series with seasonality, noise and a mild trend.

    Each week is scaled by a 13-week sine cycle (+/-20%), uniform noise in
    [0.9, 1.1) and a 0.5% per-week upward trend.  Passing ``seed`` makes the
    series reproducible.
    """

    if weeks <= 0:
        raise ValueError("weeks must be a positive integer")

    rng = np.random.default_rng(seed)
    points = []
    for offset in range(weeks, 0, -1):
        seasonal = 1 + SEASONAL_AMPLITUDE * math.sin(offset * math.pi / SEASONAL_CYCLE_WEEKS)
        noise = 0.9 + rng.random() * 0.2
        trend = 1 + (weeks - offset) * WEEKLY_TREND
        factor = seasonal * noise * trend
        points.append(
            HistoricalPoint(
                period_index=weeks - offset + 1,
                value=float(round_half_up(base_value * factor)),
                units=float(round_half_up(base_units * factor)),
            )
        )
    return points
