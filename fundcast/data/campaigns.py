from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

import numpy as np
import pandas as pd

from fundcast.modeling.types import Outcome, Platform

logger = logging.getLogger(__name__)

COLUMNS = ["platform", "goal_usd", "raised_frac", "met_goal"]


@dataclass(frozen=True)
class CampaignRecord:
    platform: Platform
    goal_usd: float
    raised_frac: float
    met_goal: bool


Dataset = Union[pd.DataFrame, Iterable[CampaignRecord]]


def campaigns_frame(dataset: Dataset) -> pd.DataFrame:
    """Validate a normalized campaign dataset and return it as a DataFrame.

    Accepts a DataFrame carrying the contract columns or any iterable of
    `CampaignRecord`. Upstream ingestion is expected to have dropped bad rows
    already, so violations here are errors rather than filters.

    The returned `platform` column holds canonical names ("Kickstarter",
    "Indiegogo") as plain strings.
    """
    if isinstance(dataset, pd.DataFrame):
        missing = [c for c in COLUMNS if c not in dataset.columns]
        if missing:
            raise ValueError(f"Campaign data missing required columns: {missing}")
        df = dataset[COLUMNS].copy()
    else:
        rows = [asdict(r) if isinstance(r, CampaignRecord) else dict(r) for r in dataset]
        df = pd.DataFrame(rows, columns=COLUMNS)

    try:
        df["platform"] = pd.Series([Platform.parse(p).value for p in df["platform"]], index=df.index, dtype=object)
    except ValueError as e:
        raise ValueError(f"Campaign data has an unknown platform: {e}") from e

    df["goal_usd"] = pd.to_numeric(df["goal_usd"], errors="raise").astype(float)
    df["raised_frac"] = pd.to_numeric(df["raised_frac"], errors="raise").astype(float)
    df["met_goal"] = df["met_goal"].astype(bool)

    goal = df["goal_usd"].to_numpy()
    bad_goal = ~(np.isfinite(goal) & (goal > 0))
    if bad_goal.any():
        raise ValueError(f"goal_usd must be finite and > 0; {int(bad_goal.sum())} rows violate this")

    frac = df["raised_frac"].to_numpy()
    bad_frac = ~(np.isfinite(frac) & (frac >= 0))
    if bad_frac.any():
        raise ValueError(f"raised_frac must be finite and >= 0; {int(bad_frac.sum())} rows violate this")

    mismatched = df["met_goal"].to_numpy() != (frac >= 1.0)
    if mismatched.any():
        raise ValueError(f"met_goal disagrees with raised_frac >= 1 on {int(mismatched.sum())} rows")

    return df.reset_index(drop=True)


def load_campaigns(path: Path, *, min_rows: int = 1) -> pd.DataFrame:
    """Load an already-normalized campaign table (parquet or CSV)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Campaign table not found: {path}")

    if path.suffix.lower() == ".parquet":
        df = pd.read_parquet(path)
    else:
        df = pd.read_csv(path)

    if len(df) < int(min_rows):
        raise ValueError(f"Campaign table too small: {path} has {len(df)} rows, expected >= {min_rows}.")

    logger.info(f"Loaded {len(df):,} campaigns from {path}")
    return campaigns_frame(df)


def partition(df: pd.DataFrame, platform: Platform, outcome: Outcome) -> pd.DataFrame:
    met = outcome is Outcome.MET
    mask = (df["platform"] == Platform.parse(platform).value) & (df["met_goal"] == met)
    return df.loc[mask].reset_index(drop=True)


def subsample(
    df: pd.DataFrame,
    max_rows: Optional[int],
    rng: np.random.Generator,
) -> Tuple[pd.DataFrame, bool]:
    """Uniform random subsample without replacement, capped at `max_rows`.

    Returns (frame, subsampled?). Frames at or under the cap come back as-is.
    """
    if max_rows is None or len(df) <= int(max_rows):
        return df, False
    idx = rng.choice(len(df), size=int(max_rows), replace=False)
    idx.sort()
    return df.iloc[idx].reset_index(drop=True), True
