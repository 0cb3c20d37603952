"""Flat-table persistence for fitted models and compiled posteriors.

The per-platform model table is the interchange format between a fitting run
and any later querying process. CSV is written with 17 significant digits and
read back with round-trip float parsing so every parameter survives exactly;
`.parquet` paths store native float64.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

import joblib
import pandas as pd

from fundcast.modeling.fit import FitResult, PartitionRecord
from fundcast.modeling.types import (
    GAMMA_PARAMS,
    PARTITIONS,
    FittedModel,
    GammaParams,
    GammaPosterior,
    Interval,
    Outcome,
    ParameterSummary,
    PartitionKey,
    Platform,
    PlatformParams,
)

logger = logging.getLogger(__name__)

MODEL_COLUMNS = [
    "c0",
    "c1",
    "alpha_under",
    "alpha_met",
    "beta0_under",
    "beta0_met",
    "beta1_under",
    "beta1_met",
]


def _write(df: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".parquet":
        df.to_parquet(path, index=False)
    else:
        df.to_csv(path, index=False, float_format="%.17g")


def _read(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Table not found: {path}")
    try:
        if path.suffix.lower() == ".parquet":
            return pd.read_parquet(path)
        return pd.read_csv(path, float_precision="round_trip")
    except Exception as e:
        raise RuntimeError(f"Error reading table {path}: {e}") from e


# -----------------------------
# Fitted model (one row per platform)
# -----------------------------


def model_to_frame(model: FittedModel) -> pd.DataFrame:
    rows = []
    for plat in Platform:
        p = model.params(plat)
        row = {"platform": plat.value, "c0": p.c0, "c1": p.c1}
        for name in GAMMA_PARAMS:
            row[f"{name}_under"] = getattr(p.under, name)
            row[f"{name}_met"] = getattr(p.met, name)
        rows.append(row)
    return pd.DataFrame(rows, columns=["platform"] + MODEL_COLUMNS)


def model_from_frame(df: pd.DataFrame) -> FittedModel:
    missing = [c for c in ["platform"] + MODEL_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Model table missing columns: {missing}")

    platforms = [Platform.parse(p) for p in df["platform"]]
    if sorted(p.value for p in platforms) != sorted(p.value for p in Platform):
        raise ValueError(f"Model table needs exactly one row per platform, got {[p.value for p in platforms]}")

    blocks: Dict[Platform, PlatformParams] = {}
    for plat, (_, row) in zip(platforms, df.iterrows()):
        blocks[plat] = PlatformParams(
            c0=float(row["c0"]),
            c1=float(row["c1"]),
            under=GammaParams(**{name: float(row[f"{name}_under"]) for name in GAMMA_PARAMS}),
            met=GammaParams(**{name: float(row[f"{name}_met"]) for name in GAMMA_PARAMS}),
        )
    return FittedModel(kickstarter=blocks[Platform.KICKSTARTER], indiegogo=blocks[Platform.INDIEGOGO])


def save_model(model: FittedModel, path: Path) -> None:
    path = Path(path)
    _write(model_to_frame(model), path)
    logger.info(f"Saved model table: {path}")


def load_model(path: Path) -> FittedModel:
    return model_from_frame(_read(Path(path)))


# -----------------------------
# Compiled posteriors (one row per platform x outcome)
# -----------------------------


def posteriors_to_frame(
    posteriors: Mapping[PartitionKey, GammaPosterior],
    partitions: Optional[Mapping[PartitionKey, PartitionRecord]] = None,
) -> pd.DataFrame:
    rows = []
    for key in PARTITIONS:
        if key not in posteriors:
            continue
        post = posteriors[key]
        row = {"platform": key[0].value, "outcome": key[1].value}
        for name in GAMMA_PARAMS:
            s = post.summary(name)
            row[f"{name}_median"] = s.median
            row[f"{name}_low"] = s.ci95.low
            row[f"{name}_high"] = s.ci95.high
            row[f"{name}_rhat"] = post.r_hat.get(name, float("nan"))
        row["n_chains"] = post.n_chains
        row["n_draws"] = post.n_draws
        if partitions and key in partitions:
            row["n_records"] = partitions[key].n_records
            row["n_used"] = partitions[key].n_used
        rows.append(row)
    return pd.DataFrame(rows)


def posteriors_from_frame(df: pd.DataFrame) -> Dict[PartitionKey, GammaPosterior]:
    out: Dict[PartitionKey, GammaPosterior] = {}
    for _, row in df.iterrows():
        key = (Platform.parse(row["platform"]), Outcome.parse(row["outcome"]))
        if key in out:
            raise ValueError(f"Duplicate posterior row for {key[0].value}/{key[1].value}")
        summaries = {
            name: ParameterSummary(
                median=float(row[f"{name}_median"]),
                ci95=Interval(low=float(row[f"{name}_low"]), high=float(row[f"{name}_high"])),
            )
            for name in GAMMA_PARAMS
        }
        out[key] = GammaPosterior(
            platform=key[0],
            outcome=key[1],
            n_chains=int(row["n_chains"]),
            n_draws=int(row["n_draws"]),
            r_hat={name: float(row[f"{name}_rhat"]) for name in GAMMA_PARAMS},
            **summaries,
        )
    return out


def save_posteriors(
    posteriors: Mapping[PartitionKey, GammaPosterior],
    path: Path,
    partitions: Optional[Mapping[PartitionKey, PartitionRecord]] = None,
) -> None:
    path = Path(path)
    _write(posteriors_to_frame(posteriors, partitions), path)
    logger.info(f"Saved posterior table: {path}")


def load_posteriors(path: Path) -> Dict[PartitionKey, GammaPosterior]:
    return posteriors_from_frame(_read(Path(path)))


# -----------------------------
# Full fit bundle
# -----------------------------


def save_fit_result(result: FitResult, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(result, path)
    logger.info(f"Saved fit result: {path}")


def load_fit_result(path: Path) -> FitResult:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Fit result not found: {path}")
    try:
        obj = joblib.load(path)
    except Exception as e:
        raise RuntimeError(f"Error loading fit result {path}: {e}") from e
    if not isinstance(obj, FitResult):
        raise RuntimeError(f"{path} does not hold a FitResult (got {type(obj).__name__})")
    return obj
