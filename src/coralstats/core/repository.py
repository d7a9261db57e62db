"""Immutable observation repository.

Loads the standardized coral survival, growth and (optional) fragmentation
tables once at process start and hands out filtered copies per request.
Nothing downstream ever mutates the frames held here.

Key capabilities:
- Reads ``apal_surv_ind.csv`` / ``apal_growth_ind.csv`` / ``apal_fragmentation.csv``
- Normalizes data type, size and fragment-status columns
- Generates a seeded synthetic dataset for development when enabled
- Applies request filters (region, data type, year and size ranges, fragment)
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Sequence
import logging

import numpy as np
import pandas as pd

from coralstats.errors import DataUnavailable
from coralstats.schemas.internal import InternalDataConfig

__all__ = ['ObservationRepository', 'ObservationFilter', 'apply_filter', 'unfiltered_columns']

logger = logging.getLogger(__name__)

MOCK_REGIONS = ["Florida", "USVI", "Puerto Rico", "Curacao", "Navassa",
                "Dominican Republic", "Mexico"]
MOCK_STUDIES = ["NOAA_survey", "pausch_et_al_2018", "USGS_USVI_exp",
                "kuffner_et_al_2020", "fundemar_fragments", "mendoza_quiroz_et_al_2023"]
MOCK_STUDY_WEIGHTS = [0.4, 0.1, 0.1, 0.1, 0.2, 0.1]
DATA_TYPES = ("field", "nursery_in", "nursery_ex")

# ObservationFilter field -> table column it restricts
FILTER_COLUMNS = {
    "regions": "region",
    "data_types": "data_type",
    "studies": "study",
    "year_range": "survey_year",
    "size_range": "size_cm2",
    "fragment_status": "fragment_status",
}


def normalize_data_type(values: pd.Series) -> pd.Series:
    """Map free-text data types onto field / nursery_in / nursery_ex."""
    text = values.fillna("").astype(str)
    nursery = text.str.contains("nursery", case=False)
    ex_situ = text.str.contains("ex", case=False)
    out = pd.Series("field", index=values.index, dtype=object)
    out[nursery & ex_situ] = "nursery_ex"
    out[nursery & ~ex_situ] = "nursery_in"
    return out


def _normalize_observations(df: pd.DataFrame) -> pd.DataFrame:
    """Shared column normalization for survival and growth tables."""
    df = df.copy()
    df["id"] = np.arange(1, len(df) + 1)
    if "data_type" in df.columns:
        df["data_type"] = normalize_data_type(df["data_type"])
    else:
        df["data_type"] = "field"

    # Live tissue area classifies partially dead colonies
    if "size_live_cm2" in df.columns:
        df["size_total_cm2"] = df["size_cm2"]
        df["size_cm2"] = df["size_live_cm2"].fillna(df["size_cm2"])
    df["size_cm2"] = pd.to_numeric(df["size_cm2"], errors="coerce")

    if "survey_yr" in df.columns and "survey_year" not in df.columns:
        df = df.rename(columns={"survey_yr": "survey_year"})

    if "fragment" in df.columns:
        df["fragment_status"] = df["fragment"].map({"Y": "fragment", "N": "colony"})
    elif "fragment_status" not in df.columns:
        df["fragment_status"] = None

    for column in ("study", "region"):
        if column not in df.columns:
            df[column] = None
    return df


def _normalize_fragmentation(df: pd.DataFrame) -> pd.DataFrame:
    """Reduce fragmentation records to (size_cm2, recruited) rows."""
    df = df.copy()
    if "size_live_cm2" in df.columns:
        df["size_cm2"] = df["size_live_cm2"].fillna(df["size_cm2"])
    if "recruited" not in df.columns:
        if "n_recruits" not in df.columns:
            raise ValueError("fragmentation table needs a 'recruited' or 'n_recruits' column")
        df["recruited"] = (pd.to_numeric(df["n_recruits"], errors="coerce") > 0).astype(float)
        df.loc[df["n_recruits"].isna(), "recruited"] = np.nan
    df["size_cm2"] = pd.to_numeric(df["size_cm2"], errors="coerce")
    return df


@dataclass(frozen=True)
class ObservationFilter:
    """Row filter shared by every query.

    ``None`` means "do not filter on this dimension". Ranges are inclusive.
    """
    regions: Optional[Sequence[str]] = None
    data_types: Optional[Sequence[str]] = None
    year_range: Optional[tuple] = None
    size_range: Optional[tuple] = None
    fragment_status: Optional[str] = None
    studies: Optional[Sequence[str]] = None

    def describe(self) -> dict:
        """Echo of the active filters for error details and meta blocks."""
        return {
            "region": list(self.regions) if self.regions else None,
            "data_type": list(self.data_types) if self.data_types else None,
            "year_range": list(self.year_range) if self.year_range else None,
            "size_range": list(self.size_range) if self.size_range else None,
            "fragment": self.fragment_status,
        }


def apply_filter(df: pd.DataFrame, flt: Optional[ObservationFilter]) -> pd.DataFrame:
    """Return a filtered copy of ``df``."""
    if flt is None:
        return df.copy()
    mask = pd.Series(True, index=df.index)
    if flt.regions:
        mask &= df["region"].isin(list(flt.regions))
    if flt.data_types:
        mask &= df["data_type"].isin(list(flt.data_types))
    if flt.studies:
        mask &= df["study"].isin(list(flt.studies))
    if flt.year_range is not None and "survey_year" in df.columns:
        lo, hi = flt.year_range
        mask &= df["survey_year"].between(lo, hi)
    if flt.size_range is not None:
        lo, hi = flt.size_range
        mask &= df["size_cm2"].between(lo, hi)
    if flt.fragment_status is not None:
        mask &= df["fragment_status"] == flt.fragment_status
    return df.loc[mask].copy()


def unfiltered_columns(df: pd.DataFrame, flt: Optional[ObservationFilter]) -> list:
    """Columns an active filter restricts that ``df`` does not carry."""
    if flt is None:
        return []
    return [column for name, column in FILTER_COLUMNS.items()
            if getattr(flt, name) and column not in df.columns]


@dataclass(frozen=True)
class ObservationRepository:
    """Read-only holder of the loaded observation tables.

    Construct once (``from_directory``, ``from_config`` or ``mock``) and
    pass the instance into every query. Accessors return copies.

    Examples
    --------
    >>> repo = ObservationRepository.mock(seed=42)
    >>> repo.survival().shape[0]
    500
    """
    survival_data: Optional[pd.DataFrame]
    growth_data: Optional[pd.DataFrame]
    fragmentation_data: Optional[pd.DataFrame] = None
    using_mock_data: bool = False
    source: Optional[str] = None
    load_errors: tuple = field(default_factory=tuple)

    def survival(self, flt: Optional[ObservationFilter] = None) -> pd.DataFrame:
        """Filtered copy of the survival table; DataUnavailable if never loaded."""
        if self.survival_data is None:
            raise DataUnavailable("Survival data is not loaded. Please check server configuration.")
        return apply_filter(self.survival_data, flt)

    def growth(self, flt: Optional[ObservationFilter] = None) -> pd.DataFrame:
        """Filtered copy of the growth table; DataUnavailable if never loaded."""
        if self.growth_data is None:
            raise DataUnavailable("Growth data is not loaded. Please check server configuration.")
        return apply_filter(self.growth_data, flt)

    def fragmentation(self, flt: Optional[ObservationFilter] = None) -> Optional[pd.DataFrame]:
        """Filtered copy of the fragmentation table, or None when not available.

        Only the filter dimensions the table has columns for are applied;
        ``unfiltered_columns`` names the rest.
        """
        if self.fragmentation_data is None:
            return None
        missing = unfiltered_columns(self.fragmentation_data, flt)
        if missing:
            flt = replace(flt, **{name: None for name, column in FILTER_COLUMNS.items()
                                  if column in missing})
        return apply_filter(self.fragmentation_data, flt)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_config(cls, config: InternalDataConfig) -> "ObservationRepository":
        """Load from ``config.data_dir`` or fall back to mock data when enabled."""
        if config.use_mock_data:
            return cls.mock(seed=config.mock_seed)
        if config.data_dir is None:
            raise DataUnavailable("No data directory configured and mock data is disabled")
        return cls.from_directory(
            config.data_dir,
            survival_file=config.survival_file,
            growth_file=config.growth_file,
            fragmentation_file=config.fragmentation_file,
        )

    @classmethod
    def from_directory(cls, data_dir, survival_file: str = "apal_surv_ind.csv",
                       growth_file: str = "apal_growth_ind.csv",
                       fragmentation_file: str = "apal_fragmentation.csv") -> "ObservationRepository":
        """Read the standardized CSV tables from ``data_dir``.

        Parameters
        ----------
        data_dir : str or Path
            Directory holding the standardized tables.

        Returns
        -------
        ObservationRepository

        Raises
        ------
        DataUnavailable
            If the directory does not exist or neither core table can be read.
        """
        data_dir = Path(data_dir)
        if not data_dir.is_dir():
            raise DataUnavailable(f"Data directory not found: {data_dir}",
                                  details={"data_dir": str(data_dir)})

        load_errors = []

        def read(name: str, required: bool) -> Optional[pd.DataFrame]:
            path = data_dir / name
            if not path.exists():
                if required:
                    load_errors.append(f"File not found: {path}")
                return None
            try:
                frame = pd.read_csv(path)
            except (OSError, ValueError, pd.errors.ParserError) as e:
                load_errors.append(f"Failed to load {path}: {e}")
                return None
            logger.info("Loaded %d records from %s", len(frame), path)
            return frame

        survival = read(survival_file, required=True)
        growth = read(growth_file, required=True)
        fragmentation = read(fragmentation_file, required=False)

        if survival is not None:
            survival = _normalize_observations(survival)
        if growth is not None:
            growth = _normalize_observations(growth)
        if fragmentation is not None:
            try:
                fragmentation = _normalize_fragmentation(fragmentation)
            except ValueError as e:
                load_errors.append(f"Failed to load {data_dir / fragmentation_file}: {e}")
                fragmentation = None

        for err in load_errors:
            logger.warning("  - %s", err)

        if survival is None and growth is None:
            raise DataUnavailable("No observation tables could be loaded",
                                  details={"data_dir": str(data_dir), "errors": load_errors})

        logger.info("Data loading complete: %d survival, %d growth records",
                    0 if survival is None else len(survival),
                    0 if growth is None else len(growth))
        return cls(survival, growth, fragmentation, using_mock_data=False,
                   source=str(data_dir.resolve()), load_errors=tuple(load_errors))

    @classmethod
    def mock(cls, seed: int = 42, n_survival: int = 500, n_growth: int = 400) -> "ObservationRepository":
        """Seeded synthetic dataset for development only.

        Survival follows ``logit(p) = -1 + 0.5 log(size)``; growth has mean
        ``20 + 0.05 size`` and SD 30 cm²/yr. Every call with the same seed
        yields identical tables.
        """
        rng = np.random.default_rng(seed)

        def base(n: int, disturbances, disturbance_p) -> pd.DataFrame:
            return pd.DataFrame({
                "study": rng.choice(MOCK_STUDIES, n, p=MOCK_STUDY_WEIGHTS),
                "region": rng.choice(MOCK_REGIONS, n),
                "location": [f"Site_{k}" for k in rng.integers(1, 51, n)],
                "latitude": rng.uniform(17, 27, n),
                "longitude": rng.uniform(-88, -64, n),
                "depth_m": rng.uniform(1, 15, n),
                "survey_yr": rng.integers(2010, 2025, n),
                "data_type": rng.choice(DATA_TYPES, n, p=[0.6, 0.25, 0.15]),
                "coral_id": [f"C{k:04d}" for k in range(1, n + 1)],
                "size_cm2": rng.lognormal(mean=4.0, sigma=1.5, size=n),
                "fragment": rng.choice(["Y", "N"], n, p=[0.3, 0.7]),
                "time_interval_yr": 1,
                "disturbance": rng.choice(disturbances, n, p=disturbance_p),
            })

        survival = base(n_survival, ["", "storm", "MHW", "disease"], [0.8, 0.1, 0.05, 0.05])
        p_survive = 1.0 / (1.0 + np.exp(-(-1.0 + 0.5 * np.log(survival["size_cm2"]))))
        survival["survived"] = rng.binomial(1, p_survive)

        growth = base(n_growth, ["", "storm", "MHW"], [0.85, 0.1, 0.05])
        growth["growth_cm2_yr"] = rng.normal(20 + 0.05 * growth["size_cm2"], 30)

        n_frag = n_survival // 2
        frag_sizes = rng.lognormal(mean=5.0, sigma=1.5, size=n_frag)
        p_recruit = np.clip(0.02 * np.log1p(frag_sizes), 0.0, 0.5)
        fragmentation = pd.DataFrame({
            "study": rng.choice(MOCK_STUDIES, n_frag, p=MOCK_STUDY_WEIGHTS),
            "size_cm2": frag_sizes,
            "recruited": rng.binomial(1, p_recruit).astype(float),
            "region": rng.choice(MOCK_REGIONS, n_frag),
        })

        for frame in (survival, growth):
            frame["disturbance"] = frame["disturbance"].where(frame["disturbance"] != "", None)

        logger.warning("Created MOCK data with %d survival and %d growth records; "
                       "API responses will NOT reflect real data", n_survival, n_growth)
        return cls(_normalize_observations(survival), _normalize_observations(growth),
                   fragmentation, using_mock_data=True, source="mock")
