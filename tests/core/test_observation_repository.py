"""Tests for ObservationRepository loading, normalization and filtering."""

import math

import numpy as np
import pandas as pd
import pytest

from coralstats.core import (
    ObservationFilter,
    ObservationRepository,
    apply_filter,
    unfiltered_columns,
)
from coralstats.core.repository import normalize_data_type
from coralstats.errors import DataUnavailable

pytestmark = pytest.mark.unit


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture
def data_dir(temp_dir):
    """Directory with small standardized survival/growth/fragmentation tables."""
    pd.DataFrame({
        "study": ["a", "a", "b", "c"],
        "region": ["Florida", "Florida", "USVI", "Curacao"],
        "location": ["Reef1", "Reef1", "Reef2", "Reef3"],
        "data_type": ["field", "Nursery ex situ", "nursery (in situ)", None],
        "size_cm2": [10.0, 200.0, 50.0, 3000.0],
        "size_live_cm2": [8.0, None, 40.0, 2500.0],
        "survived": [1, 0, 1, 1],
        "survey_yr": [2010, 2012, 2015, 2020],
        "fragment": ["Y", "N", "N", "Y"],
    }).to_csv(temp_dir / "apal_surv_ind.csv", index=False)
    pd.DataFrame({
        "study": ["a", "b"],
        "region": ["Florida", "USVI"],
        "data_type": ["field", "field"],
        "size_cm2": [10.0, 600.0],
        "growth_cm2_yr": [5.0, -100.0],
        "survey_yr": [2011, 2016],
    }).to_csv(temp_dir / "apal_growth_ind.csv", index=False)
    pd.DataFrame({
        "size_cm2": [100.0, 2500.0, 800.0],
        "n_recruits": [0, 3, None],
    }).to_csv(temp_dir / "apal_fragmentation.csv", index=False)
    return temp_dir


# =========================================================================
# Loading
# =========================================================================


class TestFromDirectory:

    def test_loads_all_tables(self, data_dir):
        repo = ObservationRepository.from_directory(data_dir)

        assert len(repo.survival()) == 4
        assert len(repo.growth()) == 2
        assert len(repo.fragmentation()) == 3
        assert repo.using_mock_data is False
        assert repo.load_errors == ()

    def test_live_tissue_size_preferred(self, data_dir):
        surv = ObservationRepository.from_directory(data_dir).survival()

        assert surv["size_cm2"].tolist() == [8.0, 200.0, 40.0, 2500.0]
        assert surv["size_total_cm2"].tolist() == [10.0, 200.0, 50.0, 3000.0]

    def test_columns_normalized(self, data_dir):
        surv = ObservationRepository.from_directory(data_dir).survival()

        assert surv["data_type"].tolist() == ["field", "nursery_ex", "nursery_in", "field"]
        assert surv["fragment_status"].tolist() == ["fragment", "colony", "colony", "fragment"]
        assert "survey_year" in surv.columns
        assert surv["id"].tolist() == [1, 2, 3, 4]

    def test_fragmentation_recruited_derived(self, data_dir):
        frag = ObservationRepository.from_directory(data_dir).fragmentation()

        assert frag["recruited"].iloc[0] == 0.0
        assert frag["recruited"].iloc[1] == 1.0
        assert np.isnan(frag["recruited"].iloc[2])

    def test_missing_fragmentation_is_optional(self, data_dir):
        (data_dir / "apal_fragmentation.csv").unlink()
        repo = ObservationRepository.from_directory(data_dir)

        assert repo.fragmentation() is None
        assert repo.load_errors == ()

    def test_missing_growth_recorded(self, data_dir):
        (data_dir / "apal_growth_ind.csv").unlink()
        repo = ObservationRepository.from_directory(data_dir)

        assert len(repo.load_errors) == 1
        with pytest.raises(DataUnavailable):
            repo.growth()

    def test_missing_directory(self, temp_dir):
        with pytest.raises(DataUnavailable, match="not found"):
            ObservationRepository.from_directory(temp_dir / "nope")

    def test_no_tables(self, temp_dir):
        with pytest.raises(DataUnavailable) as exc:
            ObservationRepository.from_directory(temp_dir)
        assert exc.value.code == "DATA_UNAVAILABLE"
        assert len(exc.value.details["errors"]) == 2

    def test_from_config_directory(self, data_dir, make_config):
        config = make_config(data_dir=str(data_dir))
        repo = ObservationRepository.from_config(config.data)

        assert len(repo.survival()) == 4

    def test_from_config_without_dir(self, internal_config):
        with pytest.raises(DataUnavailable, match="mock data is disabled"):
            ObservationRepository.from_config(internal_config.data)

    def test_from_config_mock(self, make_config):
        repo = ObservationRepository.from_config(make_config(use_mock_data=True).data)

        assert repo.using_mock_data is True


class TestMockData:

    def test_shape(self, mock_repository):
        assert len(mock_repository.survival()) == 500
        assert len(mock_repository.growth()) == 400
        assert len(mock_repository.fragmentation()) == 250

    def test_deterministic(self):
        a = ObservationRepository.mock(seed=3).survival()
        b = ObservationRepository.mock(seed=3).survival()

        pd.testing.assert_frame_equal(a, b)

    def test_columns(self, mock_repository):
        surv = mock_repository.survival()

        assert set(surv["survived"].unique()) <= {0, 1}
        assert set(surv["data_type"].unique()) <= {"field", "nursery_in", "nursery_ex"}
        assert set(surv["fragment_status"].unique()) <= {"fragment", "colony"}
        assert (surv["longitude"] < 0).all()
        assert surv["disturbance"].isna().any()

    def test_accessors_return_copies(self, mock_repository):
        surv = mock_repository.survival()
        surv["survived"] = -1

        assert (mock_repository.survival()["survived"] >= 0).all()

    def test_fragmentation_filtered_by_region(self, mock_repository):
        frag = mock_repository.fragmentation(ObservationFilter(regions=["Florida"]))
        everything = mock_repository.fragmentation()

        assert len(frag) > 0
        assert set(frag["region"]) == {"Florida"}
        assert len(frag) == (everything["region"] == "Florida").sum()

    def test_fragmentation_ignores_missing_columns(self, mock_repository):
        flt = ObservationFilter(regions=["Florida"], data_types=["field"], fragment_status="colony")
        frag = mock_repository.fragmentation(flt)

        assert unfiltered_columns(frag, flt) == ["data_type", "fragment_status"]
        assert len(frag) == len(mock_repository.fragmentation(ObservationFilter(regions=["Florida"])))


# =========================================================================
# Filtering
# =========================================================================


class TestApplyFilter:

    @pytest.fixture
    def frame(self):
        return pd.DataFrame({
            "region": ["Florida", "USVI", "Florida", "Curacao"],
            "data_type": ["field", "nursery_in", "field", "field"],
            "study": ["a", "b", "c", "a"],
            "survey_year": [2005, 2010, 2015, 2020],
            "size_cm2": [5.0, 50.0, 500.0, 5000.0],
            "fragment_status": ["fragment", "colony", "colony", None],
        })

    def test_no_filter_copies(self, frame):
        out = apply_filter(frame, None)

        assert out is not frame
        pd.testing.assert_frame_equal(out, frame)

    def test_region_and_type(self, frame):
        out = apply_filter(frame, ObservationFilter(regions=["Florida"], data_types=["field"]))

        assert out["study"].tolist() == ["a", "c"]

    def test_year_range_inclusive(self, frame):
        out = apply_filter(frame, ObservationFilter(year_range=(2010, 2015)))

        assert out["survey_year"].tolist() == [2010, 2015]

    def test_open_size_range(self, frame):
        out = apply_filter(frame, ObservationFilter(size_range=(-math.inf, 50.0)))

        assert out["size_cm2"].tolist() == [5.0, 50.0]

    def test_fragment_status(self, frame):
        out = apply_filter(frame, ObservationFilter(fragment_status="colony"))

        assert out["study"].tolist() == ["b", "c"]

    def test_studies(self, frame):
        out = apply_filter(frame, ObservationFilter(studies=["a"]))

        assert len(out) == 2

    def test_unfiltered_columns(self, frame):
        narrow = frame[["region", "size_cm2"]]

        assert unfiltered_columns(narrow, None) == []
        assert unfiltered_columns(narrow, ObservationFilter(regions=["Florida"])) == []
        assert unfiltered_columns(narrow, ObservationFilter(
            studies=["a"], year_range=(2000, 2010))) == ["study", "survey_year"]

    def test_describe(self):
        flt = ObservationFilter(regions=["Florida"], year_range=(2000, 2010))

        assert flt.describe() == {
            "region": ["Florida"],
            "data_type": None,
            "year_range": [2000, 2010],
            "size_range": None,
            "fragment": None,
        }


def test_normalize_data_type():
    values = pd.Series(["Field", "nursery", "Nursery ex-situ", None, "NURSERY_EX"])

    assert normalize_data_type(values).tolist() == [
        "field", "nursery_in", "nursery_ex", "field", "nursery_ex"
    ]
