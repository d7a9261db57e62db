"""Tests for transition counts and the transition probability table."""

import math

import numpy as np
import pandas as pd
import pytest

from coralstats.demography.size_classes import SizeClassifier
from coralstats.demography.transitions import (
    count_transitions,
    fate_counts,
    transition_probabilities,
)
from coralstats.errors import InsufficientData

pytestmark = pytest.mark.unit


@pytest.fixture
def classifier():
    return SizeClassifier([0, 25, 100, math.inf])


@pytest.fixture
def growth():
    """Two records per source class; one shrinks below the minimum final size."""
    return pd.DataFrame({
        "size_cm2":      [10.0, 10.0, 50.0, 50.0, 200.0, 200.0],
        "growth_cm2_yr": [5.0, 50.0, -45.0, 0.0, -250.0, 10.0],
    })


@pytest.fixture
def survival():
    return pd.DataFrame({
        "size_cm2": [10.0, 10.0, 50.0, 300.0, np.nan],
        "survived": [1, 0, 1, 1, 1],
    })


@pytest.fixture
def fragmentation():
    return pd.DataFrame({"size_cm2": [300.0, 300.0], "recruited": [1.0, 0.0]})


class TestFateCounts:

    def test_destination_rows_source_columns(self, growth, classifier):
        fates = fate_counts(growth, classifier)

        np.testing.assert_array_equal(fates, [
            [1, 1, 1],
            [1, 1, 0],
            [0, 0, 1],
        ])

    def test_final_size_floor(self, classifier):
        """A colony shrinking below zero ends in the smallest class."""
        frame = pd.DataFrame({"size_cm2": [500.0], "growth_cm2_yr": [-900.0]})

        assert fate_counts(frame, classifier)[0, 2] == 1

    def test_missing_and_non_positive_dropped(self, classifier):
        frame = pd.DataFrame({"size_cm2": [0.0, np.nan, 10.0],
                              "growth_cm2_yr": [5.0, 5.0, np.nan]})

        assert fate_counts(frame, classifier).sum() == 0


class TestTransitionProbabilities:

    def test_rows_sum_to_one(self, growth, classifier):
        table = transition_probabilities(growth, classifier, min_n=1)

        assert table["initial_class"].tolist() == ["SC1", "SC2", "SC3"]
        assert table["n"].tolist() == [2, 2, 2]
        np.testing.assert_allclose(table[["SC1", "SC2", "SC3"]].sum(axis=1), 1.0)
        assert table.loc[2, "SC1"] == 0.5
        assert table.loc[2, "SC2"] == 0.0

    def test_empty_source_class_omitted(self, classifier):
        frame = pd.DataFrame({"size_cm2": [10.0] * 25, "growth_cm2_yr": [1.0] * 25})
        table = transition_probabilities(frame, classifier)

        assert table["initial_class"].tolist() == ["SC1"]

    def test_minimum_records(self, growth, classifier):
        with pytest.raises(InsufficientData) as exc:
            transition_probabilities(growth, classifier, min_n=20)
        assert exc.value.details["minimum_required"] == 20


class TestCountTransitions:

    def test_counts(self, survival, growth, fragmentation, classifier):
        counts = count_transitions(survival, growth, classifier, fragmentation)

        assert counts.labels == ("SC1", "SC2", "SC3")
        np.testing.assert_array_equal(counts.survival_n, [2, 1, 1])
        np.testing.assert_array_equal(counts.survival_events, [1, 1, 1])
        np.testing.assert_array_equal(counts.fragmentation_n, [0, 0, 2])
        np.testing.assert_array_equal(counts.fragmentation_events, [0, 0, 1])
        assert counts.has_fragmentation

    def test_rates(self, survival, growth, fragmentation, classifier):
        counts = count_transitions(survival, growth, classifier, fragmentation)

        np.testing.assert_allclose(counts.survival_rates(), [0.5, 1.0, 1.0])
        np.testing.assert_allclose(counts.fragmentation_rates(), [0.0, 0.0, 0.5])
        np.testing.assert_allclose(counts.fate_probabilities().sum(axis=0), 1.0)

    def test_without_fragmentation(self, survival, growth, classifier):
        counts = count_transitions(survival, growth, classifier)

        assert not counts.has_fragmentation
        np.testing.assert_array_equal(counts.fragmentation_rates(), [0.0, 0.0, 0.0])
