"""Root-level pytest fixtures for the coralstats test suite.

Provides shared configuration fixtures following the Pydantic-based
architecture, plus seeded synthetic observation tables. Tests use these
fixtures instead of creating raw dict configs.
"""

import logging
import shutil
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from coralstats.core.repository import ObservationRepository
from coralstats.demography.population_matrix import TransitionMatrix
from coralstats.schemas import ParamConfig, UserConfig, resolve_config


# =============================================================================
# Configuration Fixtures (Pydantic-based)
# =============================================================================

@pytest.fixture
def param_config():
    """Expert configuration with all defaults.

    Use this as the base for all test configs. Override specific values
    using make_config or by creating custom UserConfig instances.
    """
    return ParamConfig()


@pytest.fixture
def internal_config(param_config):
    """Fully validated runtime configuration (no overrides).

    Examples
    --------
    >>> def test_service_init(mock_repository, internal_config):
    ...     service = CoralQueryService(mock_repository, internal_config)
    ...     assert service.classifier.n_classes == 5
    """
    return resolve_config(param_config, None, None)


@pytest.fixture
def make_config(param_config):
    """Factory fixture for creating custom test configs.

    Returns a callable that accepts UserConfig-compatible kwargs.

    Examples
    --------
    >>> def test_fewer_replicates(make_config):
    ...     config = make_config(bootstrap_replicates=200)
    ...     assert config.population.bootstrap_replicates == 200
    """
    def _make(**user_overrides):
        """Create InternalConfig with user overrides."""
        if user_overrides:
            user = UserConfig(**user_overrides)
            return resolve_config(param_config, user, None)
        return resolve_config(param_config, None, None)

    return _make


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Temporary directory that is cleaned up after test."""
    d = tempfile.mkdtemp()
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def restore_root_logger():
    """Put the root logger's handlers and level back after the test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


# =============================================================================
# Observation Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def mock_repository():
    """Seeded synthetic dataset (500 survival / 400 growth rows)."""
    return ObservationRepository.mock(seed=42)


@pytest.fixture
def survival_frame():
    """Survival rows whose probability rises with log(size).

    400 rows across four studies and three regions, with a fixed seed.
    """
    rng = np.random.default_rng(7)
    n = 400
    size = rng.lognormal(4.0, 1.5, n)
    p = 1.0 / (1.0 + np.exp(-(-1.0 + 0.5 * np.log(size))))
    return pd.DataFrame({
        "study": rng.choice(["s1", "s2", "s3", "s4"], n),
        "region": rng.choice(["Florida", "USVI", "Curacao"], n),
        "data_type": "field",
        "size_cm2": size,
        "survived": rng.binomial(1, p),
        "survey_year": rng.integers(2010, 2020, n),
        "fragment_status": rng.choice(["fragment", "colony"], n),
    })


@pytest.fixture
def adult_dominated_matrix():
    """Five-class matrix whose largest cell is SC5 stasis (0.872)."""
    return TransitionMatrix.from_array([
        [0.30, 0.05, 0.02, 0.01, 0.01],
        [0.10, 0.40, 0.05, 0.02, 0.01],
        [0.00, 0.15, 0.50, 0.05, 0.02],
        [0.00, 0.00, 0.15, 0.60, 0.05],
        [0.00, 0.00, 0.00, 0.20, 0.872],
    ])
