"""Pytest configuration and shared fixtures for morphnorm tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    create_mock_screen,
    create_end_to_end_table,
    create_minimal_table,
)


# ============================================================================
# Mock Data Fixtures
# ============================================================================


@pytest.fixture
def screen_df() -> pd.DataFrame:
    """Create mock screen with 3 plates x 40 objects and a batch-sensitive feature."""
    return create_mock_screen(n_plates=3, n_per_plate=40, n_features=4)


@pytest.fixture
def screen_features(screen_df) -> list:
    """Feature columns of the mock screen."""
    return [c for c in screen_df.columns if c.startswith("Cells_")]


@pytest.fixture
def end_to_end():
    """Two plates x four rows with hand-computed expected values."""
    return create_end_to_end_table()


@pytest.fixture
def minimal_df() -> pd.DataFrame:
    """Two plates x three rows, one DMSO row per plate."""
    return create_minimal_table()


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


# ============================================================================
# File Fixtures
# ============================================================================


@pytest.fixture
def screen_csv(tmp_path, screen_df) -> Path:
    """Write the mock screen to CSV."""
    path = tmp_path / "screen.csv"
    screen_df.to_csv(path, index=False)
    return path


@pytest.fixture
def end_to_end_csv(tmp_path, end_to_end) -> Path:
    """Write the end-to-end table to CSV."""
    df, _ = end_to_end
    path = tmp_path / "e2e.csv"
    df.to_csv(path, index=False)
    return path


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def sample_normalization_config(tmp_path) -> Path:
    """Create sample normalization configuration file."""
    import yaml

    config = {
        "normalization": {
            "batch_key_column": "Metadata_Plate",
            "control_column": "Metadata_Compound",
            "control_values": ["DMSO"],
            "stabilization": {"quantile": 0.1},
            "variability": {"threshold": 0.5, "ddof": 1},
            "scaling": {"strategy": "pooled"},
            "on_failure": "drop",
            "n_workers": 2,
        },
    }

    path = tmp_path / "normalization.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(42)
