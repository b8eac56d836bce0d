"""Shared fixtures for countnorm tests."""

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def counts():
    """10 genes x 6 libraries, every gene well expressed."""
    rng = np.random.default_rng(1337)
    values = rng.integers(50, 500, size=(10, 6))
    return pd.DataFrame(
        values,
        index=[f"gene_{i}" for i in range(10)],
        columns=[f"lib_{j}" for j in range(1, 7)],
    )


@pytest.fixture
def design(counts):
    """One design row per library in ``counts``."""
    return pd.DataFrame(
        {
            "lib.id": list(counts.columns),
            "group": ["ctrl", "ctrl", "ctrl", "treat", "treat", "treat"],
        }
    )


@pytest.fixture
def sparse_counts():
    """Counts with a mix of absent, rare and abundant genes."""
    return pd.DataFrame(
        {
            "lib_1": [0, 0, 1, 10, 200, 3],
            "lib_2": [0, 2, 0, 12, 180, 0],
            "lib_3": [0, 0, 0, 9, 220, 1],
            "lib_4": [0, 0, 0, 11, 210, 0],
        },
        index=["absent", "rare_a", "rare_b", "mid", "high", "low"],
    )
