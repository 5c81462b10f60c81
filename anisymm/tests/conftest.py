"""
Shared fixtures for the water cluster.
"""

import pytest
import torch

from .water import LATTICES, WATER_POSITIONS, make_water_session


@pytest.fixture
def water_positions():
    return torch.tensor(WATER_POSITIONS, dtype=torch.float64)


@pytest.fixture(params=list(LATTICES))
def geometry(request):
    return request.param


@pytest.fixture(params=[True, False], ids=["torchani", "standard"])
def torchani(request):
    return request.param


@pytest.fixture
def lattice(geometry):
    cell = LATTICES[geometry]
    if cell is None:
        return None
    return torch.tensor(cell, dtype=torch.float64)


@pytest.fixture
def water_session(geometry, torchani):
    return make_water_session(geometry, torchani=torchani)
