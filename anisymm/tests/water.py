"""
Six water molecules with two species (O = 0, H = 1), in isolation and in
cubic and triclinic cells, with TorchANI reference features.
"""

import pathlib

import numpy as np

from anisymm import ANISymmetryFunctions

DATA_DIR = pathlib.Path(__file__).parent / "data"

WATER_POSITIONS = [
    [0.726, -1.384, -0.376],
    [-0.025, -0.828, -0.611],
    [1.456, -1.011, -0.923],
    [-1.324, 0.387, -0.826],
    [-1.923, 0.698, -1.548],
    [-1.173, 1.184, -0.295],
    [0.837, -1.041, 2.428],
    [1.024, -1.240, 1.461],
    [1.410, -1.677, 2.827],
    [2.765, 0.339, -1.505],
    [2.834, 0.809, -0.685],
    [3.582, -0.190, -1.593],
    [-0.916, 2.705, 0.799],
    [-0.227, 2.580, 1.426],
    [-0.874, 3.618, 0.468],
    [-2.843, -1.749, 0.001],
    [-2.928, -2.324, -0.815],
    [-2.402, -0.876, -0.235],
]

WATER_SPECIES = [0, 1, 1] * 6

RADIAL_FUNCTIONS = [(5.0, 2.0), (5.0, 3.0)]

ANGULAR_FUNCTIONS = [
    (5.0, 1.0, 10.0, 0.5),
    (5.0, 1.0, 10.0, 1.5),
    (5.0, 2.0, 10.0, 0.5),
    (5.0, 2.0, 10.0, 1.5),
]

LATTICES = {
    "nonperiodic": None,
    "cubic": [[9.0, 0.0, 0.0], [0.0, 9.0, 0.0], [0.0, 0.0, 9.0]],
    "triclinic": [[9.0, 0.0, 0.0], [1.5, 9.0, 0.0], [-0.5, -1.0, 9.0]],
}


def load_reference(geometry, kind):
    """TorchANI reference values, one row per atom."""
    path = DATA_DIR / f"water_{geometry}_{kind}.csv"
    return np.loadtxt(path, delimiter=",")


def make_water_session(geometry="nonperiodic", torchani=True, **kwargs):
    params = dict(
        num_atoms=len(WATER_POSITIONS),
        num_species=2,
        radial_cutoff=4.5,
        angular_cutoff=3.5,
        species=WATER_SPECIES,
        radial_functions=RADIAL_FUNCTIONS,
        angular_functions=ANGULAR_FUNCTIONS,
        periodic=LATTICES[geometry] is not None,
        torchani=torchani,
    )
    params.update(kwargs)
    return ANISymmetryFunctions(**params)

