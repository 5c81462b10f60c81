"""
ANI atomic environment descriptors (symmetry functions) in PyTorch,
with a hand-written backprop from feature gradients to position gradients.
"""

from .basis import (
    AngularBasis,
    RadialBasis,
    StandardAngularBasis,
    TorchANIAngularBasis,
    select_convention,
)
from .config import AngularFunction, RadialFunction, SymmetryFunctionConfig
from .cutoff import CosineCutoff
from .exceptions import (
    BufferShapeError,
    ConfigurationError,
    GeometryError,
    StaleContextError,
    SymmetryFunctionError,
)
from .featurize import ForwardContext
from .neighborlist import NeighborFinder
from .session import ANISymmetryFunctions
from .species import num_species_pairs, species_pair_index

__all__ = [
    "ANISymmetryFunctions",
    "SymmetryFunctionConfig",
    "RadialFunction",
    "AngularFunction",
    "ForwardContext",
    "CosineCutoff",
    "NeighborFinder",
    "RadialBasis",
    "AngularBasis",
    "StandardAngularBasis",
    "TorchANIAngularBasis",
    "select_convention",
    "species_pair_index",
    "num_species_pairs",
    "SymmetryFunctionError",
    "ConfigurationError",
    "GeometryError",
    "BufferShapeError",
    "StaleContextError",
]
