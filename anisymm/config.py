"""
Construction-time configuration for ANI symmetry functions.

The configuration is validated once, when it is created, and is immutable
afterwards.
"""

import math
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

import torch

from .exceptions import ConfigurationError
from .species import num_species_pairs, species_indices

__all__ = [
    'RadialFunction',
    'AngularFunction',
    'SymmetryFunctionConfig',
]


@dataclass(frozen=True)
class RadialFunction:
    """
    Radial symmetry function exp(-eta*(r - rs)^2).

    Parameters
    ----------
    eta : float
        Gaussian sharpness in 1/Angstrom^2, must be > 0
    rs : float
        Center distance in Angstroms, must be >= 0
    """

    eta: float
    rs: float

    def __post_init__(self):
        if not (self.eta > 0):
            raise ConfigurationError(
                f"radial function eta must be > 0, got {self.eta}")
        if not (self.rs >= 0):
            raise ConfigurationError(
                f"radial function rs must be >= 0, got {self.rs}")


@dataclass(frozen=True)
class AngularFunction:
    """
    Angular symmetry function.

    Parameters
    ----------
    eta : float
        Gaussian sharpness of the mean-distance term, must be > 0
    rs : float
        Center of the mean-distance term in Angstroms, must be >= 0
    zeta : float
        Angular sharpness, must be > 0
    theta_s : float
        Center angle in radians
    """

    eta: float
    rs: float
    zeta: float
    theta_s: float

    def __post_init__(self):
        if not (self.eta > 0):
            raise ConfigurationError(
                f"angular function eta must be > 0, got {self.eta}")
        if not (self.rs >= 0):
            raise ConfigurationError(
                f"angular function rs must be >= 0, got {self.rs}")
        if not (self.zeta > 0):
            raise ConfigurationError(
                f"angular function zeta must be > 0, got {self.zeta}")
        if not math.isfinite(self.theta_s):
            raise ConfigurationError(
                f"angular function theta_s must be finite, "
                f"got {self.theta_s}")


def _as_radial(fn: Union[RadialFunction, Sequence, Mapping]
               ) -> RadialFunction:
    if isinstance(fn, RadialFunction):
        return fn
    if isinstance(fn, Mapping):
        return RadialFunction(**fn)
    return RadialFunction(*fn)


def _as_angular(fn: Union[AngularFunction, Sequence, Mapping]
                ) -> AngularFunction:
    if isinstance(fn, AngularFunction):
        return fn
    if isinstance(fn, Mapping):
        return AngularFunction(**fn)
    return AngularFunction(*fn)


@dataclass
class SymmetryFunctionConfig:
    """
    Static configuration of a symmetry function session.

    Parameters
    ----------
    num_atoms : int
        Number of atoms, must be > 0
    num_species : int
        Number of species, must be > 0
    radial_cutoff : float
        Radial cutoff radius in Angstroms, must be > 0
    angular_cutoff : float
        Angular cutoff radius in Angstroms, must be > 0. Values above the
        radial cutoff are accepted with a warning.
    species : sequence of int or str
        Species of each atom, length num_atoms. Symbols are resolved
        through species_names.
    radial_functions : sequence of RadialFunction
        Radial functions; tuples (eta, rs) and mappings are converted.
    angular_functions : sequence of AngularFunction
        Angular functions; tuples (eta, rs, zeta, theta_s) and mappings
        are converted.
    periodic : bool, optional
        Whether a lattice is supplied with every call. Default: False
    torchani : bool, optional
        Select the TorchANI-compatible convention. Default: True
    max_image_shells : int, optional
        Largest number of periodic image shells searched in each lattice
        direction. Default: 1
    min_distance : float, optional
        Pairs closer than this are treated as coincident atoms and
        skipped. Default: 1e-8
    dtype : torch.dtype, optional
        Floating point type of all outputs. Default: torch.float64
    species_names : sequence of str, optional
        Element symbols, in species index order
    """

    num_atoms: int
    num_species: int
    radial_cutoff: float
    angular_cutoff: float
    species: Sequence[Union[int, str]]
    radial_functions: Sequence[RadialFunction]
    angular_functions: Sequence[AngularFunction]
    periodic: bool = False
    torchani: bool = True
    max_image_shells: int = 1
    min_distance: float = 1e-8
    dtype: torch.dtype = torch.float64
    species_names: Optional[Sequence[str]] = None
    _frozen: bool = field(default=False, init=False, repr=False,
                          compare=False)

    def __post_init__(self):
        """Validate and normalize configuration."""
        if int(self.num_atoms) <= 0:
            raise ConfigurationError(
                f"num_atoms must be > 0, got {self.num_atoms}")
        if int(self.num_species) <= 0:
            raise ConfigurationError(
                f"num_species must be > 0, got {self.num_species}")
        self.num_atoms = int(self.num_atoms)
        self.num_species = int(self.num_species)

        for name in ("radial_cutoff", "angular_cutoff"):
            value = getattr(self, name)
            if not (math.isfinite(value) and value > 0):
                raise ConfigurationError(f"{name} must be > 0, got {value}")
            setattr(self, name, float(value))
        if self.angular_cutoff > self.radial_cutoff:
            warnings.warn(
                f"angular_cutoff ({self.angular_cutoff}) exceeds "
                f"radial_cutoff ({self.radial_cutoff})",
                UserWarning,
            )

        if self.species_names is not None:
            self.species_names = tuple(self.species_names)
            if len(self.species_names) != self.num_species:
                raise ConfigurationError(
                    f"species_names has {len(self.species_names)} entries "
                    f"but num_species is {self.num_species}")
        species = tuple(species_indices(self.species, self.species_names))
        if len(species) != self.num_atoms:
            raise ConfigurationError(
                f"species length ({len(species)}) must match "
                f"num_atoms ({self.num_atoms})")
        for i, s in enumerate(species):
            if not 0 <= s < self.num_species:
                raise ConfigurationError(
                    f"species of atom {i} is {s}, expected a value in "
                    f"[0, {self.num_species})")
        self.species = species

        self.radial_functions = tuple(
            _as_radial(fn) for fn in self.radial_functions)
        self.angular_functions = tuple(
            _as_angular(fn) for fn in self.angular_functions)

        if int(self.max_image_shells) < 1:
            raise ConfigurationError(
                f"max_image_shells must be >= 1, "
                f"got {self.max_image_shells}")
        self.max_image_shells = int(self.max_image_shells)
        if not (self.min_distance >= 0):
            raise ConfigurationError(
                f"min_distance must be >= 0, got {self.min_distance}")
        if self.dtype not in (torch.float32, torch.float64):
            raise ConfigurationError(
                f"dtype must be torch.float32 or torch.float64, "
                f"got {self.dtype}")
        self.periodic = bool(self.periodic)
        self.torchani = bool(self.torchani)
        self._frozen = True

    def __setattr__(self, name, value):
        if getattr(self, "_frozen", False):
            raise AttributeError(
                f"SymmetryFunctionConfig is immutable; cannot set '{name}'")
        super().__setattr__(name, value)

    @property
    def num_species_pairs(self) -> int:
        """Number of unordered species pairs."""
        return num_species_pairs(self.num_species)

    @property
    def radial_shape(self) -> Tuple[int, int, int]:
        """Shape of the radial output, (atoms, species, functions)."""
        return (self.num_atoms, self.num_species,
                len(self.radial_functions))

    @property
    def angular_shape(self) -> Tuple[int, int, int]:
        """Shape of the angular output, (atoms, species pairs, functions)."""
        return (self.num_atoms, self.num_species_pairs,
                len(self.angular_functions))

    @classmethod
    def from_dict(cls, params: Mapping[str, Any]
                  ) -> "SymmetryFunctionConfig":
        """
        Create a configuration from a plain dictionary.

        Function lists may hold tuples or mappings, and `dtype` may be
        given by name ('float32' or 'float64').
        """
        params = dict(params)
        dtype = params.get("dtype")
        if isinstance(dtype, str):
            if not hasattr(torch, dtype):
                raise ConfigurationError(f"unknown dtype '{dtype}'")
            params["dtype"] = getattr(torch, dtype)
        try:
            return cls(**params)
        except TypeError as e:
            raise ConfigurationError(str(e)) from e

    def to_dict(self) -> Dict[str, Any]:
        """Plain dictionary that from_dict() accepts."""
        return {
            "num_atoms": self.num_atoms,
            "num_species": self.num_species,
            "radial_cutoff": self.radial_cutoff,
            "angular_cutoff": self.angular_cutoff,
            "species": list(self.species),
            "radial_functions": [
                {"eta": f.eta, "rs": f.rs} for f in self.radial_functions],
            "angular_functions": [
                {"eta": f.eta, "rs": f.rs, "zeta": f.zeta,
                 "theta_s": f.theta_s} for f in self.angular_functions],
            "periodic": self.periodic,
            "torchani": self.torchani,
            "max_image_shells": self.max_image_shells,
            "min_distance": self.min_distance,
            "dtype": str(self.dtype).replace("torch.", ""),
            "species_names": (list(self.species_names)
                              if self.species_names is not None else None),
        }
