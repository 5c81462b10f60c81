"""
Public entry point: ANI symmetry functions and their backprop.

The forward call returns the features together with a ForwardContext; the
backward call consumes that context instead of hidden instance state.

Example:
    >>> ani = ANISymmetryFunctions(
    ...     num_atoms=3, num_species=2, radial_cutoff=4.5,
    ...     angular_cutoff=3.5, species=[0, 1, 1],
    ...     radial_functions=[(5.0, 2.0)],
    ...     angular_functions=[(5.0, 1.0, 10.0, 0.5)])
    >>> radial, angular, context = ani.compute_symmetry_functions(positions)
    >>> dpos = ani.backprop(context, dL_dradial, dL_dangular)
"""

import logging
from typing import Optional, Tuple

import torch

from .backprop import BackpropEngine
from .basis import RadialBasis, select_convention
from .buffers import ArrayLike, input_view, output_view
from .config import SymmetryFunctionConfig
from .exceptions import ConfigurationError, GeometryError, StaleContextError
from .featurize import AngularExpansion, ForwardContext, RadialExpansion
from .graph import build_csr_from_neighborlist, build_triplets_from_csr
from .neighborlist import NeighborFinder
from .species import species_pair_table

logger = logging.getLogger(__name__)

__all__ = ["ANISymmetryFunctions"]


class ANISymmetryFunctions:
    """
    ANI radial and angular symmetry functions of a fixed set of atoms.

    Args:
        config: SymmetryFunctionConfig; alternatively its fields as
            keyword arguments
        device: 'cpu' or 'cuda'
    """

    def __init__(
        self,
        config: Optional[SymmetryFunctionConfig] = None,
        device: str = "cpu",
        **kwargs,
    ):
        if config is None:
            config = SymmetryFunctionConfig(**kwargs)
        elif kwargs:
            raise ConfigurationError(
                "pass either a SymmetryFunctionConfig or keyword "
                f"arguments, not both (got {sorted(kwargs)})")
        self.config = config
        self.device = device
        self.dtype = config.dtype
        self.convention = select_convention(config.torchani)

        self._species = torch.tensor(
            config.species, dtype=torch.long, device=device)
        self.radial_basis = RadialBasis(
            config.radial_functions,
            config.radial_cutoff,
            scale=self.convention.radial_scale,
            dtype=self.dtype,
        ).to(device)
        self.angular_basis = self.convention.angular_basis(
            config.angular_functions,
            config.angular_cutoff,
            dtype=self.dtype,
        ).to(device)

        self.max_cutoff = max(config.radial_cutoff, config.angular_cutoff)
        self.nbl = NeighborFinder(
            cutoff=self.max_cutoff,
            max_image_shells=config.max_image_shells,
            min_distance=config.min_distance,
            device=device,
            dtype=self.dtype,
        )
        self.radial_expansion = RadialExpansion(
            self.radial_basis, self._species, config.num_species)
        self.angular_expansion = AngularExpansion(
            self.angular_basis, self._species,
            species_pair_table(config.num_species, device=device))
        self.engine = BackpropEngine(self.radial_basis, self.angular_basis)

        # Identifies contexts produced by this session
        self._token = object()

    @property
    def num_atoms(self) -> int:
        return self.config.num_atoms

    @property
    def num_species(self) -> int:
        return self.config.num_species

    @property
    def num_species_pairs(self) -> int:
        return self.config.num_species_pairs

    @property
    def radial_functions(self):
        return self.config.radial_functions

    @property
    def angular_functions(self):
        return self.config.angular_functions

    @property
    def periodic(self) -> bool:
        return self.config.periodic

    @property
    def torchani(self) -> bool:
        return self.config.torchani

    @property
    def radial_shape(self) -> Tuple[int, int, int]:
        return self.config.radial_shape

    @property
    def angular_shape(self) -> Tuple[int, int, int]:
        return self.config.angular_shape

    def compute_symmetry_functions(
        self,
        positions: ArrayLike,
        lattice: Optional[ArrayLike] = None,
        radial_out: Optional[ArrayLike] = None,
        angular_out: Optional[ArrayLike] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor, ForwardContext]:
        """
        Compute radial and angular symmetry functions.

        Args:
            positions: (N, 3) Cartesian positions, or 3N values
            lattice: (3, 3) lattice vectors as rows, or 9 values; required
                in periodic mode and forbidden otherwise
            radial_out: Optional caller buffer of N*S*n_radial values
            angular_out: Optional caller buffer of N*P*n_angular values

        Returns
        -------
            radial: (N, S, n_radial) view of radial_out (or new tensor)
            angular: (N, P, n_angular) view of angular_out (or new tensor)
            context: ForwardContext for backprop()

        Raises
        ------
            GeometryError: On malformed positions, a missing or unexpected
                lattice, or a lattice too small for the cutoff
            ConfigurationError: On a zero-volume lattice
            BufferShapeError: On output buffers of the wrong size or type
        """
        if self.periodic and lattice is None:
            raise GeometryError("periodic mode requires a lattice")
        if not self.periodic and lattice is not None:
            raise GeometryError(
                "a lattice was given but the session is not periodic")

        n_atoms = self.num_atoms
        try:
            pos = input_view(positions, (n_atoms, 3), "positions",
                             self.dtype, self.device)
        except ValueError as e:
            raise GeometryError(str(e)) from e
        if not torch.all(torch.isfinite(pos)):
            raise GeometryError("positions contain non-finite values")

        neighbors = self.nbl.get_neighbors(pos, lattice)
        radial = output_view(radial_out, self.radial_shape, "radial",
                             self.dtype, self.device)
        angular = output_view(angular_out, self.angular_shape, "angular",
                              self.dtype, self.device)

        csr = build_csr_from_neighborlist(
            neighbors, n_atoms, self.max_cutoff)
        triplets = build_triplets_from_csr(
            csr, self.config.angular_cutoff)
        logger.debug(
            "compute_symmetry_functions: %d pairs, %d triplets",
            csr["nbr_idx"].numel(), triplets["tri_i"].numel())

        radial_cache = self.radial_expansion(csr, radial)
        angular_cache = self.angular_expansion(csr, triplets, angular)

        context = ForwardContext(
            token=self._token,
            num_atoms=n_atoms,
            radial=radial_cache,
            angular=angular_cache,
        )
        return radial, angular, context

    def _check_context(self, context: Optional[ForwardContext]) -> None:
        if context is None:
            raise StaleContextError(
                "backprop requires the context returned by "
                "compute_symmetry_functions()")
        if not isinstance(context, ForwardContext) or \
                context.token is not self._token:
            raise StaleContextError(
                "context was not produced by this ANISymmetryFunctions "
                "instance")

    def backprop(
        self,
        context: ForwardContext,
        radial_grad: ArrayLike,
        angular_grad: ArrayLike,
        out: Optional[ArrayLike] = None,
    ) -> torch.Tensor:
        """
        Gradient of a scalar w.r.t. atom positions from its gradient
        w.r.t. the symmetry functions.

        Args:
            context: ForwardContext of the forward call the gradients
                refer to
            radial_grad: N*S*n_radial values, dL/d(radial)
            angular_grad: N*P*n_angular values, dL/d(angular)
            out: Optional caller buffer of 3N values; overwritten

        Returns
        -------
            (N, 3) view of out (or new tensor) holding dL/d(positions)

        Raises
        ------
            StaleContextError: If context is missing or foreign
            BufferShapeError: On buffers of the wrong size or type
        """
        self._check_context(context)
        radial_grad = input_view(radial_grad, self.radial_shape,
                                 "radial_grad", self.dtype, self.device)
        angular_grad = input_view(angular_grad, self.angular_shape,
                                  "angular_grad", self.dtype, self.device)
        position_grad = output_view(out, (self.num_atoms, 3), "out",
                                    self.dtype, self.device)
        return self.engine.backprop(
            context, radial_grad, angular_grad, position_grad)

    def jacobian(
        self, context: ForwardContext
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Derivatives of all symmetry functions w.r.t. all positions.

        Returns
        -------
            radial_jac: (N, S, n_radial, N, 3)
            angular_jac: (N, P, n_angular, N, 3)
        """
        self._check_context(context)
        return self.engine.jacobian(
            context, self.radial_shape, self.angular_shape)

    def combined_features(
        self, radial: torch.Tensor, angular: torch.Tensor
    ) -> torch.Tensor:
        """
        Per-atom feature vectors, radial followed by angular functions.

        Returns
        -------
            (N, S*n_radial + P*n_angular) tensor
        """
        n_atoms = self.num_atoms
        return torch.cat(
            [radial.reshape(n_atoms, -1), angular.reshape(n_atoms, -1)],
            dim=1)

    def __repr__(self) -> str:
        return (
            f"ANISymmetryFunctions(num_atoms={self.num_atoms}, "
            f"num_species={self.num_species}, "
            f"radial_cutoff={self.config.radial_cutoff}, "
            f"angular_cutoff={self.config.angular_cutoff}, "
            f"periodic={self.periodic}, "
            f"convention='{self.convention.name}')"
        )
