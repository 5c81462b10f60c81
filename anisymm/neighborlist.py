"""
PyTorch-based neighbor search for atomic structures.

Supports:
- Isolated systems (molecules)
- Periodic boundary conditions with orthogonal and triclinic cells
- Several periodic images of the same atom within the cutoff
- Double precision
"""

import logging
import warnings
from typing import Dict, Optional, Union

import numpy as np
import torch

from .exceptions import ConfigurationError, GeometryError

logger = logging.getLogger(__name__)

__all__ = ["NeighborFinder", "validate_lattice"]


def validate_lattice(
    lattice: Union[np.ndarray, torch.Tensor],
    dtype: torch.dtype = torch.float64,
    device: str = "cpu",
) -> torch.Tensor:
    """
    Validate a lattice and return it as a (3, 3) tensor.

    Args:
        lattice: (3, 3) lattice vectors as rows, or 9 values in row order

    Raises
    ------
        ConfigurationError: If the lattice has the wrong number of values,
            non-finite entries or zero volume
    """
    if not isinstance(lattice, torch.Tensor):
        lattice = np.asarray(lattice, dtype=np.float64)
    cell = torch.as_tensor(lattice).to(device=device, dtype=dtype)
    if cell.numel() != 9:
        raise ConfigurationError(
            f"lattice must have 9 values (3x3), got {cell.numel()}")
    cell = cell.reshape(3, 3)
    if not torch.all(torch.isfinite(cell)):
        raise ConfigurationError("lattice contains non-finite values")
    volume = torch.abs(torch.det(cell)).item()
    scale = torch.linalg.vector_norm(cell, dim=1).prod().item()
    if volume <= 1e-12 * max(scale, 1e-300):
        raise ConfigurationError(
            f"lattice vectors span a cell of volume {volume:.6g}; "
            "a positive volume is required")
    return cell


class NeighborFinder:
    """
    Neighbor search within a fixed cutoff.

    Pairs are ordered (both i->j and j->i are returned) and carry the
    displacement vector from the center atom to the periodic image of the
    neighbor that is within the cutoff. An atom may be a neighbor of its
    own periodic images; the zero-offset self pair is never returned.

    Example:
        >>> finder = NeighborFinder(cutoff=4.5)
        >>> positions = torch.randn(10, 3, dtype=torch.float64)
        >>> result = finder.get_neighbors(positions)
        >>> edge_index = result['edge_index']  # (2, num_edges)
        >>> vectors = result['vectors']        # (num_edges, 3)
    """

    def __init__(
        self,
        cutoff: float,
        max_image_shells: int = 1,
        min_distance: float = 1e-8,
        device: str = "cpu",
        dtype: torch.dtype = torch.float64,
    ):
        """
        Initialize neighbor search.

        Args:
            cutoff: Interaction cutoff radius in Angstroms. Pairs with
                distance < cutoff are neighbors.
            max_image_shells: Largest number of periodic images searched
                on either side of the central cell along each lattice
                direction. Cells requiring more raise GeometryError.
            min_distance: Pairs closer than this are coincident atoms;
                they are skipped with a RuntimeWarning.
            device: 'cpu' or 'cuda'
            dtype: torch.float32 or torch.float64 (recommended: float64)
        """
        if not cutoff > 0:
            raise ConfigurationError(f"cutoff must be > 0, got {cutoff}")
        self.cutoff = float(cutoff)
        self.max_image_shells = int(max_image_shells)
        self.min_distance = float(min_distance)
        self.device = device
        self.dtype = dtype

    def get_neighbors(
        self,
        positions: torch.Tensor,
        lattice: Optional[torch.Tensor] = None,
    ) -> Dict[str, Optional[torch.Tensor]]:
        """
        Unified interface for neighbor finding.

        Args:
            positions: (N, 3) Cartesian atom positions in Angstroms
            lattice: (3, 3) lattice vectors as rows (None for isolated
                systems)

        Returns
        -------
            Dictionary containing:
            - 'edge_index': (2, num_edges) neighbor pairs [center, neighbor],
                sorted by center
            - 'vectors': (num_edges, 3) displacement center -> neighbor image
            - 'distances': (num_edges,) pairwise distances in Angstroms
            - 'offsets': (num_edges, 3) integer lattice offsets of the
                neighbor image (None for isolated systems)
            - 'num_neighbors': (N,) number of neighbors per atom
        """
        positions = positions.to(self.device).to(self.dtype)
        if lattice is None:
            diff = positions.unsqueeze(0) - positions.unsqueeze(1)
            vectors = diff.unsqueeze(2)  # (N, N, 1, 3)
            offset_grid = None
            wrap = None
        else:
            lattice = validate_lattice(lattice, self.dtype, self.device)
            vectors, offset_grid, wrap = self._periodic_displacements(
                positions, lattice)

        n_atoms = positions.shape[0]
        distances = torch.linalg.vector_norm(vectors, dim=-1)  # (N, N, M)

        # Exclude the zero-offset self pair of every atom
        self_mask = torch.zeros_like(distances, dtype=torch.bool)
        diag = torch.arange(n_atoms, device=self.device)
        if offset_grid is None:
            self_mask[diag, diag, 0] = True
        else:
            zero_image = torch.all(offset_grid == 0, dim=1)
            self_mask[diag, diag] = zero_image.unsqueeze(0)

        within = (distances < self.cutoff) & (~self_mask)
        coincident = within & (distances <= self.min_distance)
        if torch.any(coincident):
            pairs = torch.nonzero(coincident, as_tuple=False)[:, :2]
            listed = ", ".join(
                f"({i}, {j})" for i, j in pairs.tolist()[:10])
            warnings.warn(
                f"NeighborFinder: {pairs.shape[0]} coincident atom pair(s) "
                f"closer than {self.min_distance} skipped: {listed}",
                RuntimeWarning,
            )
            within = within & (~coincident)

        # nonzero() returns indices in row-major order, i.e. sorted by center
        idx = torch.nonzero(within, as_tuple=False)
        row, col, image = idx[:, 0], idx[:, 1], idx[:, 2]
        edge_vectors = vectors[row, col, image]
        edge_distances = distances[row, col, image]

        if offset_grid is None:
            offsets = None
        else:
            offsets = offset_grid[image] - wrap[row, col]

        edge_index = torch.stack([row, col])
        num_neighbors = torch.bincount(row, minlength=n_atoms)
        logger.debug(
            "NeighborFinder: %d pairs within %.4f for %d atoms",
            edge_index.shape[1], self.cutoff, n_atoms)

        return {
            "edge_index": edge_index,
            "vectors": edge_vectors,
            "distances": edge_distances,
            "offsets": offsets,
            "num_neighbors": num_neighbors,
        }

    def _periodic_displacements(
        self, positions: torch.Tensor, lattice: torch.Tensor
    ):
        """
        Displacements to all searched periodic images.

        Each direct displacement is first reduced to the minimum image in
        fractional coordinates, then shifted by every offset of the search
        grid.

        Returns
        -------
            vectors: (N, N, M, 3) displacements i -> image of j
            offset_grid: (M, 3) searched image offsets
            wrap: (N, N, 3) integer lattice shift removed by the reduction
        """
        search_cells = self._determine_search_cells(lattice)
        diff = positions.unsqueeze(0) - positions.unsqueeze(1)
        frac = diff @ torch.linalg.inv(lattice)
        wrap = torch.round(frac)
        reduced = diff - wrap @ lattice

        ranges = [
            torch.arange(-s, s + 1, device=self.device, dtype=torch.long)
            for s in search_cells.tolist()
        ]
        offset_grid = torch.stack(
            torch.meshgrid(*ranges, indexing="ij"), dim=-1
        ).reshape(-1, 3)
        shifts = offset_grid.to(self.dtype) @ lattice  # (M, 3)

        vectors = reduced.unsqueeze(2) + shifts.view(1, 1, -1, 3)
        return vectors, offset_grid, wrap.to(torch.long)

    def _determine_search_cells(self, lattice: torch.Tensor) -> torch.Tensor:
        """
        Determine how many periodic images to check in each direction.

        Args:
            lattice: (3, 3) lattice vectors as rows

        Returns
        -------
            search_cells: (3,) number of image shells per direction

        Raises
        ------
            GeometryError: If more than max_image_shells shells are needed
        """
        # Distances between opposite faces of the unit cell:
        # d_i = Volume / Area(face_i), where face_i is
        # opposite lattice vector i.
        volume = torch.abs(torch.det(lattice))
        a, b, c = lattice[0], lattice[1], lattice[2]
        areas = torch.stack([
            torch.linalg.vector_norm(torch.linalg.cross(b, c)),
            torch.linalg.vector_norm(torch.linalg.cross(c, a)),
            torch.linalg.vector_norm(torch.linalg.cross(a, b)),
        ])
        face_distances = volume / areas

        # After minimum-image reduction the fractional displacement along
        # each direction is within [-1/2, 1/2], so image n can be within
        # the cutoff only if |n| - 1/2 < cutoff / d.
        search_cells = torch.floor(
            self.cutoff / face_distances + 0.5).to(torch.long)

        if search_cells.max().item() > self.max_image_shells:
            raise GeometryError(
                "lattice too small for cutoff {:.4f}: interplanar spacings "
                "{} require {} image shells, at most {} allowed".format(
                    self.cutoff,
                    [round(d, 4) for d in face_distances.tolist()],
                    search_cells.tolist(),
                    self.max_image_shells,
                ))
        logger.debug("NeighborFinder: image shells %s",
                     search_cells.tolist())
        return search_cells

    def __repr__(self) -> str:
        return (
            f"NeighborFinder(cutoff={self.cutoff}, "
            f"max_image_shells={self.max_image_shells}, "
            f"device='{self.device}', dtype={self.dtype})"
        )
