"""
Forward expansion of neighbor geometry into radial and angular symmetry
functions.

Both expansions accumulate into caller-provided output views and return
the intermediate quantities that the backward pass needs, so that
`BackpropEngine` never has to search neighbors or recompute angles.
"""

from dataclasses import dataclass

import torch

from .basis import AngularBasis, RadialBasis
from .graph import NeighborGraph, TripletIndex

__all__ = [
    "RadialCache",
    "AngularCache",
    "ForwardContext",
    "RadialExpansion",
    "AngularExpansion",
]


@dataclass(frozen=True)
class RadialCache:
    """Per-pair quantities of the radial expansion, shape (E,) or (E, 3)."""

    center: torch.Tensor    # atom i
    neighbor: torch.Tensor  # atom j
    slot: torch.Tensor      # flat row i * num_species + species[j]
    distance: torch.Tensor
    unit: torch.Tensor      # (r_j - r_i) / |r_j - r_i|
    fc: torch.Tensor
    dfc: torch.Tensor

    @property
    def n_pairs(self) -> int:
        return int(self.center.numel())


@dataclass(frozen=True)
class AngularCache:
    """Per-triplet quantities of the angular expansion, shape (T,)."""

    center: torch.Tensor    # atom i
    atom_j: torch.Tensor
    atom_k: torch.Tensor
    slot: torch.Tensor      # flat row i * num_pairs + pair(s_j, s_k)
    r_ij: torch.Tensor
    r_ik: torch.Tensor
    u_ij: torch.Tensor      # (T, 3)
    u_ik: torch.Tensor      # (T, 3)
    cos_theta: torch.Tensor
    theta: torch.Tensor
    dtheta_dcos: torch.Tensor
    fc_ij: torch.Tensor
    fc_ik: torch.Tensor
    dfc_ij: torch.Tensor
    dfc_ik: torch.Tensor

    @property
    def n_triplets(self) -> int:
        return int(self.center.numel())


@dataclass(frozen=True)
class ForwardContext:
    """
    Result of one forward call, consumed by the matching backward call.

    Contexts are immutable and independent of each other; any number of
    them may be kept and backpropagated in any order by the session that
    produced them.
    """

    token: object
    num_atoms: int
    radial: RadialCache
    angular: AngularCache


class RadialExpansion:
    """
    Per-atom, per-neighbor-species histogram of radial functions.

    radial[i, species[j], k] += G_k(r_ij) for every neighbor j of i.
    """

    def __init__(self, basis: RadialBasis, species: torch.Tensor,
                 num_species: int):
        self.basis = basis
        self.species = species
        self.num_species = num_species
        self.cutoff = basis.cutoff_fn.cutoff

    def __call__(self, csr: NeighborGraph, out: torch.Tensor) -> RadialCache:
        """
        Accumulate radial features.

        Args:
            csr: Neighbor graph (may extend beyond the radial cutoff)
            out: (N, num_species, n_functions) zeroed output view

        Returns
        -------
            RadialCache of the pairs within the radial cutoff
        """
        mask = csr["d_ij"] < self.cutoff
        center = csr["center_idx"][mask]
        neighbor = csr["nbr_idx"][mask]
        distance = csr["d_ij"][mask]
        unit = csr["r_ij"][mask] / distance.unsqueeze(-1)

        fc, dfc = self.basis.cutoff_fn.forward_with_derivatives(distance)
        slot = center * self.num_species + self.species[neighbor]

        G = self.basis(distance, fc)
        n_atoms, n_species, n_functions = out.shape
        out.view(n_atoms * n_species, n_functions).index_add_(0, slot, G)

        return RadialCache(
            center=center,
            neighbor=neighbor,
            slot=slot,
            distance=distance,
            unit=unit,
            fc=fc,
            dfc=dfc,
        )


class AngularExpansion:
    """
    Per-atom, per-neighbor-species-pair histogram of angular functions.

    angular[i, pair(species[j], species[k]), m] += G_m(r_ij, r_ik, theta_ijk)
    for every unordered pair of neighbors j, k of i.
    """

    def __init__(self, basis: AngularBasis, species: torch.Tensor,
                 pair_table: torch.Tensor):
        self.basis = basis
        self.species = species
        self.pair_table = pair_table
        self.num_pairs = int(pair_table.max().item()) + 1
        self.cutoff = basis.cutoff_fn.cutoff

    def __call__(self, csr: NeighborGraph, triplets: TripletIndex,
                 out: torch.Tensor) -> AngularCache:
        """
        Accumulate angular features.

        Args:
            csr: Neighbor graph the triplets index into
            triplets: Triplets within the angular cutoff
            out: (N, num_pairs, n_functions) zeroed output view

        Returns
        -------
            AngularCache of all triplets
        """
        e_ij = triplets["edge_ij"]
        e_ik = triplets["edge_ik"]
        r_ij = csr["d_ij"][e_ij]
        r_ik = csr["d_ij"][e_ik]
        u_ij = csr["r_ij"][e_ij] / r_ij.unsqueeze(-1)
        u_ik = csr["r_ij"][e_ik] / r_ik.unsqueeze(-1)

        # Cosine of angle at i
        cos_theta = (u_ij * u_ik).sum(dim=-1)
        theta, dtheta_dcos = self.basis.angles(cos_theta)

        fc_ij, dfc_ij = self.basis.cutoff_fn.forward_with_derivatives(r_ij)
        fc_ik, dfc_ik = self.basis.cutoff_fn.forward_with_derivatives(r_ik)

        center = triplets["tri_i"]
        atom_j = triplets["tri_j"]
        atom_k = triplets["tri_k"]
        pair = self.pair_table[self.species[atom_j], self.species[atom_k]]
        slot = center * self.num_pairs + pair

        G = self.basis(r_ij, r_ik, theta, fc_ij, fc_ik)
        n_atoms, n_pairs, n_functions = out.shape
        out.view(n_atoms * n_pairs, n_functions).index_add_(0, slot, G)

        return AngularCache(
            center=center,
            atom_j=atom_j,
            atom_k=atom_k,
            slot=slot,
            r_ij=r_ij,
            r_ik=r_ik,
            u_ij=u_ij,
            u_ik=u_ik,
            cos_theta=cos_theta,
            theta=theta,
            dtheta_dcos=dtheta_dcos,
            fc_ij=fc_ij,
            fc_ik=fc_ik,
            dfc_ij=dfc_ij,
            dfc_ik=dfc_ik,
        )
