"""
Graph builders and lightweight structures for CSR neighbors and triplets.

This module provides:
- NeighborGraph: CSR representation of pairwise neighbors per center atom
- TripletIndex: Flat representation of (i,j,k) angular triplets with the
  indices of the two edges i->j and i->k in the CSR edge arrays.

Builders:
- build_csr_from_neighborlist(...)
- build_triplets_from_csr(...)

Notes
-----
- Displacement vectors (r_ij) and distances (d_ij) use the neighbor search
  dtype. Index tensors are torch.long.
"""

from __future__ import annotations

from typing import Dict, Optional, TypedDict

import torch


class NeighborGraph(TypedDict):
    center_ptr: torch.Tensor  # long, shape [N+1]
    center_idx: torch.Tensor  # long, shape [E]
    nbr_idx: torch.Tensor     # long, shape [E]
    r_ij: torch.Tensor        # float(dtype), shape [E,3]
    d_ij: torch.Tensor        # float(dtype), shape [E]


class TripletIndex(TypedDict):
    tri_i: torch.Tensor       # long, shape [T]  (center indices)
    tri_j: torch.Tensor       # long, shape [T]  (global neighbor j)
    tri_k: torch.Tensor       # long, shape [T]  (global neighbor k)
    edge_ij: torch.Tensor     # long, shape [T]  (edge i->j in the CSR)
    edge_ik: torch.Tensor     # long, shape [T]  (edge i->k in the CSR)


def _empty_graph(n_atoms: int, dtype: torch.dtype,
                 device: Optional[torch.device]) -> NeighborGraph:
    empty = torch.empty(0, dtype=torch.long, device=device)
    return {
        "center_ptr": torch.zeros(
            n_atoms + 1, dtype=torch.long, device=device),
        "center_idx": empty,
        "nbr_idx": empty.clone(),
        "r_ij": torch.empty(0, 3, dtype=dtype, device=device),
        "d_ij": torch.empty(0, dtype=dtype, device=device),
    }


def build_csr_from_neighborlist(
    neighbors: Dict[str, Optional[torch.Tensor]],
    n_atoms: int,
    max_cutoff: float,
) -> NeighborGraph:
    """
    Build CSR neighbor graph from NeighborFinder results.

    Parameters
    ----------
    neighbors : dict
        Output of NeighborFinder.get_neighbors(); edges sorted by center
    n_atoms : int
        Number of atoms
    max_cutoff : float
        Include neighbors with distance < max_cutoff

    Returns
    -------
    NeighborGraph
    """
    edge_index = neighbors["edge_index"]
    distances = neighbors["distances"]
    vectors = neighbors["vectors"]
    device = distances.device
    dtype = distances.dtype

    mask = distances < float(max_cutoff)
    if not torch.any(mask):
        return _empty_graph(n_atoms, dtype, device)

    i_idx = edge_index[0, mask]
    j_idx = edge_index[1, mask]

    # Sort edges by center atom i for CSR contiguity (stable sort)
    perm = torch.argsort(i_idx, stable=True)
    i_sorted = i_idx[perm]

    deg = torch.bincount(i_sorted, minlength=n_atoms)
    center_ptr = torch.zeros(n_atoms + 1, dtype=torch.long, device=device)
    center_ptr[1:] = torch.cumsum(deg, dim=0)

    return {
        "center_ptr": center_ptr,
        "center_idx": i_sorted,
        "nbr_idx": j_idx[perm],
        "r_ij": vectors[mask][perm],
        "d_ij": distances[mask][perm],
    }


def build_triplets_from_csr(
    csr: NeighborGraph,
    ang_cutoff: float,
) -> TripletIndex:
    """
    Build flat triplet arrays (i,j,k) from a CSR neighbor graph.

    Every unordered pair of distinct edges of the same center with both
    distances below the angular cutoff forms one triplet. Within a center,
    pairs are enumerated with the first edge before the second in CSR order.

    Parameters
    ----------
    csr : NeighborGraph
        CSR neighbor graph with center_ptr, nbr_idx, r_ij, d_ij
    ang_cutoff : float
        Angular cutoff (include neighbors with d_ij < ang_cutoff)

    Returns
    -------
    TripletIndex
    """
    center_ptr = csr["center_ptr"]
    nbr_idx = csr["nbr_idx"]
    d_ij = csr["d_ij"]
    device = d_ij.device

    N = int(center_ptr.numel() - 1)
    tri_i_list = []
    edge_ij_list = []
    edge_ik_list = []

    # Loop per center row to enumerate local combinations efficiently
    for i in range(N):
        start = int(center_ptr[i].item())
        end = int(center_ptr[i + 1].item())
        if end - start < 2:
            continue

        mask = d_ij[start:end] < float(ang_cutoff)
        edges = torch.nonzero(mask, as_tuple=False).squeeze(-1) + start
        if edges.numel() < 2:
            continue

        # All unique pairs j_local < k_local
        pairs = torch.combinations(edges, r=2)  # (T_row, 2)
        tri_i_list.append(torch.full(
            (pairs.shape[0],), i, dtype=torch.long, device=device))
        edge_ij_list.append(pairs[:, 0])
        edge_ik_list.append(pairs[:, 1])

    if len(tri_i_list) == 0:
        empty = torch.empty(0, dtype=torch.long, device=device)
        return {
            "tri_i": empty,
            "tri_j": empty.clone(),
            "tri_k": empty.clone(),
            "edge_ij": empty.clone(),
            "edge_ik": empty.clone(),
        }

    edge_ij = torch.cat(edge_ij_list)
    edge_ik = torch.cat(edge_ik_list)
    return {
        "tri_i": torch.cat(tri_i_list),
        "tri_j": nbr_idx[edge_ij],
        "tri_k": nbr_idx[edge_ik],
        "edge_ij": edge_ij,
        "edge_ik": edge_ik,
    }
