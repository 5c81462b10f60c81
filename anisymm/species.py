"""
Species bookkeeping: unordered species-pair indexing for the angular
histogram and mapping of element symbols to species indices.
"""

from typing import List, Optional, Sequence, Union

import torch

from .exceptions import ConfigurationError


def num_species_pairs(num_species: int) -> int:
    """Number of unordered species pairs, S(S+1)/2."""
    return num_species * (num_species + 1) // 2


def species_pair_index(a: int, b: int, num_species: int) -> int:
    """
    Index of the unordered species pair {a, b}.

    Pairs are enumerated row by row over the upper triangle, so for two
    species (0,0) -> 0, (0,1) -> 1, (1,1) -> 2.
    """
    if a > b:
        a, b = b, a
    return a * num_species - a * (a - 1) // 2 + (b - a)


def species_pair_table(
    num_species: int, device: Optional[torch.device] = None
) -> torch.Tensor:
    """
    (S, S) long tensor with table[a, b] == species_pair_index(a, b).

    Used to map the species of a triplet's two neighbors onto the angular
    histogram slot with a single gather.
    """
    first, second = torch.triu_indices(
        num_species, num_species, device=device).unbind(0)
    pair_index = torch.arange(
        first.shape[0], dtype=torch.long, device=device)
    table = torch.zeros(
        num_species, num_species, dtype=torch.long, device=device)
    table[first, second] = pair_index
    table[second, first] = pair_index
    return table


def species_indices(
    species: Sequence[Union[int, str]],
    species_names: Optional[Sequence[str]] = None,
) -> List[int]:
    """
    Convert a per-atom species assignment to integer indices.

    Integers are passed through. Strings (element symbols) are looked up
    in `species_names`, whose order defines the species indices.

    Raises
    ------
        ConfigurationError: If a symbol is given without `species_names`
            or is not among them, or an index is not an integer
    """
    lookup = None
    if species_names is not None:
        lookup = {s: i for i, s in enumerate(species_names)}
    indices = []
    for s in species:
        if isinstance(s, str):
            if lookup is None:
                raise ConfigurationError(
                    f"species symbol '{s}' given but no species_names "
                    "were configured")
            if s not in lookup:
                raise ConfigurationError(
                    f"unknown species '{s}'. "
                    f"Available species: {list(species_names)}")
            indices.append(lookup[s])
        else:
            try:
                index = int(s)
            except (TypeError, ValueError, OverflowError):
                index = None
            if isinstance(s, bool) or index is None or index != s:
                raise ConfigurationError(
                    f"species must be integers or symbols, got {s!r}")
            indices.append(index)
    return indices
