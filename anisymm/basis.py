"""
Radial and angular basis functions of the ANI symmetry functions.

Radial:   G_k = s * exp(-eta_k (r - rs_k)^2) * fc(r)
Angular:  G_m = 2^(1-zeta_m) (1 + cos(theta - theta_s_m))^zeta_m
                * exp(-eta_m ((r_ij + r_ik)/2 - rs_m)^2) * fc(r_ij) * fc(r_ik)

Two conventions exist for the scale s of the radial functions and for how
theta is obtained from the cosine of the angle. Each is a complete
implementation selected once through `select_convention()`.

References
----------
    J. S. Smith, O. Isayev, and A. E. Roitberg, Chem. Sci. 8 (2017) 3192
"""

from dataclasses import dataclass
from typing import Sequence, Tuple, Type

import torch
import torch.nn as nn

from .config import AngularFunction, RadialFunction
from .cutoff import CosineCutoff

__all__ = [
    "RadialBasis",
    "AngularBasis",
    "StandardAngularBasis",
    "TorchANIAngularBasis",
    "Convention",
    "STANDARD",
    "TORCHANI",
    "select_convention",
]


class RadialBasis(nn.Module):
    """
    Gaussian radial basis functions combined with the cosine cutoff.

    Parameters
    ----------
    functions : sequence of RadialFunction
        (eta, rs) parameters, one per output column
    cutoff : float
        Radial cutoff radius in Angstroms
    scale : float, optional
        Global prefactor of all functions (default: 1.0)
    dtype : torch.dtype, optional
        Data type for computations (default: torch.float64)

    Examples
    --------
    >>> basis = RadialBasis([RadialFunction(5.0, 2.0)], cutoff=4.5)
    >>> distances = torch.tensor([1.0, 2.0, 3.0], dtype=torch.float64)
    >>> G = basis(distances)  # Shape: (3, 1)
    """

    def __init__(
        self,
        functions: Sequence[RadialFunction],
        cutoff: float,
        scale: float = 1.0,
        dtype: torch.dtype = torch.float64,
    ):
        super().__init__()
        self.cutoff_fn = CosineCutoff(cutoff)
        self.scale = float(scale)
        self.n_functions = len(functions)
        self.register_buffer(
            "eta", torch.tensor([f.eta for f in functions], dtype=dtype))
        self.register_buffer(
            "rs", torch.tensor([f.rs for f in functions], dtype=dtype))

    def forward(
        self, distances: torch.Tensor, fc: torch.Tensor = None
    ) -> torch.Tensor:
        """
        Evaluate radial symmetry functions.

        Parameters
        ----------
        distances : torch.Tensor
            Pairwise distances in Angstroms, shape (num_pairs,)
        fc : torch.Tensor, optional
            Precomputed cutoff values at `distances`

        Returns
        -------
        torch.Tensor
            Radial features, shape (num_pairs, n_functions)
        """
        if fc is None:
            fc = self.cutoff_fn(distances)
        shifted = distances.unsqueeze(-1) - self.rs
        gauss = torch.exp(-self.eta * shifted * shifted)
        return self.scale * gauss * fc.unsqueeze(-1)

    def forward_with_derivatives(
        self,
        distances: torch.Tensor,
        fc: torch.Tensor = None,
        dfc_dr: torch.Tensor = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Evaluate radial symmetry functions with derivatives.

        Uses the product rule:
            d(g*fc)/dr = dg/dr * fc + g * dfc/dr,  dg/dr = -2 eta (r-rs) g

        Parameters
        ----------
        distances : torch.Tensor
            Pairwise distances in Angstroms, shape (num_pairs,)
        fc, dfc_dr : torch.Tensor, optional
            Precomputed cutoff values and derivatives at `distances`

        Returns
        -------
        G : torch.Tensor
            Radial features, shape (num_pairs, n_functions)
        dG_dr : torch.Tensor
            Derivatives w.r.t. distance, shape (num_pairs, n_functions)
        """
        if fc is None or dfc_dr is None:
            fc, dfc_dr = self.cutoff_fn.forward_with_derivatives(distances)
        shifted = distances.unsqueeze(-1) - self.rs
        gauss = self.scale * torch.exp(-self.eta * shifted * shifted)
        fc = fc.unsqueeze(-1)
        G = gauss * fc
        dG_dr = gauss * (dfc_dr.unsqueeze(-1) - 2.0 * self.eta * shifted * fc)
        return G, dG_dr


class AngularBasis(nn.Module):
    """
    Angular basis functions for triplets (i, j, k) centered on atom i.

    Subclasses define how the angle theta is obtained from cos(theta_ijk)
    through `angles()`. Everything downstream of theta is shared.

    Parameters
    ----------
    functions : sequence of AngularFunction
        (eta, rs, zeta, theta_s) parameters, one per output column
    cutoff : float
        Angular cutoff radius in Angstroms
    dtype : torch.dtype, optional
        Data type for computations (default: torch.float64)
    """

    def __init__(
        self,
        functions: Sequence[AngularFunction],
        cutoff: float,
        dtype: torch.dtype = torch.float64,
    ):
        super().__init__()
        self.cutoff_fn = CosineCutoff(cutoff)
        self.n_functions = len(functions)
        self.register_buffer(
            "eta", torch.tensor([f.eta for f in functions], dtype=dtype))
        self.register_buffer(
            "rs", torch.tensor([f.rs for f in functions], dtype=dtype))
        self.register_buffer(
            "zeta", torch.tensor([f.zeta for f in functions], dtype=dtype))
        self.register_buffer(
            "theta_s",
            torch.tensor([f.theta_s for f in functions], dtype=dtype))

    def angles(
        self, cos_theta: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Angle used by the angular term and its derivative.

        Returns
        -------
        theta : torch.Tensor
            shape (num_triplets,)
        dtheta_dcos : torch.Tensor
            d(theta)/d(cos theta_ijk), shape (num_triplets,)
        """
        raise NotImplementedError

    def forward(
        self,
        r_ij: torch.Tensor,
        r_ik: torch.Tensor,
        theta: torch.Tensor,
        fc_ij: torch.Tensor,
        fc_ik: torch.Tensor,
    ) -> torch.Tensor:
        """
        Evaluate angular symmetry functions.

        Parameters
        ----------
        r_ij, r_ik : torch.Tensor
            Distances from atom i to atoms j and k, shape (num_triplets,)
        theta : torch.Tensor
            Angles from `angles()`, shape (num_triplets,)
        fc_ij, fc_ik : torch.Tensor
            Cutoff function values at r_ij and r_ik

        Returns
        -------
        torch.Tensor
            Angular features, shape (num_triplets, n_functions)
        """
        G, _, _, _ = self._terms(r_ij, r_ik, theta, fc_ij, fc_ik, None, None,
                                 derivatives=False)
        return G

    def forward_with_derivatives(
        self,
        r_ij: torch.Tensor,
        r_ik: torch.Tensor,
        theta: torch.Tensor,
        fc_ij: torch.Tensor,
        fc_ik: torch.Tensor,
        dfc_ij: torch.Tensor,
        dfc_ik: torch.Tensor,
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Evaluate angular symmetry functions and partial derivatives.

        Returns
        -------
        G, dG_dtheta, dG_drij, dG_drik : torch.Tensor
            Each of shape (num_triplets, n_functions)
        """
        return self._terms(r_ij, r_ik, theta, fc_ij, fc_ik, dfc_ij, dfc_ik,
                           derivatives=True)

    def _terms(self, r_ij, r_ik, theta, fc_ij, fc_ik, dfc_ij, dfc_ik,
               derivatives):
        delta = theta.unsqueeze(-1) - self.theta_s
        base = 1.0 + torch.cos(delta)
        norm = torch.pow(2.0, 1.0 - self.zeta)
        ang = norm * torch.pow(base, self.zeta)

        shifted = 0.5 * (r_ij + r_ik).unsqueeze(-1) - self.rs
        rad = torch.exp(-self.eta * shifted * shifted)

        fc_ij = fc_ij.unsqueeze(-1)
        fc_ik = fc_ik.unsqueeze(-1)
        G = ang * rad * fc_ij * fc_ik
        if not derivatives:
            return G, None, None, None

        # base vanishes at delta = pi; the derivative is zero there
        safe_pow = torch.where(
            base > 0,
            torch.pow(base.clamp_min(torch.finfo(base.dtype).tiny),
                      self.zeta - 1.0),
            torch.zeros_like(base),
        )
        dang_dtheta = -norm * self.zeta * safe_pow * torch.sin(delta)
        drad = -self.eta * shifted * rad  # d(rad)/dr_ij == d(rad)/dr_ik

        dG_dtheta = dang_dtheta * rad * fc_ij * fc_ik
        dG_drij = ang * fc_ik * (drad * fc_ij + rad * dfc_ij.unsqueeze(-1))
        dG_drik = ang * fc_ij * (drad * fc_ik + rad * dfc_ik.unsqueeze(-1))
        return G, dG_dtheta, dG_drij, dG_drik


class StandardAngularBasis(AngularBasis):
    """
    theta = arccos(cos theta_ijk).

    The cosine is kept a small distance away from +-1, where the arccos
    derivative diverges; inside the clamped region theta is constant and
    its derivative is zero.
    """

    eps = 1e-7

    def angles(self, cos_theta):
        limit = 1.0 - self.eps
        clamped = cos_theta.clamp(-limit, limit)
        theta = torch.arccos(clamped)
        dtheta_dcos = torch.where(
            cos_theta.abs() < limit,
            -1.0 / torch.sqrt(1.0 - clamped * clamped),
            torch.zeros_like(cos_theta),
        )
        return theta, dtheta_dcos


class TorchANIAngularBasis(AngularBasis):
    """
    theta = arccos(0.95 cos theta_ijk), as in TorchANI.

    The 0.95 factor keeps arccos away from its singular end points for
    collinear triplets.
    """

    cos_scale = 0.95

    def angles(self, cos_theta):
        scaled = self.cos_scale * cos_theta.clamp(-1.0, 1.0)
        theta = torch.arccos(scaled)
        dtheta_dcos = torch.where(
            cos_theta.abs() <= 1.0,
            -self.cos_scale / torch.sqrt(1.0 - scaled * scaled),
            torch.zeros_like(cos_theta),
        )
        return theta, dtheta_dcos


@dataclass(frozen=True)
class Convention:
    """Numeric convention: radial prefactor and angular basis class."""

    name: str
    radial_scale: float
    angular_basis: Type[AngularBasis]


STANDARD = Convention("standard", 1.0, StandardAngularBasis)
TORCHANI = Convention("torchani", 0.25, TorchANIAngularBasis)


def select_convention(torchani: bool) -> Convention:
    """Convention for the compatibility flag of a configuration."""
    return TORCHANI if torchani else STANDARD
