"""
Reverse-mode propagation of feature gradients to atom positions.

Given an upstream gradient dL/dG over the radial and angular outputs and
the ForwardContext of the forward call that produced them, computes
dL/dr for every atom position by replaying the cached pair and triplet
quantities through the chain rule.

Radial pair (i, j) with u = (r_j - r_i)/r:
    dr/dr_j = u,  dr/dr_i = -u

Angular triplet (i, j, k), c = u_ij . u_ik:
    dc/dr_j = (u_ik - c u_ij) / r_ij
    dc/dr_k = (u_ij - c u_ik) / r_ik
    dc/dr_i = -(dc/dr_j + dc/dr_k)
"""

from typing import Tuple

import torch

from .basis import AngularBasis, RadialBasis
from .featurize import AngularCache, ForwardContext, RadialCache

__all__ = ["BackpropEngine"]


class BackpropEngine:
    """
    Hand-written adjoint of RadialExpansion and AngularExpansion.

    Parameters
    ----------
    radial_basis : RadialBasis
        Basis used by the forward radial expansion
    angular_basis : AngularBasis
        Basis used by the forward angular expansion
    """

    def __init__(self, radial_basis: RadialBasis,
                 angular_basis: AngularBasis):
        self.radial_basis = radial_basis
        self.angular_basis = angular_basis

    def backprop(
        self,
        context: ForwardContext,
        radial_grad: torch.Tensor,
        angular_grad: torch.Tensor,
        out: torch.Tensor,
    ) -> torch.Tensor:
        """
        Accumulate the position gradient into `out`.

        Args:
            context: Forward result the gradients refer to
            radial_grad: (N, num_species, n_radial) upstream gradient
            angular_grad: (N, num_pairs, n_angular) upstream gradient
            out: (N, 3) zeroed output view

        Returns
        -------
            out
        """
        with torch.no_grad():
            self._radial(context.radial, radial_grad, out)
            self._angular(context.angular, angular_grad, out)
        return out

    def _radial(self, cache: RadialCache, grad: torch.Tensor,
                out: torch.Tensor) -> None:
        if cache.n_pairs == 0 or self.radial_basis.n_functions == 0:
            return
        _, dG_dr = self.radial_basis.forward_with_derivatives(
            cache.distance, cache.fc, cache.dfc)
        upstream = grad.reshape(-1, self.radial_basis.n_functions)[cache.slot]
        weight = (upstream * dG_dr).sum(dim=-1)  # (E,)

        force = weight.unsqueeze(-1) * cache.unit
        out.index_add_(0, cache.neighbor, force)
        out.index_add_(0, cache.center, -force)

    def _angular(self, cache: AngularCache, grad: torch.Tensor,
                 out: torch.Tensor) -> None:
        if cache.n_triplets == 0 or self.angular_basis.n_functions == 0:
            return
        grads_i, grads_j, grads_k = self._triplet_gradients(cache, grad)
        out.index_add_(0, cache.center, grads_i)
        out.index_add_(0, cache.atom_j, grads_j)
        out.index_add_(0, cache.atom_k, grads_k)

    def _triplet_gradients(
        self, cache: AngularCache, grad: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """Per-triplet contributions to atoms i, j, k, each (T, 3)."""
        _, dG_dtheta, dG_drij, dG_drik = \
            self.angular_basis.forward_with_derivatives(
                cache.r_ij, cache.r_ik, cache.theta,
                cache.fc_ij, cache.fc_ik, cache.dfc_ij, cache.dfc_ik)
        upstream = grad.reshape(
            -1, self.angular_basis.n_functions)[cache.slot]

        w_cos = (upstream * dG_dtheta).sum(dim=-1) * cache.dtheta_dcos
        w_ij = (upstream * dG_drij).sum(dim=-1)
        w_ik = (upstream * dG_drik).sum(dim=-1)

        cos_theta = cache.cos_theta.unsqueeze(-1)
        dcos_drj = (cache.u_ik - cos_theta * cache.u_ij
                    ) / cache.r_ij.unsqueeze(-1)
        dcos_drk = (cache.u_ij - cos_theta * cache.u_ik
                    ) / cache.r_ik.unsqueeze(-1)

        grads_j = (w_cos.unsqueeze(-1) * dcos_drj
                   + w_ij.unsqueeze(-1) * cache.u_ij)
        grads_k = (w_cos.unsqueeze(-1) * dcos_drk
                   + w_ik.unsqueeze(-1) * cache.u_ik)
        grads_i = -(grads_j + grads_k)
        return grads_i, grads_j, grads_k

    def jacobian(
        self,
        context: ForwardContext,
        radial_shape: Tuple[int, int, int],
        angular_shape: Tuple[int, int, int],
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Full derivative of every feature w.r.t. every atom position.

        Returns
        -------
            radial_jac: radial_shape + (N, 3) tensor,
                radial_jac[i, s, k, a, x] = dG_rad[i, s, k] / dr[a, x]
            angular_jac: angular_shape + (N, 3) tensor
        """
        n_atoms = context.num_atoms
        with torch.no_grad():
            radial_jac = self._radial_jacobian(
                context.radial, radial_shape, n_atoms)
            angular_jac = self._angular_jacobian(
                context.angular, angular_shape, n_atoms)
        return radial_jac, angular_jac

    def _radial_jacobian(self, cache, shape, n_atoms):
        n_functions = shape[-1]
        ref = cache.unit
        jac = torch.zeros(shape[0] * shape[1] * n_functions, n_atoms, 3,
                          dtype=ref.dtype, device=ref.device)
        if cache.n_pairs > 0 and n_functions > 0:
            _, dG_dr = self.radial_basis.forward_with_derivatives(
                cache.distance, cache.fc, cache.dfc)
            rows = (cache.slot.unsqueeze(-1) * n_functions
                    + torch.arange(n_functions, device=ref.device)
                    ).reshape(-1)
            values = (dG_dr.unsqueeze(-1) * cache.unit.unsqueeze(1)
                      ).reshape(-1, 3)
            cols_j = cache.neighbor.repeat_interleave(n_functions)
            cols_i = cache.center.repeat_interleave(n_functions)
            jac.index_put_((rows, cols_j), values, accumulate=True)
            jac.index_put_((rows, cols_i), -values, accumulate=True)
        return jac.view(*shape, n_atoms, 3)

    def _angular_jacobian(self, cache, shape, n_atoms):
        n_functions = shape[-1]
        ref = cache.u_ij
        jac = torch.zeros(shape[0] * shape[1] * n_functions, n_atoms, 3,
                          dtype=ref.dtype, device=ref.device)
        if cache.n_triplets == 0 or n_functions == 0:
            return jac.view(*shape, n_atoms, 3)

        _, dG_dtheta, dG_drij, dG_drik = \
            self.angular_basis.forward_with_derivatives(
                cache.r_ij, cache.r_ik, cache.theta,
                cache.fc_ij, cache.fc_ik, cache.dfc_ij, cache.dfc_ik)
        cos_theta = cache.cos_theta.unsqueeze(-1)
        dcos_drj = (cache.u_ik - cos_theta * cache.u_ij
                    ) / cache.r_ij.unsqueeze(-1)
        dcos_drk = (cache.u_ij - cos_theta * cache.u_ik
                    ) / cache.r_ik.unsqueeze(-1)

        # Shapes: (T, n_functions, 3)
        dG_dcos = (dG_dtheta * cache.dtheta_dcos.unsqueeze(-1)).unsqueeze(-1)
        grads_j = (dG_dcos * dcos_drj.unsqueeze(1)
                   + dG_drij.unsqueeze(-1) * cache.u_ij.unsqueeze(1))
        grads_k = (dG_dcos * dcos_drk.unsqueeze(1)
                   + dG_drik.unsqueeze(-1) * cache.u_ik.unsqueeze(1))
        grads_i = -(grads_j + grads_k)

        rows = (cache.slot.unsqueeze(-1) * n_functions
                + torch.arange(n_functions, device=ref.device)).reshape(-1)
        for atoms, grads in ((cache.center, grads_i),
                             (cache.atom_j, grads_j),
                             (cache.atom_k, grads_k)):
            cols = atoms.repeat_interleave(n_functions)
            jac.index_put_((rows, cols), grads.reshape(-1, 3),
                           accumulate=True)
        return jac.view(*shape, n_atoms, 3)
