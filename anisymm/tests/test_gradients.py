"""
Tests for the hand-written backprop.

Validates position gradients against central finite differences, against
PyTorch autograd through the forward pass, and against the full Jacobian.
"""

import pytest
import torch

from .water import WATER_POSITIONS, make_water_session


def feature_values(ani, positions, lattice):
    radial, angular, _ = ani.compute_symmetry_functions(positions, lattice)
    return torch.cat([radial.reshape(-1), angular.reshape(-1)])


def numerical_jacobian(ani, positions, lattice, epsilon=1e-5):
    """d(features)/d(positions) by central differences, (F, N, 3)."""
    columns = []
    for atom in range(positions.shape[0]):
        for coord in range(3):
            pos_forward = positions.clone()
            pos_forward[atom, coord] += epsilon
            pos_backward = positions.clone()
            pos_backward[atom, coord] -= epsilon
            columns.append(
                (feature_values(ani, pos_forward, lattice)
                 - feature_values(ani, pos_backward, lattice))
                / (2.0 * epsilon))
    jac = torch.stack(columns, dim=-1)
    return jac.reshape(jac.shape[0], positions.shape[0], 3)


def feature_gradient(ani, context, index):
    """Backprop of a single feature, (N, 3)."""
    n_radial = torch.Size(ani.radial_shape).numel()
    upstream = torch.zeros(
        n_radial + torch.Size(ani.angular_shape).numel(),
        dtype=torch.float64)
    upstream[index] = 1.0
    return ani.backprop(context, upstream[:n_radial], upstream[n_radial:])


class TestFiniteDifferences:
    """Backprop against numerical differentiation."""

    def test_jacobian_matches_numerical(
            self, water_session, water_positions, lattice):
        ani = water_session
        _, _, context = ani.compute_symmetry_functions(
            water_positions, lattice)
        radial_jac, angular_jac = ani.jacobian(context)
        n_atoms = ani.num_atoms
        analytical = torch.cat([
            radial_jac.reshape(-1, n_atoms, 3),
            angular_jac.reshape(-1, n_atoms, 3),
        ])
        numerical = numerical_jacobian(ani, water_positions, lattice)
        assert analytical.shape == numerical.shape
        max_err = (analytical - numerical).abs().max().item()
        assert torch.allclose(analytical, numerical, rtol=1e-4, atol=1e-6), \
            f"max error {max_err:.3e}"

    def test_directional_derivative(
            self, water_session, water_positions, lattice):
        """
        Displace all atoms along the backprop gradient of one feature; the
        central-difference slope must equal the gradient norm.
        """
        ani = water_session
        step = 1e-3
        _, _, context = ani.compute_symmetry_functions(
            water_positions, lattice)
        n_features = (torch.Size(ani.radial_shape).numel()
                      + torch.Size(ani.angular_shape).numel())
        checked = 0
        for index in range(n_features):
            grad = feature_gradient(ani, context, index)
            norm = torch.linalg.vector_norm(grad).item()
            if norm == 0.0:
                continue
            delta = step / norm
            value1 = feature_values(
                ani, water_positions - delta * grad, lattice)[index]
            value2 = feature_values(
                ani, water_positions + delta * grad, lattice)[index]
            estimate = ((value2 - value1) / (2 * step)).item()
            diff = abs(norm - estimate)
            assert diff <= 1e-5 or diff / norm <= 5e-3, \
                f"feature {index}: backprop {norm}, finite difference " \
                f"{estimate}"
            checked += 1
        assert checked > 0

    def test_small_cell_with_self_images(self, torchani):
        """Several periodic images per pair, including each atom's own."""
        ani = make_water_session(
            "cubic", torchani=torchani, num_atoms=3, species=[0, 1, 1],
            max_image_shells=2)
        positions = torch.tensor(WATER_POSITIONS[:3], dtype=torch.float64)
        lattice = torch.tensor(
            [[2.6, 0.0, 0.0], [0.3, 2.7, 0.0], [0.0, -0.2, 2.8]],
            dtype=torch.float64)
        _, _, context = ani.compute_symmetry_functions(positions, lattice)
        radial_jac, angular_jac = ani.jacobian(context)
        analytical = torch.cat([
            radial_jac.reshape(-1, 3, 3), angular_jac.reshape(-1, 3, 3)])
        numerical = numerical_jacobian(ani, positions, lattice)
        assert torch.allclose(analytical, numerical, rtol=1e-4, atol=1e-6)


class TestAutograd:
    """Backprop equals autograd through the differentiable forward pass."""

    def test_backprop_matches_autograd(
            self, water_session, water_positions, lattice):
        ani = water_session
        generator = torch.Generator().manual_seed(0)
        radial_grad = torch.randn(
            ani.radial_shape, dtype=torch.float64, generator=generator)
        angular_grad = torch.randn(
            ani.angular_shape, dtype=torch.float64, generator=generator)

        positions = water_positions.clone().requires_grad_(True)
        radial, angular, context = ani.compute_symmetry_functions(
            positions, lattice)
        loss = (radial * radial_grad).sum() + (angular * angular_grad).sum()
        loss.backward()

        position_grad = ani.backprop(context, radial_grad, angular_grad)
        assert not position_grad.requires_grad
        assert torch.allclose(
            position_grad, positions.grad, rtol=1e-9, atol=1e-11)

    def test_net_force_vanishes(
            self, water_session, water_positions, lattice):
        """Features are translation invariant, so gradients sum to zero."""
        ani = water_session
        _, _, context = ani.compute_symmetry_functions(
            water_positions, lattice)
        position_grad = ani.backprop(
            context,
            torch.ones(ani.radial_shape, dtype=torch.float64),
            torch.ones(ani.angular_shape, dtype=torch.float64))
        assert torch.allclose(
            position_grad.sum(dim=0),
            torch.zeros(3, dtype=torch.float64), atol=1e-10)


class TestJacobian:
    """Jacobian contracted with an upstream gradient equals backprop."""

    def test_contraction(self, water_session, water_positions, lattice):
        ani = water_session
        generator = torch.Generator().manual_seed(1)
        radial_grad = torch.randn(
            ani.radial_shape, dtype=torch.float64, generator=generator)
        angular_grad = torch.randn(
            ani.angular_shape, dtype=torch.float64, generator=generator)
        _, _, context = ani.compute_symmetry_functions(
            water_positions, lattice)

        radial_jac, angular_jac = ani.jacobian(context)
        assert radial_jac.shape == ani.radial_shape + (ani.num_atoms, 3)
        assert angular_jac.shape == ani.angular_shape + (ani.num_atoms, 3)
        contracted = (
            torch.einsum("isk,iskax->ax", radial_grad, radial_jac)
            + torch.einsum("ipm,ipmax->ax", angular_grad, angular_jac))
        position_grad = ani.backprop(context, radial_grad, angular_grad)
        assert torch.allclose(contracted, position_grad, atol=1e-10)

    def test_radial_jacobian_sparsity(self, water_positions):
        """A radial feature depends only on its atom and its neighbors."""
        ani = make_water_session("nonperiodic")
        _, _, context = ani.compute_symmetry_functions(water_positions)
        radial_jac, _ = ani.jacobian(context)
        distances = torch.cdist(water_positions, water_positions)
        for i in range(ani.num_atoms):
            depends = radial_jac[i].abs().sum(dim=(0, 1, 3)) > 0
            far = distances[i] >= 4.5
            assert not torch.any(depends & far)


class TestRepeatedBackprop:
    """Contexts are independent and reusable."""

    def test_backprop_is_repeatable(self, water_positions):
        ani = make_water_session("nonperiodic")
        _, _, context = ani.compute_symmetry_functions(water_positions)
        radial_grad = torch.ones(ani.radial_shape, dtype=torch.float64)
        angular_grad = torch.ones(ani.angular_shape, dtype=torch.float64)
        first = ani.backprop(context, radial_grad, angular_grad).clone()
        second = ani.backprop(context, radial_grad, angular_grad)
        assert torch.equal(first, second)

    def test_older_context_after_new_forward(self, water_positions):
        ani = make_water_session("nonperiodic")
        radial_grad = torch.ones(ani.radial_shape, dtype=torch.float64)
        angular_grad = torch.ones(ani.angular_shape, dtype=torch.float64)

        _, _, context_a = ani.compute_symmetry_functions(water_positions)
        expected_a = ani.backprop(context_a, radial_grad, angular_grad)

        shifted = water_positions.clone()
        shifted[0] += torch.tensor([0.1, -0.05, 0.02], dtype=torch.float64)
        _, _, context_b = ani.compute_symmetry_functions(shifted)
        expected_b = ani.backprop(context_b, radial_grad, angular_grad)

        assert torch.equal(
            ani.backprop(context_a, radial_grad, angular_grad), expected_a)
        assert not torch.allclose(expected_a, expected_b)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
