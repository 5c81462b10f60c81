"""
Smooth radial cutoff shared by the radial and angular expansions.
"""

from typing import Tuple

import torch
import torch.nn as nn


class CosineCutoff(nn.Module):
    """
    Cosine cutoff function.

    Implements: fc(r) = 0.5 * [cos(π*r/Rc) + 1] for r < Rc
                fc(r) = 0                       for r >= Rc

    fc(0) = 1, and both fc and dfc/dr vanish at r = Rc, so features and
    their gradients decay continuously at the cutoff sphere.

    Parameters
    ----------
    cutoff : float
        Cutoff radius Rc in Angstroms

    Examples
    --------
    >>> fc = CosineCutoff(4.5)
    >>> r = torch.tensor([0.0, 2.25, 4.5], dtype=torch.float64)
    >>> fc(r)
    tensor([1.0000, 0.5000, 0.0000], dtype=torch.float64)
    """

    def __init__(self, cutoff: float):
        super().__init__()
        self.cutoff = float(cutoff)

    def forward(self, r: torch.Tensor) -> torch.Tensor:
        """
        Cutoff function values, same shape as r.

        Distances are assumed non-negative.
        """
        return torch.where(
            r < self.cutoff,
            0.5 * (torch.cos(torch.pi * r / self.cutoff) + 1.0),
            torch.zeros_like(r),
        )

    def derivative(self, r: torch.Tensor) -> torch.Tensor:
        """
        Derivative of the cutoff function.

        Implements: dfc/dr = -0.5 * π/Rc * sin(π*r/Rc) for r < Rc
                    dfc/dr = 0                          for r >= Rc
        """
        return torch.where(
            r < self.cutoff,
            -0.5 * torch.pi / self.cutoff
            * torch.sin(torch.pi * r / self.cutoff),
            torch.zeros_like(r),
        )

    def forward_with_derivatives(
        self, r: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        return self.forward(r), self.derivative(r)

    def extra_repr(self) -> str:
        return f"cutoff={self.cutoff}"
