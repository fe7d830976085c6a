# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Horizontal metric tensor used for covariant/contravariant conversions."""

from __future__ import annotations

from hevi import typing
import jax.numpy as jnp
import tree_math


Array = typing.Array


@tree_math.struct
class Metric2D:
  """The 2D metric of the horizontal coordinate surfaces at a set of nodes.

  Each component has the shape of the nodes it describes, e.g. `[..., 1]` for
  metrics that broadcast against a vertical axis.

  Attributes:
    jacobian: `J2D`, square root of the determinant of the covariant metric.
    cov_aa: covariant component `g_αα`.
    cov_ab: covariant component `g_αβ`.
    cov_bb: covariant component `g_ββ`.
    con_aa: contravariant component `g^αα`.
    con_ab: contravariant component `g^αβ`.
    con_bb: contravariant component `g^ββ`.
  """

  jacobian: Array
  cov_aa: Array
  cov_ab: Array
  cov_bb: Array
  con_aa: Array
  con_ab: Array
  con_bb: Array

  def raise_index(self, cov_a: Array, cov_b: Array) -> tuple[Array, Array]:
    """Converts covariant components `(u_α, u_β)` to contravariant ones."""
    return (
        self.con_aa * cov_a + self.con_ab * cov_b,
        self.con_ab * cov_a + self.con_bb * cov_b,
    )

  def lower_index(self, con_a: Array, con_b: Array) -> tuple[Array, Array]:
    """Converts contravariant components `(uᵅ, uᵝ)` to covariant ones."""
    return (
        self.cov_aa * con_a + self.cov_ab * con_b,
        self.cov_ab * con_a + self.cov_bb * con_b,
    )

  @classmethod
  def from_covariant(cls, cov_aa: Array, cov_ab: Array, cov_bb: Array):
    """Builds the metric by inverting the covariant components."""
    det = cov_aa * cov_bb - cov_ab**2
    return cls(
        jacobian=jnp.sqrt(det),
        cov_aa=cov_aa,
        cov_ab=cov_ab,
        cov_bb=cov_bb,
        con_aa=cov_bb / det,
        con_ab=-cov_ab / det,
        con_bb=cov_aa / det,
    )
