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

"""Gauss-Lobatto-Legendre spectral-element operators.

Fields on a patch are stored with the horizontal indices `[..., A, B, k]`
where `A = halo + a * p + i` and `B = halo + b * p + j` for element `(a, b)`
and node `(i, j)` of order `p`. Inside the kernels the element interior is
viewed in the "element layout" `[..., a, i, b, j, k]`, so that derivatives
along α contract axis `-4` and derivatives along β contract axis `-2`.
"""

from __future__ import annotations

import functools

from hevi import typing
import jax
from jax import lax
import jax.numpy as jnp
import numpy as np
import tree_math


Array = typing.Array
einsum = functools.partial(jnp.einsum, precision=lax.Precision.HIGHEST)


def gauss_lobatto_legendre(order: int) -> tuple[np.ndarray, np.ndarray]:
  """Returns GLL nodes and weights on the reference interval `[0, 1]`.

  Args:
    order: number of nodes `p >= 2`.

  Returns:
    Tuple `(nodes, weights)`, each of shape `[p]`. Nodes increase
    monotonically and weights sum to one.
  """
  if order < 2:
    raise ValueError(f'GLL order must be at least 2; got {order}.')
  n = order - 1
  legendre = np.polynomial.legendre.Legendre.basis(n)
  interior = np.sort(legendre.deriv().roots().real)
  nodes = np.concatenate([[-1.0], interior, [1.0]])
  weights = 2.0 / (n * (n + 1) * legendre(nodes) ** 2)
  return 0.5 * (nodes + 1.0), 0.5 * weights


def differentiation_matrix(nodes: np.ndarray) -> np.ndarray:
  """Returns `Dx` with `Dx[s, i] = φ_s'(x_i)` for Lagrange basis `φ` on `nodes`.

  With this orientation the derivative of a nodal field `f` at node `i` is
  `sum_s f[s] * Dx[s, i]`.
  """
  nodes = np.asarray(nodes, dtype=np.float64)
  diff = nodes[:, np.newaxis] - nodes[np.newaxis, :]
  np.fill_diagonal(diff, 1.0)
  barycentric = 1.0 / np.prod(diff, axis=1)
  # d[i, s] = φ_s'(x_i) for i != s.
  d = barycentric[np.newaxis, :] / barycentric[:, np.newaxis] / diff
  np.fill_diagonal(d, 0.0)
  np.fill_diagonal(d, -d.sum(axis=1))
  return d.T


def stiffness_matrix(dx: np.ndarray, weights: np.ndarray) -> np.ndarray:
  """Returns the weak-form stiffness matrix `S[i, s] = w_s Dx[i, s] / w_i`.

  For a nodal field `f`, `-sum_s S[i, s] f[s]` approximates `f'(x_i)` in the
  weak (integrated by parts) sense, dropping element boundary terms which
  cancel once contributions are summed across element edges.
  """
  weights = np.asarray(weights, dtype=np.float64)
  return weights[np.newaxis, :] * dx / weights[:, np.newaxis]


def to_elements(x: Array, order: int, halo: int) -> Array:
  """Extracts the element interior of `x[..., A, B, k]` in element layout."""
  *lead, na, nb, nk = x.shape
  ea = (na - 2 * halo) // order
  eb = (nb - 2 * halo) // order
  interior = x[..., halo:halo + ea * order, halo:halo + eb * order, :]
  return interior.reshape(*lead, ea, order, eb, order, nk)


def from_elements(x: Array) -> Array:
  """Inverse of `to_elements` restricted to the interior."""
  *lead, ea, p, eb, q, nk = x.shape
  return x.reshape(*lead, ea * p, eb * q, nk)


def set_interior(x: Array, interior: Array, halo: int) -> jax.Array:
  """Returns `x` with its element interior replaced by `interior`."""
  na, nb = interior.shape[-3], interior.shape[-2]
  return jnp.asarray(x).at[..., halo:halo + na, halo:halo + nb, :].set(
      interior
  )


def with_level_axis(x: Array) -> Array:
  """Appends a singleton vertical axis to a horizontal field `x[..., A, B]`."""
  return x[..., np.newaxis]


@tree_math.struct
class SpectralElementOperator:
  """Collocation derivatives on the tensor-product GLL nodes of an element.

  Attributes:
    dx: differentiation matrix `Dx[s, i]` of shape `[p, p]`.
    stiffness: stiffness matrix `S[i, s]` of shape `[p, p]`.
    inv_delta_alpha: inverse element spacing `1 / Δα`.
    inv_delta_beta: inverse element spacing `1 / Δβ`.
  """

  dx: Array
  stiffness: Array
  inv_delta_alpha: Array
  inv_delta_beta: Array

  @classmethod
  def build(
      cls, order: int, delta_alpha: float, delta_beta: float
  ) -> SpectralElementOperator:
    nodes, weights = gauss_lobatto_legendre(order)
    dx = differentiation_matrix(nodes)
    return cls(
        dx=jnp.asarray(dx),
        stiffness=jnp.asarray(stiffness_matrix(dx, weights)),
        inv_delta_alpha=jnp.asarray(1.0 / delta_alpha),
        inv_delta_beta=jnp.asarray(1.0 / delta_beta),
    )

  @property
  def order(self) -> int:
    return self.dx.shape[0]

  def d_alpha(self, f: Array) -> jax.Array:
    """Strong-form derivative along α of `f[..., a, i, b, j, k]`."""
    return einsum('...asbjk,si->...aibjk', f, self.dx) * self.inv_delta_alpha

  def d_beta(self, f: Array) -> jax.Array:
    """Strong-form derivative along β of `f[..., a, i, b, j, k]`."""
    return einsum('...aibsk,sj->...aibjk', f, self.dx) * self.inv_delta_beta

  def weak_d_alpha(self, f: Array) -> jax.Array:
    """Negative weak-form derivative along α, `-Σ_s S(i, s) f_s / Δα`."""
    return (
        -einsum('...asbjk,is->...aibjk', f, self.stiffness)
        * self.inv_delta_alpha
    )

  def weak_d_beta(self, f: Array) -> jax.Array:
    """Negative weak-form derivative along β, `-Σ_s S(j, s) f_s / Δβ`."""
    return (
        -einsum('...aibsk,js->...aibjk', f, self.stiffness)
        * self.inv_delta_beta
    )

  def weak_divergence(self, flux_a: Array, flux_b: Array) -> jax.Array:
    """Sum of the weak-form α derivative of `flux_a` and β of `flux_b`."""
    return self.weak_d_alpha(flux_a) + self.weak_d_beta(flux_b)

  def gradient(self, f: Array) -> tuple[jax.Array, jax.Array]:
    """Covariant strong-form gradient `(∂_α f, ∂_β f)`."""
    return self.d_alpha(f), self.d_beta(f)
