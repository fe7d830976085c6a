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

"""Batched solvers for tridiagonal linear systems along the last axis.

All routines follow the `jax.lax.linalg.tridiagonal_solve` layout: the lower,
main and upper diagonals and the right-hand side all have shape `[..., n]`,
with `lower[..., 0] == 0` and `upper[..., n - 1] == 0`. Each solver returns
the solution together with an integer status per system: `0` on success and
the 1-based row of the first vanishing pivot otherwise, as LAPACK's `gtsv`.
"""

from __future__ import annotations

from hevi import typing
import jax
from jax import lax
import jax.numpy as jnp


Array = typing.Array

METHODS = ('thomas', 'lax')


def _first_failure(failed: Array) -> jax.Array:
  """Returns the 1-based index of the first `True` along the last axis."""
  return jnp.where(
      jnp.any(failed, axis=-1), jnp.argmax(failed, axis=-1) + 1, 0
  ).astype(jnp.int32)


@jax.named_call
def thomas_solve(
    lower: Array,
    diagonal: Array,
    upper: Array,
    rhs: Array,
) -> tuple[jax.Array, jax.Array]:
  """Solves tridiagonal systems with the Thomas algorithm.

  The forward elimination and back substitution run as `lax.scan`s over the
  last axis, vectorized over all leading (column) axes. No pivoting is
  performed, so the algorithm is stable for the diagonally dominant systems
  produced by the vertical acoustic solve.

  Args:
    lower: sub-diagonal, `lower[..., k]` multiplies `x[..., k - 1]` in row k.
    diagonal: main diagonal.
    upper: super-diagonal, `upper[..., k]` multiplies `x[..., k + 1]` in row k.
    rhs: right-hand side.

  Returns:
    Tuple `(x, info)` with the solution of shape `[..., n]` and the status of
    shape `[...]`.
  """
  lower, diagonal, upper, rhs = jnp.broadcast_arrays(
      lower, diagonal, upper, rhs
  )
  # scan runs over the leading axis.
  lower, diagonal, upper, rhs = (
      jnp.moveaxis(x, -1, 0) for x in (lower, diagonal, upper, rhs)
  )

  def forward(carry, row):
    c_prev, d_prev = carry
    a, b, c, d = row
    pivot = b - a * c_prev
    failed = pivot == 0
    safe_pivot = jnp.where(failed, 1, pivot)
    c_new = c / safe_pivot
    d_new = (d - a * d_prev) / safe_pivot
    return (c_new, d_new), (c_new, d_new, failed)

  zeros = jnp.zeros_like(rhs[0])
  _, (c_prime, d_prime, failed) = lax.scan(
      forward, (zeros, zeros), (lower, diagonal, upper, rhs)
  )

  def backward(x_next, row):
    c, d = row
    x = d - c * x_next
    return x, x

  _, x = lax.scan(backward, zeros, (c_prime, d_prime), reverse=True)
  x = jnp.moveaxis(x, 0, -1)
  info = _first_failure(jnp.moveaxis(failed, 0, -1))
  return x, info


@jax.named_call
def lax_solve(
    lower: Array,
    diagonal: Array,
    upper: Array,
    rhs: Array,
) -> tuple[jax.Array, jax.Array]:
  """Solves tridiagonal systems with `jax.lax.linalg.tridiagonal_solve`.

  This dispatches to the platform's `gtsv` implementation. The backend does
  not report pivot failures, so a system is flagged as failed at the first
  row whose solution is not finite.
  """
  lower, diagonal, upper, rhs = jnp.broadcast_arrays(
      lower, diagonal, upper, rhs
  )
  x = lax.linalg.tridiagonal_solve(
      lower, diagonal, upper, rhs[..., jnp.newaxis]
  )[..., 0]
  info = _first_failure(~jnp.isfinite(x))
  return x, info


def solve(
    lower: Array,
    diagonal: Array,
    upper: Array,
    rhs: Array,
    method: str = 'thomas',
) -> tuple[jax.Array, jax.Array]:
  """Solves tridiagonal systems using the named `method`."""
  if method == 'thomas':
    return thomas_solve(lower, diagonal, upper, rhs)
  elif method == 'lax':
    return lax_solve(lower, diagonal, upper, rhs)
  else:
    raise ValueError(
        f'invalid tridiagonal method {method!r}; expected one of {METHODS}'
    )


def matvec(lower: Array, diagonal: Array, upper: Array, x: Array) -> jax.Array:
  """Applies the tridiagonal matrix to `x`; used to check residuals."""
  result = diagonal * x
  result = result.at[..., 1:].add(lower[..., 1:] * x[..., :-1])
  result = result.at[..., :-1].add(upper[..., :-1] * x[..., 1:])
  return result
