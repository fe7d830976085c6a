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

"""Vertically implicit treatment of acoustic waves.

Linearizing the vertical momentum, mass and ρθ equations about the initial
state with `∂p/∂θ = γ p / ρθ` gives a tridiagonal system for the new vertical
momentum on the `levels + 1` interfaces of every column. The bottom and top
rows are identities with zero right-hand side (rigid lid and ground).
"""

from __future__ import annotations

from hevi import equation_sets
from hevi import grid
from hevi import horizontal_dynamics
from hevi import typing
import jax
import jax.numpy as jnp
import tree_math


Array = typing.Array

P_INDEX = equation_sets.P_INDEX
W_INDEX = equation_sets.W_INDEX
R_INDEX = equation_sets.R_INDEX


@tree_math.struct
class AcousticColumns:
  """Tridiagonal systems for the vertical momentum of every column.

  Attributes:
    lower: sub-diagonal, `lower[..., k]` multiplies `W[k - 1]`.
    diagonal: main diagonal.
    upper: super-diagonal, `upper[..., k]` multiplies `W[k + 1]`.
    rhs: right-hand side.
    theta_redge: potential temperature on interfaces.
    dp_dtheta: `∂p/∂θ` on nodes.
  """

  lower: Array
  diagonal: Array
  upper: Array
  rhs: Array
  theta_redge: Array
  dp_dtheta: Array


def _pad_rows(rows: Array, first: float, last: float) -> jax.Array:
  shape = rows.shape[:-1] + (1,)
  first = jnp.full(shape, first, rows.dtype)
  last = jnp.full(shape, last, rows.dtype)
  return jnp.concatenate([first, rows, last], axis=-1)


@jax.named_call
def assemble_acoustic_columns(
    state_node: Array,
    state_redge: Array,
    pressure: Array,
    geometry: grid.ElementGeometry,
    gravity: Array,
    gamma: Array,
    dt: Array,
) -> AcousticColumns:
  """Assembles the vertical acoustic system of every column.

  Args:
    state_node: initial state on nodes `[C, a, i, b, j, levels]`.
    state_redge: initial state on interfaces `[C, a, i, b, j, levels + 1]`.
    pressure: pressure diagnosed from the initial ρθ.
    geometry: element geometry.
    gravity: gravitational acceleration `g`.
    gamma: ratio of specific heats `γ`.
    dt: time step `Δt`.

  Returns:
    The assembled columns, each of length `levels + 1`.
  """
  rho_theta = state_node[P_INDEX]
  rho = state_node[R_INDEX]
  rho_w = state_redge[W_INDEX]

  dp_dtheta = gamma * pressure / rho_theta
  rho_redge = horizontal_dynamics.interpolate_to_interfaces(rho)
  theta_redge = (
      horizontal_dynamics.interpolate_to_interfaces(rho_theta) / rho_redge
  )

  z_interfaces = geometry.z_interfaces
  z_levels = geometry.z_levels
  inv_dz = 1 / (z_interfaces[..., 1:] - z_interfaces[..., :-1])
  inv_dz_hat = 1 / (z_levels[..., 1:] - z_levels[..., :-1])
  inv_dz_k = inv_dz[..., 1:]
  inv_dz_km = inv_dz[..., :-1]
  dp_dtheta_k = dp_dtheta[..., 1:]
  dp_dtheta_km = dp_dtheta[..., :-1]

  dt2 = dt * dt
  half_g = 0.5 * gravity

  # Rows for interior interfaces k = 1 ... levels - 1.
  lower = -dt2 * inv_dz_km * (
      inv_dz_hat * dp_dtheta_km * theta_redge[..., :-2] - half_g
  )
  diagonal = 1 + dt2 * (
      inv_dz_hat
      * theta_redge[..., 1:-1]
      * (dp_dtheta_k * inv_dz_k + dp_dtheta_km * inv_dz_km)
      + half_g * (inv_dz_k - inv_dz_km)
  )
  upper = -dt2 * inv_dz_k * (
      inv_dz_hat * dp_dtheta_k * theta_redge[..., 2:] + half_g
  )
  rhs = rho_w[..., 1:-1] - dt * (
      inv_dz_hat * (pressure[..., 1:] - pressure[..., :-1])
      + gravity * rho_redge[..., 1:-1]
  )
  return AcousticColumns(
      lower=_pad_rows(lower, 0.0, 0.0),
      diagonal=_pad_rows(diagonal, 1.0, 1.0),
      upper=_pad_rows(upper, 0.0, 0.0),
      rhs=_pad_rows(rhs, 0.0, 0.0),
      theta_redge=theta_redge,
      dp_dtheta=dp_dtheta,
  )


@jax.named_call
def acoustic_update(
    update_node: Array,
    update_redge: Array,
    initial_w: Array,
    columns: AcousticColumns,
    w_solution: Array,
    geometry: grid.ElementGeometry,
    dt: Array,
) -> tuple[jax.Array, jax.Array]:
  """Applies the solved vertical momentum to the update state.

  Args:
    update_node: update state on nodes `[C, a, i, b, j, levels]`.
    update_redge: update state on interfaces `[C, a, i, b, j, levels + 1]`.
    initial_w: initial vertical momentum on interfaces.
    columns: the systems that produced `w_solution`.
    w_solution: new vertical momentum on interfaces.
    geometry: element geometry.
    dt: time step `Δt`.

  Returns:
    Tuple `(update_node, update_redge)` with `W`, `R` and `P` updated and the
    vertical momentum on the lowest interface set to zero.
  """
  z_interfaces = geometry.z_interfaces
  inv_dz = 1 / (z_interfaces[..., 1:] - z_interfaces[..., :-1])

  # The top interface keeps its value.
  dw = (w_solution - initial_w).at[..., -1].set(0.0)
  mass_flux = w_solution
  theta_flux = w_solution * columns.theta_redge
  drho = -dt * inv_dz * (mass_flux[..., 1:] - mass_flux[..., :-1])
  drho_theta = -dt * inv_dz * (theta_flux[..., 1:] - theta_flux[..., :-1])

  update_node = (
      update_node.at[R_INDEX].add(drho).at[P_INDEX].add(drho_theta)
  )
  new_w = (update_redge[W_INDEX] + dw).at[..., 0].set(0.0)
  update_redge = update_redge.at[W_INDEX].set(new_w)
  return update_node, update_redge
