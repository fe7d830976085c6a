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

"""Explicit horizontal tendencies of the non-hydrostatic equations.

The prognostic variables are the contravariant momenta `ρuᵅ`, `ρuᵝ`, the
potential temperature density `ρθ`, the vertical momentum `ρw` (on
interfaces) and the density `ρ`. Horizontal flux divergences are evaluated in
the weak (stiffness matrix) form; pressure, kinetic energy and covariant
velocity gradients use collocation derivatives.

All functions operate on element-layout arrays `[..., a, i, b, j, k]`.
"""

from __future__ import annotations

from hevi import equation_sets
from hevi import grid
from hevi import spectral_element
from hevi import typing
import jax
import jax.numpy as jnp
import tree_math


Array = typing.Array

U_INDEX = equation_sets.U_INDEX
V_INDEX = equation_sets.V_INDEX
P_INDEX = equation_sets.P_INDEX
W_INDEX = equation_sets.W_INDEX
R_INDEX = equation_sets.R_INDEX


@tree_math.struct
class ElementDiagnostics:
  """Quantities diagnosed from the initial state ahead of the tendencies.

  Node fields have `levels` entries along the last axis, interface fields
  `levels + 1`.

  Attributes:
    con_ua: contravariant velocity `uᵅ` on nodes.
    con_ub: contravariant velocity `uᵝ` on nodes.
    cov_ua: covariant velocity `u_α` on nodes.
    cov_ub: covariant velocity `u_β` on nodes.
    mass_flux_a: `J ρuᵅ` on nodes.
    mass_flux_b: `J ρuᵝ` on nodes.
    theta_flux_a: `J ρuᵅ θ` on nodes.
    theta_flux_b: `J ρuᵝ θ` on nodes.
    kinetic_energy: `½ (uᵅ u_α + uᵝ u_β)` on nodes.
    sdot_w: vertical flux of vertical momentum on nodes.
    rho_redge: density on interfaces.
    theta_redge: potential temperature `θ` on interfaces.
    sdot_ua_redge: vertical flux of `ρuᵅ` on interfaces.
    sdot_ub_redge: vertical flux of `ρuᵝ` on interfaces.
    w_flux_a_redge: α flux of vertical momentum on interfaces.
    w_flux_b_redge: β flux of vertical momentum on interfaces.
  """

  con_ua: Array
  con_ub: Array
  cov_ua: Array
  cov_ub: Array
  mass_flux_a: Array
  mass_flux_b: Array
  theta_flux_a: Array
  theta_flux_b: Array
  kinetic_energy: Array
  sdot_w: Array
  rho_redge: Array
  theta_redge: Array
  sdot_ua_redge: Array
  sdot_ub_redge: Array
  w_flux_a_redge: Array
  w_flux_b_redge: Array


def interpolate_to_interfaces(x: Array) -> jax.Array:
  """Averages node values onto interfaces.

  Interior interfaces take the mean of the two adjacent nodes; the bottom and
  top interfaces copy the nearest node.

  Args:
    x: node values with `levels` entries along the last axis.

  Returns:
    Interface values with `levels + 1` entries along the last axis.
  """
  x = jnp.asarray(x)
  mid = 0.5 * (x[..., 1:] + x[..., :-1])
  return jnp.concatenate([x[..., :1], mid, x[..., -1:]], axis=-1)


def _zero_boundary_interfaces(x: Array) -> jax.Array:
  return x.at[..., 0].set(0.0).at[..., -1].set(0.0)


def vertical_pressure_derivative(pressure: Array, z_levels: Array) -> jax.Array:
  """Returns `∂p/∂z` on nodes.

  Uses one-sided differences at the lowest and highest nodes and centred
  differences elsewhere.
  """
  one_sided = (pressure[..., 1:] - pressure[..., :-1]) / (
      z_levels[..., 1:] - z_levels[..., :-1]
  )
  centred = (pressure[..., 2:] - pressure[..., :-2]) / (
      z_levels[..., 2:] - z_levels[..., :-2]
  )
  return jnp.concatenate(
      [one_sided[..., :1], centred, one_sided[..., -1:]], axis=-1
  )


@jax.named_call
def compute_element_diagnostics(
    state_node: Array,
    state_redge: Array,
    geometry: grid.ElementGeometry,
) -> ElementDiagnostics:
  """Diagnoses velocities, fluxes and interface values from the state.

  Args:
    state_node: state on nodes `[C, a, i, b, j, levels]`.
    state_redge: state on interfaces `[C, a, i, b, j, levels + 1]`.
    geometry: element geometry.

  Returns:
    The element diagnostics.
  """
  rho_ua = state_node[U_INDEX]
  rho_ub = state_node[V_INDEX]
  rho_theta = state_node[P_INDEX]
  rho = state_node[R_INDEX]
  rho_w = state_redge[W_INDEX]

  # Interface values.
  rho_redge = interpolate_to_interfaces(rho)
  rho_ua_redge = interpolate_to_interfaces(rho_ua)
  rho_ub_redge = interpolate_to_interfaces(rho_ub)
  theta_redge = interpolate_to_interfaces(rho_theta) / rho_redge

  sdot_redge = (
      rho_w
      - rho_ua_redge * geometry.deriv_r_redge_a
      - rho_ub_redge * geometry.deriv_r_redge_b
  )
  # No vertical flux of horizontal momentum through the bottom or the top.
  sdot_ua_redge = _zero_boundary_interfaces(
      sdot_redge / rho_redge * rho_ua_redge
  )
  sdot_ub_redge = _zero_boundary_interfaces(
      sdot_redge / rho_redge * rho_ub_redge
  )
  w_flux = geometry.jacobian_redge * rho_w / rho_redge
  w_flux_a_redge = w_flux * rho_ua_redge
  w_flux_b_redge = w_flux * rho_ub_redge

  # Node values.
  con_ua = rho_ua / rho
  con_ub = rho_ub / rho
  cov_ua, cov_ub = geometry.metric.lower_index(con_ua, con_ub)
  mass_flux_a = geometry.jacobian * rho_ua
  mass_flux_b = geometry.jacobian * rho_ub
  theta = rho_theta / rho
  kinetic_energy = 0.5 * (cov_ua * con_ua + cov_ub * con_ub)
  sdot_w = (
      0.5 * (rho_w[..., :-1] + rho_w[..., 1:])
      - geometry.deriv_r_node_a * rho_ua
      - geometry.deriv_r_node_b * rho_ub
  )
  return ElementDiagnostics(
      con_ua=con_ua,
      con_ub=con_ub,
      cov_ua=cov_ua,
      cov_ub=cov_ub,
      mass_flux_a=mass_flux_a,
      mass_flux_b=mass_flux_b,
      theta_flux_a=mass_flux_a * theta,
      theta_flux_b=mass_flux_b * theta,
      kinetic_energy=kinetic_energy,
      sdot_w=sdot_w,
      rho_redge=rho_redge,
      theta_redge=theta_redge,
      sdot_ua_redge=sdot_ua_redge,
      sdot_ub_redge=sdot_ub_redge,
      w_flux_a_redge=w_flux_a_redge,
      w_flux_b_redge=w_flux_b_redge,
  )


@jax.named_call
def explicit_update(
    state_node: Array,
    state_redge: Array,
    pressure: Array,
    geometry: grid.ElementGeometry,
    operator: spectral_element.SpectralElementOperator,
    dt: Array,
) -> tuple[jax.Array, jax.Array]:
  """Computes `Δt` times the explicit horizontal tendencies.

  Args:
    state_node: initial state on nodes `[C, a, i, b, j, levels]`.
    state_redge: initial state on interfaces `[C, a, i, b, j, levels + 1]`.
    pressure: pressure on nodes `[a, i, b, j, levels]`, consistent with ρθ.
    geometry: element geometry.
    operator: spectral element derivative operator.
    dt: time step `Δt`.

  Returns:
    Tuple `(node_increment, redge_increment)` shaped like the state arrays,
    to be added to the update state. Only `U`, `V`, `P`, `R` change on nodes
    and only interior interfaces of `W` change on interfaces.
  """
  d = compute_element_diagnostics(state_node, state_redge, geometry)
  rho = state_node[R_INDEX]
  inv_jacobian = 1 / geometry.jacobian
  inv_jacobian_2d = 1 / geometry.metric.jacobian

  # Pressure gradient along z surfaces.
  da_p, db_p = operator.gradient(pressure)
  dz_p = vertical_pressure_derivative(pressure, geometry.z_levels)
  da_p = da_p - geometry.deriv_r_node_a * dz_p
  db_p = db_p - geometry.deriv_r_node_b * dz_p
  con_da_p, con_db_p = geometry.metric.raise_index(da_p, db_p)

  da_ke, db_ke = operator.gradient(d.kinetic_energy)
  con_da_ke, con_db_ke = geometry.metric.raise_index(da_ke, db_ke)

  horizontal_flux_div = inv_jacobian * operator.weak_divergence(
      d.mass_flux_a, d.mass_flux_b
  )
  theta_flux_div = inv_jacobian * operator.weak_divergence(
      d.theta_flux_a, d.theta_flux_b
  )

  absolute_vorticity = geometry.coriolis_f + inv_jacobian_2d * (
      operator.d_alpha(d.cov_ub) - operator.d_beta(d.cov_ua)
  )
  vorticity_a = -absolute_vorticity * inv_jacobian_2d * d.cov_ub
  vorticity_b = absolute_vorticity * inv_jacobian_2d * d.cov_ua

  inv_dz = 1 / (
      geometry.z_interfaces[..., 1:] - geometry.z_interfaces[..., :-1]
  )
  dz_ua_flux = inv_dz * (
      d.sdot_ua_redge[..., 1:] - d.sdot_ua_redge[..., :-1]
  )
  dz_ub_flux = inv_dz * (
      d.sdot_ub_redge[..., 1:] - d.sdot_ub_redge[..., :-1]
  )

  du = dt * (
      -con_da_p
      - rho * (con_da_ke + vorticity_a)
      - horizontal_flux_div * d.con_ua
      - dz_ua_flux
  )
  dv = dt * (
      -con_db_p
      - rho * (con_db_ke + vorticity_b)
      - horizontal_flux_div * d.con_ub
      - dz_ub_flux
  )
  drho = -dt * horizontal_flux_div
  drho_theta = -dt * theta_flux_div

  # Vertical momentum on interior interfaces.
  w_flux_div = operator.weak_divergence(d.w_flux_a_redge, d.w_flux_b_redge)
  z_levels = geometry.z_levels
  dz_w_flux = (d.sdot_w[..., 1:] - d.sdot_w[..., :-1]) / (
      z_levels[..., 1:] - z_levels[..., :-1]
  )
  dw_interior = -dt * (
      w_flux_div[..., 1:-1] / geometry.jacobian_redge[..., 1:-1] + dz_w_flux
  )
  dw = jnp.zeros_like(state_redge[W_INDEX]).at[..., 1:-1].set(dw_interior)

  node_increment = (
      jnp.zeros_like(state_node)
      .at[U_INDEX].set(du)
      .at[V_INDEX].set(dv)
      .at[P_INDEX].set(drho_theta)
      .at[R_INDEX].set(drho)
  )
  redge_increment = jnp.zeros_like(state_redge).at[W_INDEX].set(dw)
  return node_increment, redge_increment
