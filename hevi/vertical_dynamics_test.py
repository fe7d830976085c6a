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
"""Tests for vertical_dynamics.py."""

from absl.testing import absltest
from absl.testing import parameterized
from hevi import equation_sets
from hevi import grid
from hevi import tridiagonal
from hevi import units
from hevi import vertical_dynamics
import jax
import jax.numpy as jnp
import numpy as np

jax.config.update('jax_enable_x64', True)

P = equation_sets.P_INDEX
W = equation_sets.W_INDEX
R = equation_sets.R_INDEX

PHYSICS = units.PhysicalConstants.from_si()


def make_geometry(levels=8):
  g = grid.CartesianGridGLL(
      equation_sets.EquationSet.primitive_nonhydrostatic(),
      PHYSICS,
      horizontal_order=3,
      element_count_a=1,
      element_count_b=1,
      levels=levels,
      domain_size=(1000.0, 1000.0),
      z_top=1000.0,
  )
  (patch,) = g.active_patches
  return patch.geometry.element_geometry(3)


def hydrostatic_state(geometry):
  """Returns a state in discrete hydrostatic balance and its pressure."""
  z = np.asarray(geometry.z_levels)
  rho = 1.2 * np.exp(-z / 8000.0)
  rho_redge = 0.5 * (rho[..., 1:] + rho[..., :-1])
  dp = -PHYSICS.g * np.diff(z, axis=-1) * rho_redge
  pressure = 9e4 + np.concatenate(
      [np.zeros_like(z[..., :1]), np.cumsum(dp, axis=-1)], axis=-1
  )
  rho_theta = (
      PHYSICS.p0 / PHYSICS.R * (pressure / PHYSICS.p0) ** (1 / PHYSICS.gamma)
  )
  state_node = jnp.zeros((5,) + z.shape).at[R].set(rho).at[P].set(rho_theta)
  state_redge = jnp.zeros((5,) + geometry.z_interfaces.shape)
  return state_node, state_redge, pressure


def assemble(state_node, state_redge, pressure, geometry, dt):
  return vertical_dynamics.assemble_acoustic_columns(
      state_node, state_redge, pressure, geometry, PHYSICS.g, PHYSICS.gamma, dt
  )


class AssembleAcousticColumnsTest(parameterized.TestCase):

  def test_boundary_rows_are_identities(self):
    geometry = make_geometry()
    state_node, state_redge, pressure = hydrostatic_state(geometry)
    columns = assemble(state_node, state_redge, pressure, geometry, 5.0)
    for row in (0, -1):
      np.testing.assert_array_equal(columns.lower[..., row], 0.0)
      np.testing.assert_array_equal(columns.diagonal[..., row], 1.0)
      np.testing.assert_array_equal(columns.upper[..., row], 0.0)
      np.testing.assert_array_equal(columns.rhs[..., row], 0.0)
    self.assertEqual(columns.diagonal.shape, geometry.z_interfaces.shape)

  def test_isentropic_rows_sum_to_one(self):
    # With uniform θ and layer depths the acoustic and buoyancy couplings
    # cancel in every row sum.
    geometry = make_geometry()
    shape = geometry.z_levels.shape
    state_node = (
        jnp.zeros((5,) + shape).at[R].set(1.0).at[P].set(300.0)
    )
    state_redge = jnp.zeros((5,) + geometry.z_interfaces.shape)
    pressure = PHYSICS.pressure_from_rho_theta(state_node[P])
    columns = assemble(state_node, state_redge, pressure, geometry, 2.0)
    row_sums = columns.lower + columns.diagonal + columns.upper
    np.testing.assert_allclose(row_sums, 1.0, rtol=1e-12)
    self.assertTrue(np.all(columns.diagonal[..., 1:-1] > 1.0))
    self.assertTrue(np.all(columns.lower[..., 1:-1] < 0.0))

  def test_pressure_derivative_matches_finite_difference(self):
    geometry = make_geometry()
    state_node, state_redge, pressure = hydrostatic_state(geometry)
    columns = assemble(state_node, state_redge, pressure, geometry, 5.0)
    rho_theta = np.asarray(state_node[P])
    eps = 1e-4
    fd = (
        PHYSICS.pressure_from_rho_theta(rho_theta + eps)
        - PHYSICS.pressure_from_rho_theta(rho_theta - eps)
    ) / (2 * eps)
    np.testing.assert_allclose(columns.dp_dtheta, fd, rtol=1e-7)

  @parameterized.parameters('thomas', 'lax')
  def test_hydrostatic_balance_stays_at_rest(self, method):
    geometry = make_geometry()
    state_node, state_redge, pressure = hydrostatic_state(geometry)
    columns = assemble(state_node, state_redge, pressure, geometry, 5.0)
    np.testing.assert_allclose(columns.rhs, 0.0, atol=1e-10)
    w, info = tridiagonal.solve(
        columns.lower, columns.diagonal, columns.upper, columns.rhs, method
    )
    np.testing.assert_array_equal(info, 0)
    np.testing.assert_allclose(w, 0.0, atol=1e-10)


class AcousticUpdateTest(absltest.TestCase):

  def test_conserves_column_mass(self):
    geometry = make_geometry()
    state_node, state_redge, pressure = hydrostatic_state(geometry)
    columns = assemble(state_node, state_redge, pressure, geometry, 1.0)
    rng = np.random.default_rng(0)
    w_solution = rng.normal(size=geometry.z_interfaces.shape)
    w_solution[..., 0] = w_solution[..., -1] = 0.0
    update_redge = state_redge.at[W, ..., -1].set(7.0)
    update_node, update_redge = vertical_dynamics.acoustic_update(
        state_node,
        update_redge,
        state_redge[W],
        columns,
        w_solution,
        geometry,
        1.0,
    )
    dz = np.diff(np.asarray(geometry.z_interfaces), axis=-1)
    for component in (R, P):
      change = np.sum(
          (update_node[component] - state_node[component]) * dz, axis=-1
      )
      np.testing.assert_allclose(change, 0.0, atol=1e-10)
    new_w = update_redge[W]
    np.testing.assert_array_equal(new_w[..., 0], 0.0)
    np.testing.assert_array_equal(new_w[..., -1], 7.0)
    np.testing.assert_allclose(new_w[..., 1:-1], w_solution[..., 1:-1])

  def test_density_follows_vertical_mass_flux(self):
    geometry = make_geometry(levels=4)
    state_node, state_redge, pressure = hydrostatic_state(geometry)
    columns = assemble(state_node, state_redge, pressure, geometry, 1.0)
    w_solution = np.zeros(geometry.z_interfaces.shape)
    w_solution[..., 2] = 0.5
    update_node, _ = vertical_dynamics.acoustic_update(
        state_node,
        state_redge,
        state_redge[W],
        columns,
        w_solution,
        geometry,
        2.0,
    )
    drho = update_node[R] - state_node[R]
    # Upward flux through interface 2 moves mass from level 1 to level 2.
    np.testing.assert_allclose(drho[..., 1], -2.0 * 0.5 / 250.0)
    np.testing.assert_allclose(drho[..., 2], 2.0 * 0.5 / 250.0)
    np.testing.assert_allclose(drho[..., 0], 0.0)
    np.testing.assert_allclose(drho[..., 3], 0.0)


if __name__ == '__main__':
  absltest.main()
