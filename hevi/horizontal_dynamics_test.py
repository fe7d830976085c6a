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
"""Tests for horizontal_dynamics.py."""

import dataclasses

from absl.testing import absltest
from absl.testing import parameterized
from hevi import equation_sets
from hevi import grid
from hevi import horizontal_dynamics
from hevi import metric
from hevi import spectral_element
from hevi import units
import jax
import jax.numpy as jnp
import numpy as np

jax.config.update('jax_enable_x64', True)

U = equation_sets.U_INDEX
V = equation_sets.V_INDEX
P = equation_sets.P_INDEX
W = equation_sets.W_INDEX
R = equation_sets.R_INDEX


def make_patch(order=4, elements=2, levels=5, topography=None):
  g = grid.CartesianGridGLL(
      equation_sets.EquationSet.primitive_nonhydrostatic(),
      units.PhysicalConstants.from_si(),
      horizontal_order=order,
      element_count_a=elements,
      element_count_b=elements,
      levels=levels,
      domain_size=(2000.0, 2000.0),
      z_top=1000.0,
      topography=topography,
  )
  (patch,) = g.active_patches
  return patch, patch.geometry.element_geometry(order)


def resting_state(geometry, rho=1.0, rho_theta=300.0):
  node_shape = (5,) + geometry.jacobian.shape
  redge_shape = (5,) + geometry.jacobian_redge.shape
  state_node = (
      jnp.zeros(node_shape).at[R].set(rho).at[P].set(rho_theta)
  )
  state_redge = jnp.zeros(redge_shape)
  return state_node, state_redge


def sheared(geometry, cov_aa=1.0, cov_ab=0.3, cov_bb=1.5):
  """Replaces the horizontal metric with a constant non-orthogonal one."""
  one = np.ones((1, 1, 1, 1, 1))
  return dataclasses.replace(
      geometry,
      metric=metric.Metric2D.from_covariant(
          cov_aa * one, cov_ab * one, cov_bb * one
      ),
  )


def element_coordinates(geometry, order=4, delta=1000.0):
  """Returns the α and β coordinates of every node, broadcast to node shape."""
  nodes, _ = spectral_element.gauss_lobatto_legendre(order)
  elements = geometry.jacobian.shape[0]
  x = (np.arange(elements)[:, None] + nodes) * delta
  shape = geometry.jacobian.shape
  return (
      np.broadcast_to(x[:, :, None, None, None], shape),
      np.broadcast_to(x[None, None, :, :, None], shape),
  )


class InterpolationTest(absltest.TestCase):

  def test_interpolate_to_interfaces(self):
    x = np.array([[1.0, 3.0, 5.0], [0.0, -2.0, 2.0]])
    actual = horizontal_dynamics.interpolate_to_interfaces(x)
    expected = [[1.0, 2.0, 4.0, 5.0], [0.0, -1.0, 0.0, 2.0]]
    np.testing.assert_allclose(actual, expected)

  def test_vertical_pressure_derivative_is_exact_for_linear_profiles(self):
    z = np.array([0.0, 50.0, 200.0, 260.0, 500.0])
    pressure = 1e5 - 11.5 * z
    actual = horizontal_dynamics.vertical_pressure_derivative(pressure, z)
    np.testing.assert_allclose(actual, -11.5, rtol=1e-12)

  def test_vertical_pressure_derivative_stencils(self):
    z = np.array([0.0, 1.0, 2.0, 3.0])
    pressure = z**2
    actual = horizontal_dynamics.vertical_pressure_derivative(pressure, z)
    # one-sided at both ends, centred in between.
    np.testing.assert_allclose(actual, [1.0, 2.0, 4.0, 5.0])


class ExplicitUpdateTest(parameterized.TestCase):

  def test_resting_atmosphere_has_no_tendency(self):
    patch, geometry = make_patch()
    state_node, state_redge = resting_state(geometry)
    pressure = jnp.full(geometry.jacobian.shape, 8.0e4)
    node_increment, redge_increment = horizontal_dynamics.explicit_update(
        state_node, state_redge, pressure, geometry, patch.operator, 10.0
    )
    np.testing.assert_allclose(node_increment, 0.0, atol=1e-12)
    np.testing.assert_allclose(redge_increment, 0.0, atol=1e-12)

  @parameterized.parameters(
      dict(seed=0, topography=None),
      dict(seed=1, topography=lambda x, y: 50.0 * np.sin(np.pi * x / 1000.0)),
  )
  def test_conserves_mass_and_rho_theta(self, seed, topography):
    patch, geometry = make_patch(topography=topography)
    rng = np.random.default_rng(seed)
    state_node, state_redge = resting_state(geometry)
    shape = geometry.jacobian.shape
    rho = 1.0 + 0.1 * rng.uniform(size=shape)
    state_node = (
        state_node.at[R].set(rho)
        .at[P].set(300.0 * rho * (1 + 0.01 * rng.normal(size=shape)))
        .at[U].set(rng.normal(size=shape))
        .at[V].set(rng.normal(size=shape))
    )
    w = rng.normal(size=geometry.jacobian_redge.shape)
    w[..., 0] = w[..., -1] = 0.0
    state_redge = state_redge.at[W].set(w)
    pressure = 8e4 + rng.normal(size=shape)
    node_increment, redge_increment = horizontal_dynamics.explicit_update(
        state_node, state_redge, pressure, geometry, patch.operator, 1.0
    )
    area = geometry.element_area
    for component in (R, P):
      change = node_increment[component] * area
      scale = np.sum(np.abs(change))
      self.assertGreater(scale, 0.0)
      np.testing.assert_allclose(np.sum(change), 0.0, atol=1e-12 * scale)
    # Only interior interfaces of W receive horizontal tendencies.
    np.testing.assert_array_equal(redge_increment[W][..., 0], 0.0)
    np.testing.assert_array_equal(redge_increment[W][..., -1], 0.0)
    np.testing.assert_array_equal(redge_increment[U], 0.0)
    np.testing.assert_array_equal(node_increment[W], 0.0)

  def test_pressure_gradient_accelerates_flow(self):
    patch, geometry = make_patch(order=4, elements=2)
    state_node, state_redge = resting_state(geometry)
    x, _ = element_coordinates(geometry)
    pressure = 8e4 - 0.01 * x
    node_increment, redge_increment = horizontal_dynamics.explicit_update(
        state_node, state_redge, pressure, geometry, patch.operator, 3.0
    )
    np.testing.assert_allclose(node_increment[U], 0.03, rtol=1e-10)
    np.testing.assert_allclose(node_increment[V], 0.0, atol=1e-12)
    np.testing.assert_allclose(redge_increment, 0.0, atol=1e-12)

  def test_pressure_gradient_is_raised_with_sheared_metric(self):
    patch, geometry = make_patch(order=4, elements=2)
    geometry = sheared(geometry)
    state_node, state_redge = resting_state(geometry)
    x, y = element_coordinates(geometry)
    pressure = 8e4 - 0.01 * x + 0.02 * y
    node_increment, redge_increment = horizontal_dynamics.explicit_update(
        state_node, state_redge, pressure, geometry, patch.operator, 3.0
    )
    # g^αα = 1.5 / det, g^αβ = -0.3 / det, g^ββ = 1 / det.
    det = 1.5 - 0.3**2
    np.testing.assert_allclose(
        node_increment[U], 3.0 * (1.5 * 0.01 + 0.3 * 0.02) / det, rtol=1e-10
    )
    np.testing.assert_allclose(
        node_increment[V], -3.0 * (0.3 * 0.01 + 0.02) / det, rtol=1e-10
    )
    np.testing.assert_allclose(node_increment[R], 0.0, atol=1e-12)
    np.testing.assert_allclose(redge_increment, 0.0, atol=1e-12)

  @parameterized.parameters(
      dict(cov_ab=0.0, cov_bb=1.0),
      dict(cov_ab=0.3, cov_bb=1.5),
      dict(cov_ab=-0.6, cov_bb=2.0),
  )
  def test_momentum_advection_with_sheared_metric(self, cov_ab, cov_bb):
    # ρuᵅ = c x with ρ = 1 has ∂(ρuᵅ)/∂t = -∂(ρuᵅ uᵅ)/∂x = -2 c² x and no
    # β tendency. The kinetic energy gradient and the vorticity terms only
    # cancel in the β equation if lowering, raising and J2D are consistent.
    patch, geometry = make_patch(order=4, elements=2)
    geometry = sheared(geometry, cov_ab=cov_ab, cov_bb=cov_bb)
    state_node, state_redge = resting_state(geometry)
    x, _ = element_coordinates(geometry)
    c, dt = 1e-3, 2.0
    state_node = state_node.at[U].set(c * x)
    pressure = jnp.full(geometry.jacobian.shape, 8.0e4)
    node_increment, redge_increment = horizontal_dynamics.explicit_update(
        state_node, state_redge, pressure, geometry, patch.operator, dt
    )
    # Weak flux divergences are exact away from element edges along α.
    interior = lambda a: np.asarray(a)[:, 1:-1]
    np.testing.assert_allclose(
        interior(node_increment[U]),
        interior(-2 * dt * c**2 * x),
        rtol=1e-9,
        atol=1e-15,
    )
    np.testing.assert_allclose(node_increment[V], 0.0, atol=1e-12)
    np.testing.assert_allclose(interior(node_increment[R]), -dt * c)
    np.testing.assert_allclose(interior(node_increment[P]), -dt * 300.0 * c)
    np.testing.assert_allclose(redge_increment, 0.0, atol=1e-12)

  def test_coriolis_turns_flow(self):
    g = grid.CartesianGridGLL(
        equation_sets.EquationSet.primitive_nonhydrostatic(),
        units.PhysicalConstants.from_si(),
        horizontal_order=3,
        element_count_a=2,
        element_count_b=2,
        levels=3,
        domain_size=(2000.0, 2000.0),
        z_top=1000.0,
        coriolis_f=1e-4,
    )
    (patch,) = g.active_patches
    geometry = patch.geometry.element_geometry(3)
    state_node, state_redge = resting_state(geometry)
    state_node = state_node.at[U].set(10.0)
    pressure = jnp.full(geometry.jacobian.shape, 8.0e4)
    node_increment, _ = horizontal_dynamics.explicit_update(
        state_node, state_redge, pressure, geometry, patch.operator, 2.0
    )
    # Uniform eastward flow is deflected southward: dv = -Δt f ρu.
    np.testing.assert_allclose(node_increment[V], -2.0 * 1e-4 * 10.0)
    # Away from element edges the uniform mass flux has no divergence.
    np.testing.assert_allclose(
        node_increment[U][:, 1:-1], 0.0, atol=1e-12
    )


if __name__ == '__main__':
  absltest.main()
