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
"""Tests for GLL quadrature and spectral element derivative operators."""

from absl.testing import absltest
from absl.testing import parameterized
from hevi import spectral_element
import jax
import numpy as np

jax.config.update('jax_enable_x64', True)


def _element_field(fn, order, element_count, delta):
  """Evaluates `fn(x, y)` on GLL nodes, returned in element layout."""
  nodes, _ = spectral_element.gauss_lobatto_legendre(order)
  x = ((np.arange(element_count)[:, None] + nodes) * delta).ravel()
  xx, yy = np.meshgrid(x, x, indexing='ij')
  values = fn(xx, yy)[..., np.newaxis]
  return spectral_element.to_elements(values, order, halo=0), xx, yy


class GaussLobattoLegendreTest(parameterized.TestCase):

  @parameterized.parameters(2, 3, 4, 6, 8)
  def test_nodes_and_weights(self, order):
    nodes, weights = spectral_element.gauss_lobatto_legendre(order)
    self.assertEqual(nodes.shape, (order,))
    np.testing.assert_allclose(nodes[[0, -1]], [0.0, 1.0], atol=1e-14)
    self.assertTrue(np.all(np.diff(nodes) > 0))
    np.testing.assert_allclose(weights.sum(), 1.0, rtol=1e-13)
    np.testing.assert_allclose(weights, weights[::-1], rtol=1e-12)

  @parameterized.parameters(3, 4, 6)
  def test_quadrature_exactness(self, order):
    # GLL quadrature with p nodes integrates polynomials of degree 2p - 3.
    nodes, weights = spectral_element.gauss_lobatto_legendre(order)
    degree = 2 * order - 3
    np.testing.assert_allclose(
        np.sum(weights * nodes**degree), 1 / (degree + 1), rtol=1e-12
    )

  def test_invalid_order(self):
    with self.assertRaises(ValueError):
      spectral_element.gauss_lobatto_legendre(1)


class DifferentiationTest(parameterized.TestCase):

  @parameterized.parameters(3, 4, 5, 7)
  def test_differentiates_polynomials_exactly(self, order):
    nodes, _ = spectral_element.gauss_lobatto_legendre(order)
    dx = spectral_element.differentiation_matrix(nodes)
    degree = order - 1
    f = nodes**degree
    expected = degree * nodes ** (degree - 1)
    np.testing.assert_allclose(f @ dx, expected, atol=1e-11)

  @parameterized.parameters(2, 4, 6)
  def test_constant_has_zero_derivative(self, order):
    nodes, weights = spectral_element.gauss_lobatto_legendre(order)
    dx = spectral_element.differentiation_matrix(nodes)
    stiffness = spectral_element.stiffness_matrix(dx, weights)
    np.testing.assert_allclose(np.ones(order) @ dx, 0.0, atol=1e-12)
    # Boundary rows carry the dropped element-edge terms.
    np.testing.assert_allclose(
        (stiffness @ np.ones(order))[1:-1], 0.0, atol=1e-12
    )

  def test_operator_gradient(self):
    order, element_count, delta = 5, 3, 0.5
    operator = spectral_element.SpectralElementOperator.build(
        order, delta, delta
    )
    f, xx, yy = _element_field(
        lambda x, y: x**2 * y - 3 * y**3, order, element_count, delta
    )
    da, db = operator.gradient(f)
    da_expected = spectral_element.to_elements(
        (2 * xx * yy)[..., np.newaxis], order, 0
    )
    db_expected = spectral_element.to_elements(
        (xx**2 - 9 * yy**2)[..., np.newaxis], order, 0
    )
    np.testing.assert_allclose(da, da_expected, atol=1e-10)
    np.testing.assert_allclose(db, db_expected, atol=1e-10)

  def test_weak_derivative_integrates_by_parts(self):
    # The weak derivative is minus the adjoint of the collocation derivative
    # under the GLL inner product.
    order = 6
    operator = spectral_element.SpectralElementOperator.build(order, 1.0, 1.0)
    nodes, weights = spectral_element.gauss_lobatto_legendre(order)
    bubble = nodes * (1 - nodes)
    f = (bubble * np.sin(nodes))[None, :, None, None, None]
    g = (nodes**2)[None, :, None, None, None]
    weak = operator.weak_d_alpha(f)
    strong_g = operator.d_alpha(g)
    lhs = np.sum(weights * g[0, :, 0, 0, 0] * weak[0, :, 0, 0, 0])
    rhs = -np.sum(weights * f[0, :, 0, 0, 0] * strong_g[0, :, 0, 0, 0])
    np.testing.assert_allclose(lhs, rhs, rtol=1e-12, atol=1e-14)


class ElementLayoutTest(absltest.TestCase):

  def test_layout_round_trip_with_halo(self):
    order, halo = 3, 2
    x = np.arange(2 * (2 * order + 2 * halo) * (order + 2 * halo) * 4.0)
    x = x.reshape(2, 2 * order + 2 * halo, order + 2 * halo, 4)
    elements = spectral_element.to_elements(x, order, halo)
    self.assertEqual(elements.shape, (2, 2, order, 1, order, 4))
    np.testing.assert_array_equal(
        elements[:, 1, 0, 0, 2], x[:, halo + order, halo + 2]
    )
    restored = spectral_element.set_interior(
        np.zeros_like(x), spectral_element.from_elements(elements), halo
    )
    np.testing.assert_array_equal(
        restored[:, halo:-halo, halo:-halo], x[:, halo:-halo, halo:-halo]
    )
    np.testing.assert_array_equal(restored[:, :halo], 0.0)


if __name__ == '__main__':
  absltest.main()
