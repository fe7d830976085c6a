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
"""Tests for metric.py."""

from absl.testing import absltest
from absl.testing import parameterized
from hevi import metric
import jax
import numpy as np

jax.config.update('jax_enable_x64', True)


def _random_metric(seed, shape=(4, 3)):
  rng = np.random.default_rng(seed)
  cov_aa = rng.uniform(1.0, 2.0, shape)
  cov_bb = rng.uniform(1.0, 2.0, shape)
  cov_ab = rng.uniform(-0.5, 0.5, shape)
  return metric.Metric2D.from_covariant(cov_aa, cov_ab, cov_bb)


class Metric2DTest(parameterized.TestCase):

  @parameterized.parameters(0, 1, 2)
  def test_raise_and_lower_are_inverse(self, seed):
    m = _random_metric(seed)
    rng = np.random.default_rng(seed + 10)
    u_a, u_b = rng.normal(size=(2, 4, 3))
    con_a, con_b = m.raise_index(u_a, u_b)
    cov_a, cov_b = m.lower_index(con_a, con_b)
    np.testing.assert_allclose(cov_a, u_a, rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(cov_b, u_b, rtol=1e-12, atol=1e-12)

  def test_from_covariant(self):
    m = metric.Metric2D.from_covariant(
        np.array(4.0), np.array(1.0), np.array(2.0)
    )
    np.testing.assert_allclose(m.jacobian, np.sqrt(7.0))
    np.testing.assert_allclose(m.con_aa, 2.0 / 7.0)
    np.testing.assert_allclose(m.con_ab, -1.0 / 7.0)
    np.testing.assert_allclose(m.con_bb, 4.0 / 7.0)

  def test_identity_metric(self):
    ones = np.ones(3)
    m = metric.Metric2D.from_covariant(ones, 0 * ones, ones)
    np.testing.assert_allclose(m.jacobian, 1.0)
    con_a, con_b = m.raise_index(np.arange(3.0), -np.arange(3.0))
    np.testing.assert_allclose(con_a, np.arange(3.0))
    np.testing.assert_allclose(con_b, -np.arange(3.0))


if __name__ == '__main__':
  absltest.main()
