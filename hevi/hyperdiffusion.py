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

"""Scalar and vector (hyper)diffusion on spectral elements.

Both operators are second order. Fourth-order hyperdiffusion is obtained by
applying them twice with a direct stiffness summation in between, see
`HighSpeedDynamics.step_after_sub_cycle`.
"""

from __future__ import annotations

from hevi import metric
from hevi import spectral_element
from hevi import typing
import jax


Array = typing.Array

# Exponent of the resolution-dependent scaling of diffusion coefficients.
LOCAL_SCALING_EXPONENT = 3.2


def local_viscosity(
    nu: float,
    element_delta_a: float,
    reference_length: float,
    scale_nu_locally: bool,
) -> float:
  """Returns `nu` scaled by `(Δα / L_ref)^3.2` when scaling is requested."""
  if scale_nu_locally and reference_length != 0.0:
    return nu * (element_delta_a / reference_length) ** LOCAL_SCALING_EXPONENT
  return nu


@jax.named_call
def scalar_hyperdiffusion(
    psi: Array,
    jacobian: Array,
    metric_2d: metric.Metric2D,
    operator: spectral_element.SpectralElementOperator,
    dt: Array,
    nu: Array,
) -> jax.Array:
  """Returns the increment `Δt ν ∇²ψ` of scalar fields.

  The gradient is a collocation derivative; the divergence of the Jacobian
  weighted contravariant gradient is taken in the weak form.

  Args:
    psi: fields in element layout `[..., a, i, b, j, k]`.
    jacobian: Jacobian at the locations of `psi`.
    metric_2d: horizontal metric.
    operator: spectral element derivative operator.
    dt: time step `Δt`, negative for the second pass of hyperdiffusion.
    nu: diffusion coefficient.

  Returns:
    Increment with the shape of `psi`.
  """
  da_psi, db_psi = operator.gradient(psi)
  con_a, con_b = metric_2d.raise_index(da_psi, db_psi)
  laplacian = (
      operator.weak_divergence(jacobian * con_a, jacobian * con_b) / jacobian
  )
  return dt * nu * laplacian


@jax.named_call
def vector_hyperdiffusion(
    vorticity: Array,
    divergence: Array,
    rho: Array,
    metric_2d: metric.Metric2D,
    operator: spectral_element.SpectralElementOperator,
    dt: Array,
    nu_div: Array,
    nu_vort: Array,
) -> tuple[jax.Array, jax.Array]:
  """Returns increments of the momenta `(ρuᵅ, ρuᵝ)` from vector diffusion.

  The velocity Laplacian is split as `∇δ - ∇×ω` with separate coefficients
  for the divergent and rotational parts.

  Args:
    vorticity: relative vorticity `ω` in element layout.
    divergence: divergence `δ` in element layout.
    rho: density used to convert velocities into momenta.
    metric_2d: horizontal metric.
    operator: spectral element derivative operator.
    dt: time step `Δt`; the increment is `-Δt ρ (...)`.
    nu_div: coefficient of the divergent part.
    nu_vort: coefficient of the rotational part.

  Returns:
    Tuple `(d_rho_ua, d_rho_ub)`.
  """
  da_div = operator.weak_d_alpha(divergence)
  db_div = operator.weak_d_beta(divergence)
  da_curl = operator.weak_d_alpha(vorticity)
  db_curl = operator.weak_d_beta(vorticity)
  m = metric_2d
  cov_a = nu_div * da_div - nu_vort * m.jacobian * (
      m.con_ab * da_curl + m.con_bb * db_curl
  )
  cov_b = nu_div * db_div + nu_vort * m.jacobian * (
      m.con_aa * da_curl + m.con_ab * db_curl
  )
  con_a, con_b = m.raise_index(cov_a, cov_b)
  return -dt * rho * con_a, -dt * rho * con_b
