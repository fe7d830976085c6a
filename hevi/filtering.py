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

"""Rayleigh sponge relaxation and the positive-definite tracer filter."""

from __future__ import annotations

from hevi import typing
import jax
from jax import lax
import jax.numpy as jnp


Array = typing.Array

RAYLEIGH_SUBSTEPS = 10


@jax.named_call
def rayleigh_relaxation(
    psi: Array,
    psi_reference: Array,
    strength: Array,
    dt: Array,
    substeps: int = RAYLEIGH_SUBSTEPS,
) -> jax.Array:
  """Relaxes `psi` towards `psi_reference` with sub-cycled backward Euler.

  Each of the `substeps` sub-cycles applies
  `ψ ← μ ψ + (1 - μ) ψ_ref` with `μ = 1 / (1 + Δt ν / substeps)`.

  Args:
    psi: fields to relax.
    psi_reference: relaxation target, broadcastable against `psi`.
    strength: Rayleigh coefficient `ν`, broadcastable against `psi`.
    dt: time step `Δt`.
    substeps: number of sub-cycles.

  Returns:
    Relaxed fields. Points with zero strength are returned unchanged.
  """
  mu = 1 / (1 + dt * strength / substeps)

  def body(_, x):
    return mu * x + (1 - mu) * psi_reference

  relaxed = lax.fori_loop(0, substeps, body, psi)
  return jnp.where(strength == 0, psi, relaxed)


@jax.named_call
def positive_definite_filter(
    tracers: Array,
    element_area: Array,
) -> tuple[jax.Array, jax.Array]:
  """Clips negative tracer values while conserving element mass.

  Per element and level the mass `M = Σ ψ ΔA` and the mass of non-negative
  points `M⁺` are computed; positive values are rescaled by `M / M⁺` and all
  other values set to zero. Where `M ≤ 0` every value becomes zero.

  Args:
    tracers: tracers in element layout `[T, a, i, b, j, k]`.
    element_area: node quadrature weights in element layout
      `[a, i, b, j, k]`.

  Returns:
    Tuple `(filtered, negative_mass_cells)` where the second item counts the
    (tracer, element, level) cells whose total mass was negative.
  """
  node_axes = (-4, -2)
  mass = tracers * element_area
  total = jnp.sum(mass, axis=node_axes, keepdims=True)
  non_negative = jnp.sum(
      jnp.where(tracers >= 0, mass, 0.0), axis=node_axes, keepdims=True
  )
  # total > 0 implies non_negative >= total.
  valid = total > 0
  ratio = jnp.where(valid, total / jnp.where(valid, non_negative, 1.0), 0.0)
  filtered = jnp.where(tracers > 0, ratio * tracers, 0.0)
  return filtered, jnp.sum(total < 0)
