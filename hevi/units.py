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
"""A class and protocol that hold the physical constants of a dry atmosphere."""

from __future__ import annotations

import dataclasses
from typing import Protocol

from hevi import scales
from hevi import typing
import jax.numpy as jnp

# For consistency with commonly accepted notation, we use Greek letters within
# some of the functions below.
# pylint: disable=invalid-name

Array = typing.Array
Quantity = typing.Quantity
Numeric = typing.Numeric


class PhysicalConstantsProtocol(Protocol):
  """Protocol for the physical constants consumed by the dynamical core."""

  gravity_acceleration: float
  ideal_gas_constant: float
  isobaric_heat_capacity: float
  reference_pressure: float

  @property
  def g(self) -> float:
    ...

  @property
  def R(self) -> float:
    ...

  @property
  def gamma(self) -> float:
    ...

  def pressure_from_rho_theta(self, rho_theta: Numeric) -> Array:
    ...


@dataclasses.dataclass(frozen=True)
class PhysicalConstants:
  """Physical constants in SI units.

  Attributes:
    gravity_acceleration: gravitational acceleration in m s⁻².
    ideal_gas_constant: dry-air gas constant `R_d` in J kg⁻¹ K⁻¹.
    isobaric_heat_capacity: `Cp` in J kg⁻¹ K⁻¹.
    reference_pressure: `p₀` in Pa, the pressure at which potential
      temperature equals temperature.
  """

  gravity_acceleration: float
  ideal_gas_constant: float
  isobaric_heat_capacity: float
  reference_pressure: float

  def __post_init__(self):
    if self.isobaric_heat_capacity <= self.ideal_gas_constant:
      raise ValueError(
          'Expected `isobaric_heat_capacity` to exceed `ideal_gas_constant`; '
          f'got {self.isobaric_heat_capacity} and {self.ideal_gas_constant}.'
      )
    if self.reference_pressure <= 0:
      raise ValueError(
          '`reference_pressure` must be positive; '
          f'got {self.reference_pressure}.'
      )

  @property
  def g(self) -> float:
    """Alias for `gravity_acceleration`."""
    return self.gravity_acceleration

  @property
  def R(self) -> float:
    """Alias for `ideal_gas_constant`."""
    return self.ideal_gas_constant

  @property
  def Cp(self) -> float:
    """Alias for `isobaric_heat_capacity`."""
    return self.isobaric_heat_capacity

  @property
  def Cv(self) -> float:
    """Isochoric heat capacity."""
    return self.isobaric_heat_capacity - self.ideal_gas_constant

  @property
  def gamma(self) -> float:
    """Ratio of heat capacities `Cp / Cv`."""
    return self.Cp / self.Cv

  @property
  def p0(self) -> float:
    """Alias for `reference_pressure`."""
    return self.reference_pressure

  def pressure_from_rho_theta(self, rho_theta: Numeric) -> Array:
    """Equation of state `p = p₀ (R_d ρθ / p₀)^γ`."""
    return self.p0 * jnp.power(self.R * rho_theta / self.p0, self.gamma)

  @classmethod
  def from_si(
      cls,
      gravity_acceleration_si: Quantity = scales.GRAVITY_ACCELERATION,
      ideal_gas_constant_si: Quantity = scales.IDEAL_GAS_CONSTANT,
      isobaric_heat_capacity_si: Quantity = scales.ISOBARIC_HEAT_CAPACITY,
      reference_pressure_si: Quantity = scales.REFERENCE_PRESSURE,
  ) -> PhysicalConstants:
    # pylint: disable=g-doc-args,g-doc-return-or-yield
    """Constructs `PhysicalConstants` from constants with units."""
    return cls(
        scales.to_si(gravity_acceleration_si, 'm / s**2'),
        scales.to_si(ideal_gas_constant_si, 'J / kg / K'),
        scales.to_si(isobaric_heat_capacity_si, 'J / kg / K'),
        scales.to_si(reference_pressure_si, 'Pa'),
    )
