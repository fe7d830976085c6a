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

"""Equation-set metadata: components, tracers and where they live."""

from __future__ import annotations

import dataclasses
import enum
import functools


# Positions of the prognostic components in the state arrays.
U_INDEX = 0
V_INDEX = 1
P_INDEX = 2
W_INDEX = 3
R_INDEX = 4

# Shallow-water models keep the fluid height where `P_INDEX` would be.
SHALLOW_WATER_R_INDEX = 2


class EquationSetKind(enum.Enum):
  ADVECTION = 'advection'
  SHALLOW_WATER = 'shallow_water'
  PRIMITIVE_NONHYDROSTATIC = 'primitive_nonhydrostatic'
  PRIMITIVE_NONHYDROSTATIC_MASS_COORD = 'primitive_nonhydrostatic_mass_coord'


class DataLocation(enum.Enum):
  """Vertical staggering of a component."""

  NODE = 'node'
  REDGE = 'redge'


_NONHYDROSTATIC_NAMES = ('U', 'V', 'Theta', 'W', 'Rho')
_NONHYDROSTATIC_LOCATIONS = (
    DataLocation.NODE,
    DataLocation.NODE,
    DataLocation.NODE,
    DataLocation.REDGE,
    DataLocation.NODE,
)


@dataclasses.dataclass(frozen=True)
class EquationSet:
  """Describes the prognostic variables of the system being solved.

  Attributes:
    kind: which system of equations is solved.
    component_names: short names of the prognostic state components.
    locations: vertical staggering of each component.
    tracers: number of passive tracers.
  """

  kind: EquationSetKind
  component_names: tuple[str, ...]
  locations: tuple[DataLocation, ...]
  tracers: int = 0

  def __post_init__(self):
    if len(self.component_names) != len(self.locations):
      raise ValueError(
          'Expected `component_names` and `locations` to have the same '
          f'length, got {len(self.component_names)} and {len(self.locations)}.'
      )
    if self.tracers < 0:
      raise ValueError(f'`tracers` must be non-negative; got {self.tracers}.')

  @property
  def components(self) -> int:
    return len(self.component_names)

  @property
  def density_index(self) -> int:
    """Index of the density (or fluid height) component."""
    if self.kind == EquationSetKind.SHALLOW_WATER:
      return SHALLOW_WATER_R_INDEX
    return R_INDEX

  @classmethod
  def primitive_nonhydrostatic(cls, tracers: int = 0) -> EquationSet:
    return cls(
        EquationSetKind.PRIMITIVE_NONHYDROSTATIC,
        _NONHYDROSTATIC_NAMES,
        _NONHYDROSTATIC_LOCATIONS,
        tracers,
    )

  @classmethod
  def shallow_water(cls, tracers: int = 0) -> EquationSet:
    return cls(
        EquationSetKind.SHALLOW_WATER,
        ('U', 'V', 'H'),
        (DataLocation.NODE,) * 3,
        tracers,
    )


@functools.lru_cache(maxsize=None)
def rayleigh_components(
    kind: EquationSetKind,
    is_cartesian_xz: bool,
    components: int,
) -> tuple[int, ...]:
  """Returns the state components relaxed by Rayleigh friction.

  Non-hydrostatic primitive models leave density undamped; two-dimensional
  Cartesian XZ models additionally skip the β momentum.

  Args:
    kind: the equation set kind.
    is_cartesian_xz: whether the grid is a 2D Cartesian XZ slice.
    components: number of prognostic components.

  Returns:
    Tuple of component indices.
  """
  if kind == EquationSetKind.PRIMITIVE_NONHYDROSTATIC:
    if is_cartesian_xz:
      return (U_INDEX, P_INDEX, W_INDEX)
    return (U_INDEX, V_INDEX, P_INDEX, W_INDEX)
  return tuple(range(components))
