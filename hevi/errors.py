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

"""Exceptions raised by the high-speed dynamical core."""


class HighSpeedDynamicsError(Exception):
  """Base class for all errors raised by the dynamical core."""


class ConfigurationUnsupported(HighSpeedDynamicsError):
  """A configuration the core was not built to handle was requested."""


class InvalidGrid(HighSpeedDynamicsError, TypeError):
  """The supplied grid is not a spectral-element (GLL) grid."""


class InvalidViscosityOrder(HighSpeedDynamicsError, ValueError):
  """Hyperviscosity order is not one of 0, 2 or 4."""


class InvalidComponent(HighSpeedDynamicsError, ValueError):
  """A component index outside of the equation set was requested."""


class InvalidIndices(HighSpeedDynamicsError, ValueError):
  """Data indices that must be distinct coincide."""


class StateShapeError(HighSpeedDynamicsError):
  """Exceptions for unexpected state shapes."""


class TridiagonalSingular(HighSpeedDynamicsError, ArithmeticError):
  """A vertical column tridiagonal solve met a zero pivot.

  Attributes:
    i: node index along α within the element.
    j: node index along β within the element.
    row: 1-based row of the failing pivot (LAPACK convention).
    element: `(a, b)` element indices within the patch, if known.
    patch: index of the active patch, if known.
  """

  def __init__(self, i, j, row, element=None, patch=None):
    self.i = i
    self.j = j
    self.row = row
    self.element = element
    self.patch = patch
    location = f'node ({i}, {j})'
    if element is not None:
      location += f' of element {tuple(element)}'
    if patch is not None:
      location += f' in patch {patch}'
    super().__init__(
        f'Failure in tridiagonal solve at {location}: zero pivot in row {row}.'
    )
