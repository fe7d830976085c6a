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

"""Units registry and default dimensional constants for a dry atmosphere."""

import pint

units = pint.UnitRegistry(autoconvert_offset_to_baseunit=True)

GRAVITY_ACCELERATION = 9.80616 * units.m / units.s**2
IDEAL_GAS_CONSTANT = 287.0 * units.J / units.kilogram / units.degK
ISOBARIC_HEAT_CAPACITY = 1004.5 * units.J / units.kilogram / units.degK
REFERENCE_PRESSURE = 100000.0 * units.pascal


def to_si(quantity: pint.Quantity, unit: str) -> float:
  """Returns the magnitude of `quantity` expressed in `unit`."""
  return float(quantity.to(unit).magnitude)
