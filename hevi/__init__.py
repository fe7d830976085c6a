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

"""HEVI spectral-element dynamical core written in JAX."""

import hevi.equation_sets
import hevi.errors
import hevi.filtering
import hevi.grid
import hevi.high_speed_dynamics
import hevi.horizontal_dynamics
import hevi.hyperdiffusion
import hevi.metric
import hevi.scales
import hevi.spectral_element
import hevi.tridiagonal
import hevi.typing
import hevi.units
import hevi.vertical_dynamics

__version__ = "0.1.0"
