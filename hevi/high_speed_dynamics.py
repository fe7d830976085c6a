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

"""Horizontally explicit, vertically implicit (HEVI) dynamical core.

`HighSpeedDynamics` advances the data held by a `grid.GridGLL` through the
single-stage operations a time integrator composes:

  step_explicit -> step_implicit -> step_after_sub_cycle

Each stage reads the data at one index and writes another. Element-local
kernels are pure JAX functions compiled once per core; this module only
handles data movement between the patches and the kernels, and turns the
status the kernels report into exceptions.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Callable

from absl import logging
from hevi import equation_sets
from hevi import errors
from hevi import filtering
from hevi import grid as grid_lib
from hevi import horizontal_dynamics
from hevi import hyperdiffusion
from hevi import spectral_element
from hevi import tridiagonal
from hevi import typing
from hevi import vertical_dynamics
import jax
import numpy as np


Array = typing.Array
DataLocation = equation_sets.DataLocation
DataType = grid_lib.DataType

U_INDEX = equation_sets.U_INDEX
V_INDEX = equation_sets.V_INDEX
P_INDEX = equation_sets.P_INDEX
W_INDEX = equation_sets.W_INDEX

HYPERVISCOSITY_ORDERS = (0, 2, 4)


@dataclasses.dataclass(frozen=True)
class HighSpeedDynamicsConfig:
  """Construction parameters of the dynamical core.

  Attributes:
    horizontal_order: number of GLL nodes per element edge, at least 2.
    hyperviscosity_order: 0 (none), 2 (diffusion) or 4 (hyperdiffusion).
    nu_scalar: diffusion coefficient of scalar fields.
    nu_div: diffusion coefficient of the divergent part of the momentum.
    nu_vort: diffusion coefficient of the rotational part of the momentum.
    instep_nu_div: in-step divergence damping coefficient. Stored for
      completeness; no stage applies it.
    prognostic_contravariant_momenta: whether the horizontal momenta are
      carried as contravariant components. The core supports only `True`.
    positive_definite_filter_tracers: whether `filter_negative_tracers`
      modifies tracers.
    apply_rayleigh_with_hypervis: whether `step_after_sub_cycle` finishes with
      Rayleigh friction on grids that have a sponge.
    tridiagonal_method: 'thomas' or 'lax', the solver used for the vertical
      acoustic systems.
  """

  horizontal_order: int
  hyperviscosity_order: int = 4
  nu_scalar: float = 0.0
  nu_div: float = 0.0
  nu_vort: float = 0.0
  instep_nu_div: float = 0.0
  prognostic_contravariant_momenta: bool = True
  positive_definite_filter_tracers: bool = True
  apply_rayleigh_with_hypervis: bool = True
  tridiagonal_method: str = 'thomas'

  def __post_init__(self):
    if self.horizontal_order < 2:
      raise ValueError(
          'Expected `horizontal_order` of at least 2; '
          f'got {self.horizontal_order}.'
      )
    if self.hyperviscosity_order not in HYPERVISCOSITY_ORDERS:
      raise errors.InvalidViscosityOrder(
          f'Expected `hyperviscosity_order` in {HYPERVISCOSITY_ORDERS}; '
          f'got {self.hyperviscosity_order}.'
      )
    for name in ('nu_scalar', 'nu_div', 'nu_vort', 'instep_nu_div'):
      if getattr(self, name) < 0:
        raise ValueError(
            f'Expected non-negative `{name}`; got {getattr(self, name)}.'
        )
    if self.tridiagonal_method not in tridiagonal.METHODS:
      raise ValueError(
          f'Expected `tridiagonal_method` in {tridiagonal.METHODS}; '
          f'got {self.tridiagonal_method!r}.'
      )

  @property
  def has_diffusion(self) -> bool:
    return not (
        self.nu_scalar == 0.0 and self.nu_div == 0.0 and self.nu_vort == 0.0
    )


@dataclasses.dataclass(frozen=True)
class _Workspace:
  """Compiled kernels and the sizes they were compiled for."""

  horizontal_order: int
  levels: int
  explicit: Callable[..., Any]
  implicit: Callable[..., Any]
  scalar: Callable[..., Any]
  vector: Callable[..., Any]
  rayleigh: Callable[..., Any]
  tracer_filter: Callable[..., Any]


def _raise(error: Exception):
  logging.error('%s', error)
  raise error


def _add_interior(x: Array, increment: Array, halo: int) -> jax.Array:
  """Adds an element-layout `increment` to the element interior of `x`."""
  order = increment.shape[-2]
  updated = spectral_element.to_elements(x, order, halo) + increment
  return spectral_element.set_interior(
      x, spectral_element.from_elements(updated), halo
  )


def _replace_interior(x: Array, interior: Array, halo: int) -> jax.Array:
  """Replaces the element interior of `x` with element-layout `interior`."""
  return spectral_element.set_interior(
      x, spectral_element.from_elements(interior), halo
  )


@dataclasses.dataclass
class HighSpeedDynamics:
  """HEVI dynamical core for the non-hydrostatic equations on GLL grids.

  Attributes:
    grid: the spectral-element grid holding all data.
    config: construction parameters.
  """

  grid: grid_lib.GridGLL
  config: HighSpeedDynamicsConfig

  def __post_init__(self):
    self._workspace = None
    self._geometry = {}

  @property
  def equation_set(self) -> equation_sets.EquationSet:
    return self.grid.equation_set

  @property
  def physics_specs(self):
    return self.grid.physics_specs

  def initialize(self) -> None:
    """Validates the grid and compiles the element kernels.

    Raises:
      ConfigurationUnsupported: if the momenta are not contravariant.
      InvalidGrid: if the grid is not a GLL grid, has a different order than
        configured, or has fewer than two levels.
    """
    if not self.config.prognostic_contravariant_momenta:
      _raise(errors.ConfigurationUnsupported(
          'Prognostic covariant velocities not supported.'
      ))
    if not isinstance(self.grid, grid_lib.GridGLL):
      _raise(errors.InvalidGrid(
          f'Grid must be of type GridGLL; got {type(self.grid).__name__}.'
      ))
    if self.grid.horizontal_order != self.config.horizontal_order:
      _raise(errors.InvalidGrid(
          f'Expected a grid of order {self.config.horizontal_order}; '
          f'got {self.grid.horizontal_order}.'
      ))
    if self.grid.levels < 2:
      _raise(errors.InvalidGrid(
          f'Expected at least 2 vertical levels; got {self.grid.levels}.'
      ))
    self._workspace = _Workspace(
        horizontal_order=self.grid.horizontal_order,
        levels=self.grid.levels,
        explicit=jax.jit(horizontal_dynamics.explicit_update),
        implicit=jax.jit(self._implicit_kernel),
        scalar=jax.jit(hyperdiffusion.scalar_hyperdiffusion),
        vector=jax.jit(hyperdiffusion.vector_hyperdiffusion),
        rayleigh=jax.jit(filtering.rayleigh_relaxation),
        tracer_filter=jax.jit(filtering.positive_definite_filter),
    )
    self._geometry = {}
    logging.info(
        'Initialized HighSpeedDynamics: order=%d levels=%d '
        'hyperviscosity_order=%d tridiagonal_method=%s',
        self.config.horizontal_order,
        self.grid.levels,
        self.config.hyperviscosity_order,
        self.config.tridiagonal_method,
    )

  @property
  def workspace(self) -> _Workspace:
    if self._workspace is None:
      raise errors.HighSpeedDynamicsError(
          'HighSpeedDynamics.initialize() must be called before stepping.'
      )
    return self._workspace

  def _patches(self):
    """Yields `(n, patch, geometry, to_elements)` for every active patch."""
    workspace = self.workspace
    for n, patch in enumerate(self.grid.active_patches):
      if (
          patch.order != workspace.horizontal_order
          or patch.geometry.levels != workspace.levels
      ):
        _raise(errors.StateShapeError(
            f'Patch {n} has order {patch.order} and '
            f'{patch.geometry.levels} levels; the core was initialized for '
            f'order {workspace.horizontal_order} and {workspace.levels} '
            'levels.'
        ))
      geometry = self._geometry.get(id(patch))
      if geometry is None:
        geometry = patch.geometry.element_geometry(patch.order)
        self._geometry[id(patch)] = geometry

      def to_elements(x, order=patch.order, halo=patch.halo):
        return spectral_element.to_elements(x, order, halo)

      yield n, patch, geometry, to_elements

  #  ===========================================================================
  #  Explicit and implicit stages
  #  ===========================================================================

  def step_explicit(
      self, initial: int, update: int, time: float, dt: float
  ) -> None:
    """Adds `Δt` times the explicit horizontal tendencies to `update`.

    Args:
      initial: data index of the state the tendencies are evaluated at.
      update: data index of the state the increments are added to.
      time: model time, unused.
      dt: time step.
    """
    del time  # unused.
    logging.vlog(1, 'step_explicit(initial=%d, update=%d)', initial, update)
    self.grid.compute_pressure(initial)
    for _, patch, geometry, to_elements in self._patches():
      node_increment, redge_increment = self.workspace.explicit(
          to_elements(patch.get_data_state(initial, DataLocation.NODE)),
          to_elements(patch.get_data_state(initial, DataLocation.REDGE)),
          to_elements(patch.pressure),
          geometry,
          patch.operator,
          dt,
      )
      for location, increment in (
          (DataLocation.NODE, node_increment),
          (DataLocation.REDGE, redge_increment),
      ):
        patch.set_data_state(
            update,
            location,
            _add_interior(
                patch.get_data_state(update, location), increment, patch.halo
            ),
        )

  def _implicit_kernel(
      self, state_node, state_redge, update_node, update_redge, geometry, dt
  ):
    physics = self.physics_specs
    pressure = physics.pressure_from_rho_theta(state_node[P_INDEX])
    columns = vertical_dynamics.assemble_acoustic_columns(
        state_node,
        state_redge,
        pressure,
        geometry,
        physics.g,
        physics.gamma,
        dt,
    )
    w_solution, info = tridiagonal.solve(
        columns.lower,
        columns.diagonal,
        columns.upper,
        columns.rhs,
        method=self.config.tridiagonal_method,
    )
    update_node, update_redge = vertical_dynamics.acoustic_update(
        update_node,
        update_redge,
        state_redge[W_INDEX],
        columns,
        w_solution,
        geometry,
        dt,
    )
    return pressure, update_node, update_redge, info

  def step_implicit(
      self, initial: int, update: int, time: float, dt: float
  ) -> None:
    """Applies the vertically implicit acoustic update to `update`.

    Refreshes the pressure cache from the initial ρθ, solves one tridiagonal
    system per column, updates `W`, `R` and `P` of `update` and finishes with
    a direct stiffness summation of the update state.

    Args:
      initial: data index of the state the system is linearized about.
      update: data index of the state that receives the update.
      time: model time, unused.
      dt: time step.

    Raises:
      TridiagonalSingular: if any column system has a vanishing pivot.
    """
    del time  # unused.
    logging.vlog(1, 'step_implicit(initial=%d, update=%d)', initial, update)
    for n, patch, geometry, to_elements in self._patches():
      pressure, update_node, update_redge, info = self.workspace.implicit(
          to_elements(patch.get_data_state(initial, DataLocation.NODE)),
          to_elements(patch.get_data_state(initial, DataLocation.REDGE)),
          to_elements(patch.get_data_state(update, DataLocation.NODE)),
          to_elements(patch.get_data_state(update, DataLocation.REDGE)),
          geometry,
          dt,
      )
      info = np.asarray(info)
      if np.any(info != 0):
        a, i, b, j = (int(x) for x in np.argwhere(info != 0)[0])
        _raise(errors.TridiagonalSingular(
            i, j, int(info[a, i, b, j]), element=(a, b), patch=n
        ))
      patch.pressure = _replace_interior(patch.pressure, pressure, patch.halo)
      patch.set_data_state(
          update,
          DataLocation.NODE,
          _replace_interior(
              patch.get_data_state(update, DataLocation.NODE),
              update_node,
              patch.halo,
          ),
      )
      patch.set_data_state(
          update,
          DataLocation.REDGE,
          _replace_interior(
              patch.get_data_state(update, DataLocation.REDGE),
              update_redge,
              patch.halo,
          ),
      )
    self.grid.apply_dss(update, DataType.STATE)

  #  ===========================================================================
  #  Diffusion, friction and filtering
  #  ===========================================================================

  def apply_scalar_hyperdiffusion(
      self,
      initial: int,
      update: int,
      dt: float,
      nu: float,
      scale_nu_locally: bool,
      component: int = -1,
      remove_reference_state: bool = False,
  ) -> None:
    """Adds `Δt ν ∇²ψ` of the data at `initial` to the data at `update`.

    Args:
      initial: data index of the fields that are differentiated.
      update: data index of the fields that receive the increment.
      dt: time step; negative for the second pass of hyperdiffusion.
      nu: diffusion coefficient.
      scale_nu_locally: whether to scale `nu` with the element size.
      component: state component to diffuse. `-1` selects every component
        except the horizontal momenta, together with all tracers.
      remove_reference_state: whether to diffuse the departure from the
        reference state instead of the full field.

    Raises:
      InvalidComponent: if `component < -1` or not a valid component.
    """
    components_count = self.equation_set.components
    if component < -1 or component >= components_count:
      _raise(errors.InvalidComponent(
          f'Invalid component index {component}; expected -1 or a value in '
          f'[0, {components_count}).'
      ))
    logging.vlog(
        1,
        'apply_scalar_hyperdiffusion(initial=%d, update=%d, component=%d)',
        initial,
        update,
        component,
    )
    if component == -1:
      components = range(P_INDEX, components_count)
      include_tracers = self.equation_set.tracers > 0
    else:
      components = (component,)
      include_tracers = False

    workspace = self.workspace
    for _, patch, geometry, to_elements in self._patches():
      nu_local = hyperdiffusion.local_viscosity(
          nu,
          patch.geometry.element_delta_a,
          self.grid.reference_length,
          scale_nu_locally,
      )
      for location, jacobian in (
          (DataLocation.NODE, geometry.jacobian),
          (DataLocation.REDGE, geometry.jacobian_redge),
      ):
        selected = np.array(
            [c for c in components if self.grid.var_location(c) == location],
            dtype=int,
        )
        if not selected.size:
          continue
        psi = to_elements(patch.get_data_state(initial, location))[selected]
        if remove_reference_state:
          reference = to_elements(patch.get_reference_state(location))
          psi = psi - reference[selected]
        increment = workspace.scalar(
            psi, jacobian, geometry.metric, patch.operator, dt, nu_local
        )
        target = patch.get_data_state(update, location)
        updated = to_elements(target).at[selected].add(increment)
        patch.set_data_state(
            update, location, _replace_interior(target, updated, patch.halo)
        )
      if include_tracers:
        increment = workspace.scalar(
            to_elements(patch.get_data_tracers(initial)),
            geometry.jacobian,
            geometry.metric,
            patch.operator,
            dt,
            nu_local,
        )
        patch.set_data_tracers(
            update,
            _add_interior(
                patch.get_data_tracers(update), increment, patch.halo
            ),
        )

  def apply_vector_hyperdiffusion(
      self,
      initial: int,
      working: int,
      update: int,
      dt: float,
      nu_div: float,
      nu_vort: float,
      scale_nu_locally: bool,
  ) -> None:
    """Applies divergent and rotational diffusion to the horizontal momenta.

    Vorticity and divergence are computed from the momenta at `working` and
    the density at `initial`. Passing `grid.REFERENCE_INDEX` as `initial`
    takes momenta and density from the reference state instead, while the
    density multiplying the increment is read from data index 0.

    Args:
      initial: data index of the density.
      working: data index of the momenta that are differentiated.
      update: data index of the momenta that receive `-Δt ρ (...)`.
      dt: time step.
      nu_div: coefficient of the divergent part.
      nu_vort: coefficient of the rotational part.
      scale_nu_locally: whether to scale the coefficients with element size.
    """
    logging.vlog(
        1,
        'apply_vector_hyperdiffusion(initial=%d, working=%d, update=%d)',
        initial,
        working,
        update,
    )
    rho_index = self.equation_set.density_index
    apply_to_reference = initial == grid_lib.REFERENCE_INDEX
    if apply_to_reference:
      initial = 0

    workspace = self.workspace
    for _, patch, geometry, to_elements in self._patches():
      if apply_to_reference:
        source = patch.get_reference_state(DataLocation.NODE)
        rho = source[rho_index]
      else:
        source = patch.get_data_state(working, DataLocation.NODE)
        rho = patch.get_data_state(initial, DataLocation.NODE)[rho_index]
      patch.compute_curl_and_div(source[U_INDEX], source[V_INDEX], rho)

      nu_div_local, nu_vort_local = (
          hyperdiffusion.local_viscosity(
              nu,
              patch.geometry.element_delta_a,
              self.grid.reference_length,
              scale_nu_locally,
          )
          for nu in (nu_div, nu_vort)
      )
      initial_rho = patch.get_data_state(initial, DataLocation.NODE)[rho_index]
      d_rho_ua, d_rho_ub = workspace.vector(
          to_elements(patch.vorticity),
          to_elements(patch.divergence),
          to_elements(initial_rho),
          geometry.metric,
          patch.operator,
          dt,
          nu_div_local,
          nu_vort_local,
      )
      target = patch.get_data_state(update, DataLocation.NODE)
      updated = (
          to_elements(target)
          .at[U_INDEX].add(d_rho_ua)
          .at[V_INDEX].add(d_rho_ub)
      )
      patch.set_data_state(
          update,
          DataLocation.NODE,
          _replace_interior(target, updated, patch.halo),
      )

  def apply_rayleigh_friction(self, update: int, dt: float) -> None:
    """Relaxes the data at `update` towards the reference state."""
    logging.vlog(1, 'apply_rayleigh_friction(update=%d)', update)
    components = equation_sets.rayleigh_components(
        self.equation_set.kind,
        self.grid.is_cartesian_xz,
        self.equation_set.components,
    )
    workspace = self.workspace
    for _, patch, _, to_elements in self._patches():
      for location in DataLocation:
        selected = np.array(
            [c for c in components if self.grid.var_location(c) == location],
            dtype=int,
        )
        if not selected.size:
          continue
        target = patch.get_data_state(update, location)
        data = to_elements(target)
        relaxed = workspace.rayleigh(
            data[selected],
            to_elements(patch.get_reference_state(location))[selected],
            to_elements(patch.get_rayleigh_strength(location)),
            dt,
        )
        patch.set_data_state(
            update,
            location,
            _replace_interior(
                target, data.at[selected].set(relaxed), patch.halo
            ),
        )

  def filter_negative_tracers(self, update: int) -> int:
    """Applies the positive-definite filter to the tracers at `update`.

    Returns:
      Number of (tracer, element, level) cells with negative total mass,
      whose tracer values were all set to zero.
    """
    if (
        not self.config.positive_definite_filter_tracers
        or self.equation_set.tracers == 0
    ):
      return 0
    logging.vlog(1, 'filter_negative_tracers(update=%d)', update)
    workspace = self.workspace
    total = 0
    for n, patch, geometry, to_elements in self._patches():
      tracers = patch.get_data_tracers(update)
      filtered, negative_cells = workspace.tracer_filter(
          to_elements(tracers), geometry.element_area
      )
      negative_cells = int(negative_cells)
      if negative_cells:
        logging.warning(
            'Negative element mass in %d tracer cells of patch %d; '
            'values were set to zero.',
            negative_cells,
            n,
        )
      total += negative_cells
      patch.set_data_tracers(
          update, _replace_interior(tracers, filtered, patch.halo)
      )
    return total

  #  ===========================================================================
  #  Composition after a sub-cycle
  #  ===========================================================================

  def step_after_sub_cycle(
      self,
      initial: int,
      update: int,
      working: int,
      time: float,
      dt: float,
  ) -> None:
    """Copies `initial` to `update` and applies diffusion and friction.

    Args:
      initial: data index of the state after the sub-cycle.
      update: data index that receives the result.
      working: scratch data index, distinct from `initial` and `update`.
      time: model time, unused.
      dt: time step.

    Raises:
      InvalidIndices: if `working` coincides with `initial` or `update`.
      InvalidViscosityOrder: if the hyperviscosity order is not supported.
    """
    del time  # unused.
    if initial == working:
      _raise(errors.InvalidIndices(
          'Invalid indices -- initial and working data must be distinct.'
      ))
    if update == working:
      _raise(errors.InvalidIndices(
          'Invalid indices -- working and update data must be distinct.'
      ))
    logging.vlog(
        1,
        'step_after_sub_cycle(initial=%d, update=%d, working=%d)',
        initial,
        update,
        working,
    )
    config = self.config
    grid = self.grid
    grid.copy_data(initial, update, DataType.STATE)
    grid.copy_data(initial, update, DataType.TRACERS)

    order = config.hyperviscosity_order
    if not config.has_diffusion or order == 0:
      pass
    elif order == 2:
      self.apply_scalar_hyperdiffusion(
          initial, update, dt, config.nu_scalar, False
      )
      self.apply_vector_hyperdiffusion(
          initial, initial, update, -dt, config.nu_div, config.nu_vort, False
      )
      self.filter_negative_tracers(update)
      grid.apply_dss(update, DataType.STATE)
      grid.apply_dss(update, DataType.TRACERS)
    elif order == 4:
      grid.zero_data(working, DataType.STATE)
      grid.zero_data(working, DataType.TRACERS)
      self.apply_scalar_hyperdiffusion(initial, working, 1.0, 1.0, False)
      self.apply_vector_hyperdiffusion(
          initial, initial, working, 1.0, 1.0, 1.0, False
      )
      grid.apply_dss(working, DataType.STATE)
      grid.apply_dss(working, DataType.TRACERS)
      self.apply_scalar_hyperdiffusion(
          working, update, -dt, config.nu_scalar, True
      )
      self.apply_vector_hyperdiffusion(
          initial, working, update, -dt, config.nu_div, config.nu_vort, True
      )
      self.filter_negative_tracers(update)
      grid.apply_dss(update, DataType.STATE)
      grid.apply_dss(update, DataType.TRACERS)
    else:
      _raise(errors.InvalidViscosityOrder(
          f'Invalid viscosity order {order}; expected one of '
          f'{HYPERVISCOSITY_ORDERS}.'
      ))

    if config.apply_rayleigh_with_hypervis and grid.has_rayleigh_friction:
      self.apply_rayleigh_friction(update, dt)
