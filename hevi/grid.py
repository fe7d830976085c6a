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

"""Spectral-element grids, patches and the data they hold.

A grid owns a set of active patches. Each patch stores geometry (metric
terms, heights, element areas) and several instances of the model data,
addressed by integer data indices, plus a read-only reference state:

  state on nodes      [components, A, B, levels]
  state on interfaces [components, A, B, levels + 1]
  tracers             [tracers, A, B, levels]

`A` and `B` run over a ring of `halo` ghost nodes followed by
`element_count * order` interior nodes. Arrays are immutable JAX arrays, so
operations that "update" data replace the arrays held by the patch.
"""

from __future__ import annotations

import abc
import dataclasses
import enum
import math
from typing import Callable, Sequence

from absl import logging
from hevi import equation_sets
from hevi import metric
from hevi import spectral_element
from hevi import typing
from hevi import units
import jax
import jax.numpy as jnp
import numpy as np
import tree_math


Array = typing.Array
DataLocation = equation_sets.DataLocation

# Data index that addresses the reference state.
REFERENCE_INDEX = -1


class DataType(enum.Enum):
  STATE = 'state'
  TRACERS = 'tracers'


@tree_math.struct
class ElementGeometry:
  """Patch geometry restricted to element interiors, in element layout.

  All fields have shape `[a, i, b, j, levels]` or `[a, i, b, j, levels + 1]`
  (interfaces), with horizontal-only quantities carrying a trailing singleton
  vertical axis.

  Attributes:
    jacobian: 3D Jacobian `J` on nodes.
    jacobian_redge: 3D Jacobian `J_edge` on interfaces.
    metric: horizontal metric `Metric2D`, including `J2D`.
    deriv_r_node_a: `∂r/∂α` on nodes.
    deriv_r_node_b: `∂r/∂β` on nodes.
    deriv_r_redge_a: `∂r/∂α` on interfaces.
    deriv_r_redge_b: `∂r/∂β` on interfaces.
    z_levels: heights of nodes.
    z_interfaces: heights of interfaces.
    element_area: quadrature weight of each node, including `J`.
    coriolis_f: Coriolis parameter.
  """

  jacobian: Array
  jacobian_redge: Array
  metric: metric.Metric2D
  deriv_r_node_a: Array
  deriv_r_node_b: Array
  deriv_r_redge_a: Array
  deriv_r_redge_b: Array
  z_levels: Array
  z_interfaces: Array
  element_area: Array
  coriolis_f: Array


@dataclasses.dataclass(frozen=True, eq=False)
class PatchGeometry:
  """Metric terms and coordinates of a single patch, including its halo.

  Attributes:
    halo: width of the ghost-node ring surrounding the interior.
    element_count_a: number of elements along α.
    element_count_b: number of elements along β.
    element_delta_a: element spacing `Δα`.
    element_delta_b: element spacing `Δβ`.
    jacobian: `J` of shape `[A, B, levels]`.
    jacobian_redge: `J_edge` of shape `[A, B, levels + 1]`.
    metric: horizontal `Metric2D` with components of shape `[A, B]`.
    deriv_r_node: `(∂r/∂α, ∂r/∂β)` of shape `[A, B, levels, 2]`.
    deriv_r_redge: `(∂r/∂α, ∂r/∂β)` of shape `[A, B, levels + 1, 2]`.
    z_levels: node heights of shape `[A, B, levels]`.
    z_interfaces: interface heights of shape `[A, B, levels + 1]`.
    element_area_node: node quadrature weights of shape `[A, B, levels]`.
    coriolis_f: Coriolis parameter of shape `[A, B]`.
  """

  halo: int
  element_count_a: int
  element_count_b: int
  element_delta_a: float
  element_delta_b: float
  jacobian: np.ndarray
  jacobian_redge: np.ndarray
  metric: metric.Metric2D
  deriv_r_node: np.ndarray
  deriv_r_redge: np.ndarray
  z_levels: np.ndarray
  z_interfaces: np.ndarray
  element_area_node: np.ndarray
  coriolis_f: np.ndarray

  @property
  def shape(self) -> tuple[int, int]:
    return self.jacobian.shape[:2]

  @property
  def levels(self) -> int:
    return self.jacobian.shape[-1]

  def element_geometry(self, order: int) -> ElementGeometry:
    """Returns the interior geometry in element layout."""
    elements = lambda x: spectral_element.to_elements(
        jnp.asarray(x), order, self.halo
    )
    horizontal = lambda x: elements(spectral_element.with_level_axis(x))
    return ElementGeometry(
        jacobian=elements(self.jacobian),
        jacobian_redge=elements(self.jacobian_redge),
        metric=jax.tree_util.tree_map(horizontal, self.metric),
        deriv_r_node_a=elements(self.deriv_r_node[..., 0]),
        deriv_r_node_b=elements(self.deriv_r_node[..., 1]),
        deriv_r_redge_a=elements(self.deriv_r_redge[..., 0]),
        deriv_r_redge_b=elements(self.deriv_r_redge[..., 1]),
        z_levels=elements(self.z_levels),
        z_interfaces=elements(self.z_interfaces),
        element_area=elements(self.element_area_node),
        coriolis_f=horizontal(self.coriolis_f),
    )


def _dss_elements(x: Array, periodic_a: bool, periodic_b: bool) -> jax.Array:
  """Averages values duplicated on shared element edges and corners.

  Args:
    x: field in element layout `[..., a, i, b, j, k]`.
    periodic_a: whether the last and first elements along α share an edge.
    periodic_b: whether the last and first elements along β share an edge.

  Returns:
    The field with duplicated nodes replaced by their average. Averaging
    along α and then along β yields four-way averages at element corners.
  """
  x = jnp.asarray(x)
  ea, eb = x.shape[-5], x.shape[-3]

  # α edges: node p-1 of element a coincides with node 0 of element a+1.
  last = x[..., :, -1, :, :, :]
  first_next = jnp.roll(x[..., :, 0, :, :, :], -1, axis=-4)
  shared = (np.arange(ea) < ea - 1) | periodic_a
  shared = shared[:, np.newaxis, np.newaxis, np.newaxis]
  average = 0.5 * (last + first_next)
  new_last = jnp.where(shared, average, last)
  new_first = jnp.roll(jnp.where(shared, average, first_next), 1, axis=-4)
  x = x.at[..., :, -1, :, :, :].set(new_last)
  x = x.at[..., :, 0, :, :, :].set(new_first)

  # β edges.
  last = x[..., :, :, :, -1, :]
  first_next = jnp.roll(x[..., :, :, :, 0, :], -1, axis=-2)
  shared = (np.arange(eb) < eb - 1) | periodic_b
  shared = shared[:, np.newaxis]
  average = 0.5 * (last + first_next)
  new_last = jnp.where(shared, average, last)
  new_first = jnp.roll(jnp.where(shared, average, first_next), 1, axis=-2)
  x = x.at[..., :, :, :, -1, :].set(new_last)
  x = x.at[..., :, :, :, 0, :].set(new_first)
  return x


@jax.named_call
def curl_and_div(
    ua: Array,
    ub: Array,
    rho: Array,
    geometry: ElementGeometry,
    operator: spectral_element.SpectralElementOperator,
) -> tuple[jax.Array, jax.Array]:
  """Computes vorticity and divergence of the velocity `(ua, ub) / rho`.

  Args:
    ua: α momentum in element layout.
    ub: β momentum in element layout.
    rho: density in element layout.
    geometry: element geometry.
    operator: spectral element derivative operator.

  Returns:
    Tuple `(vorticity, divergence)` in element layout.
  """
  con_a = ua / rho
  con_b = ub / rho
  cov_a, cov_b = geometry.metric.lower_index(con_a, con_b)
  vorticity = (
      operator.d_alpha(cov_b) - operator.d_beta(cov_a)
  ) / geometry.metric.jacobian
  divergence = (
      operator.d_alpha(geometry.jacobian * con_a)
      + operator.d_beta(geometry.jacobian * con_b)
  ) / geometry.jacobian
  return vorticity, divergence


@dataclasses.dataclass(eq=False)
class GridPatchGLL:
  """A rectangular patch of GLL spectral elements and the data it holds.

  Attributes:
    geometry: metric terms and coordinates of the patch.
    operator: element derivative operator shared with the parent grid.
    state_node: per data index, state on nodes `[C, A, B, levels]`.
    state_redge: per data index, state on interfaces `[C, A, B, levels + 1]`.
    tracers: per data index, tracers `[T, A, B, levels]`.
    reference_node: reference state on nodes.
    reference_redge: reference state on interfaces.
    reference_tracers: tracers of the reference state, zero unless set.
    pressure: pressure cache `[A, B, levels]`.
    rayleigh_strength_node: Rayleigh friction coefficient on nodes.
    rayleigh_strength_redge: Rayleigh friction coefficient on interfaces.
    vorticity: most recent result of `compute_curl_and_div`.
    divergence: most recent result of `compute_curl_and_div`.
  """

  geometry: PatchGeometry
  operator: spectral_element.SpectralElementOperator
  state_node: list[jax.Array]
  state_redge: list[jax.Array]
  tracers: list[jax.Array]
  reference_node: jax.Array
  reference_redge: jax.Array
  reference_tracers: jax.Array
  pressure: jax.Array
  rayleigh_strength_node: jax.Array
  rayleigh_strength_redge: jax.Array
  vorticity: jax.Array
  divergence: jax.Array

  @classmethod
  def allocate(
      cls,
      geometry: PatchGeometry,
      operator: spectral_element.SpectralElementOperator,
      equation_set: equation_sets.EquationSet,
      data_instances: int,
  ) -> GridPatchGLL:
    """Creates a patch with all data zero-initialized."""
    na, nb = geometry.shape
    levels = geometry.levels
    components = equation_set.components
    node_shape = (components, na, nb, levels)
    redge_shape = (components, na, nb, levels + 1)
    tracer_shape = (equation_set.tracers, na, nb, levels)
    dtype = geometry.jacobian.dtype
    zeros = lambda shape: jnp.zeros(shape, dtype)
    return cls(
        geometry=geometry,
        operator=operator,
        state_node=[zeros(node_shape) for _ in range(data_instances)],
        state_redge=[zeros(redge_shape) for _ in range(data_instances)],
        tracers=[zeros(tracer_shape) for _ in range(data_instances)],
        reference_node=zeros(node_shape),
        reference_redge=zeros(redge_shape),
        reference_tracers=zeros(tracer_shape),
        pressure=zeros((na, nb, levels)),
        rayleigh_strength_node=zeros((na, nb, levels)),
        rayleigh_strength_redge=zeros((na, nb, levels + 1)),
        vorticity=zeros((na, nb, levels)),
        divergence=zeros((na, nb, levels)),
    )

  @property
  def order(self) -> int:
    return self.operator.order

  @property
  def halo(self) -> int:
    return self.geometry.halo

  def get_data_state(self, index: int, location: DataLocation) -> jax.Array:
    if index == REFERENCE_INDEX:
      return self.get_reference_state(location)
    if location == DataLocation.NODE:
      return self.state_node[index]
    return self.state_redge[index]

  def set_data_state(
      self, index: int, location: DataLocation, value: Array
  ) -> None:
    if index == REFERENCE_INDEX:
      raise ValueError('The reference state is read-only.')
    if location == DataLocation.NODE:
      store = self.state_node
    else:
      store = self.state_redge
    value = jnp.asarray(value, dtype=store[index].dtype)
    if value.shape != store[index].shape:
      raise ValueError(
          f'Expected state shape {store[index].shape}; got {value.shape}.'
      )
    store[index] = value

  def get_data_tracers(self, index: int) -> jax.Array:
    if index == REFERENCE_INDEX:
      return self.reference_tracers
    return self.tracers[index]

  def set_data_tracers(self, index: int, value: Array) -> None:
    if index == REFERENCE_INDEX:
      self.reference_tracers = jnp.broadcast_to(
          jnp.asarray(value, self.reference_tracers.dtype),
          self.reference_tracers.shape,
      )
      return
    value = jnp.asarray(value, dtype=self.tracers[index].dtype)
    if value.shape != self.tracers[index].shape:
      raise ValueError(
          f'Expected tracers shape {self.tracers[index].shape}; '
          f'got {value.shape}.'
      )
    self.tracers[index] = value

  def get_reference_state(self, location: DataLocation) -> jax.Array:
    if location == DataLocation.NODE:
      return self.reference_node
    return self.reference_redge

  def set_reference_state(self, location: DataLocation, value: Array) -> None:
    if location == DataLocation.NODE:
      self.reference_node = jnp.broadcast_to(
          jnp.asarray(value, self.reference_node.dtype),
          self.reference_node.shape,
      )
    else:
      self.reference_redge = jnp.broadcast_to(
          jnp.asarray(value, self.reference_redge.dtype),
          self.reference_redge.shape,
      )

  def get_rayleigh_strength(self, location: DataLocation) -> jax.Array:
    if location == DataLocation.NODE:
      return self.rayleigh_strength_node
    return self.rayleigh_strength_redge

  def compute_curl_and_div(self, ua: Array, ub: Array, rho: Array) -> None:
    """Computes vorticity and divergence of the velocity `(ua, ub) / rho`.

    Results are stored in `vorticity` and `divergence`; halo values are
    zero.

    Args:
      ua: α momentum of shape `[A, B, levels]`.
      ub: β momentum of shape `[A, B, levels]`.
      rho: density of shape `[A, B, levels]`.
    """
    elements = lambda x: spectral_element.to_elements(x, self.order, self.halo)
    vorticity, divergence = curl_and_div(
        elements(ua),
        elements(ub),
        elements(rho),
        self.geometry.element_geometry(self.order),
        self.operator,
    )
    zeros = jnp.zeros_like(self.vorticity)
    self.vorticity = spectral_element.set_interior(
        zeros, spectral_element.from_elements(vorticity), self.halo
    )
    self.divergence = spectral_element.set_interior(
        zeros, spectral_element.from_elements(divergence), self.halo
    )


class GridGLL(abc.ABC):
  """A grid made of patches of Gauss-Lobatto-Legendre spectral elements.

  Subclasses construct the patch geometry; this class provides the data
  management operations used by the dynamical core.
  """

  def __init__(
      self,
      equation_set: equation_sets.EquationSet,
      physics_specs: units.PhysicalConstantsProtocol,
      horizontal_order: int,
      levels: int,
      *,
      reference_length: float = 0.0,
      is_cartesian_xz: bool = False,
      periodic: tuple[bool, bool] = (True, True),
  ):
    if horizontal_order < 2:
      raise ValueError(
          f'`horizontal_order` must be at least 2; got {horizontal_order}.'
      )
    if levels < 1:
      raise ValueError(f'`levels` must be positive; got {levels}.')
    self.equation_set = equation_set
    self.physics_specs = physics_specs
    self.horizontal_order = horizontal_order
    self.levels = levels
    self.reference_length = reference_length
    self.is_cartesian_xz = is_cartesian_xz
    self.periodic = tuple(periodic)
    nodes, weights = spectral_element.gauss_lobatto_legendre(horizontal_order)
    self.gll_nodes = nodes
    self.gll_weights = weights
    self._patches: list[GridPatchGLL] = []

  @property
  def active_patches(self) -> Sequence[GridPatchGLL]:
    return tuple(self._patches)

  @property
  def has_rayleigh_friction(self) -> bool:
    return any(
        bool(jnp.any(patch.rayleigh_strength_node != 0))
        or bool(jnp.any(patch.rayleigh_strength_redge != 0))
        for patch in self._patches
    )

  def var_location(self, component: int) -> DataLocation:
    return self.equation_set.locations[component]

  def add_patch(self, patch: GridPatchGLL) -> None:
    self._patches.append(patch)

  def compute_pressure(self, index: int) -> None:
    """Refreshes the pressure cache of every patch from ρθ at `index`."""
    for patch in self._patches:
      rho_theta = patch.get_data_state(index, DataLocation.NODE)[
          equation_sets.P_INDEX
      ]
      patch.pressure = self.physics_specs.pressure_from_rho_theta(rho_theta)

  def apply_dss(self, index: int, data_type: DataType) -> None:
    """Applies direct stiffness summation to the data at `index`."""
    periodic_a, periodic_b = self.periodic
    for patch in self._patches:
      order, halo = patch.order, patch.halo

      def dss(x, order=order, halo=halo):
        x_el = spectral_element.to_elements(x, order, halo)
        x_el = _dss_elements(x_el, periodic_a, periodic_b)
        return spectral_element.set_interior(
            x, spectral_element.from_elements(x_el), halo
        )

      if data_type == DataType.STATE:
        patch.state_node[index] = dss(patch.state_node[index])
        patch.state_redge[index] = dss(patch.state_redge[index])
      else:
        patch.tracers[index] = dss(patch.tracers[index])

  def copy_data(self, source: int, target: int, data_type: DataType) -> None:
    for patch in self._patches:
      if data_type == DataType.STATE:
        patch.state_node[target] = patch.get_data_state(
            source, DataLocation.NODE
        )
        patch.state_redge[target] = patch.get_data_state(
            source, DataLocation.REDGE
        )
      else:
        patch.tracers[target] = patch.get_data_tracers(source)

  def zero_data(self, index: int, data_type: DataType) -> None:
    for patch in self._patches:
      if data_type == DataType.STATE:
        patch.state_node[index] = jnp.zeros_like(patch.state_node[index])
        patch.state_redge[index] = jnp.zeros_like(patch.state_redge[index])
      else:
        patch.tracers[index] = jnp.zeros_like(patch.tracers[index])


def cosine_sponge_profile(
    z: np.ndarray, z_top: float, depth: float, coeff_max: float
) -> np.ndarray:
  """Rayleigh coefficient rising as `1 - cos` over the top `depth` meters."""
  if depth <= 0 or coeff_max == 0:
    return np.zeros_like(z)
  z_bottom = z_top - depth
  ramp = coeff_max * (1 - np.cos(math.pi * (z - z_bottom) / depth))
  return np.where(z >= z_bottom, ramp, 0.0)


class CartesianGridGLL(GridGLL):
  """A single-patch Cartesian GLL grid with a Gal-Chen vertical coordinate.

  Heights follow `z = z_s + η (z_top - z_s)` for equidistant `η ∈ [0, 1]` and
  surface height `z_s(x, y)`. The horizontal metric is the identity, so the
  only non-trivial metric terms come from the terrain.
  """

  def __init__(
      self,
      equation_set: equation_sets.EquationSet,
      physics_specs: units.PhysicalConstantsProtocol,
      *,
      horizontal_order: int,
      element_count_a: int,
      element_count_b: int,
      levels: int,
      domain_size: tuple[float, float],
      z_top: float,
      halo: int = 0,
      data_instances: int = 4,
      periodic: tuple[bool, bool] = (True, True),
      topography: Callable[[np.ndarray, np.ndarray], np.ndarray] | None = None,
      coriolis_f: float = 0.0,
      reference_length: float = 0.0,
      rayleigh_depth: float = 0.0,
      rayleigh_coeff_max: float = 0.0,
      is_cartesian_xz: bool = False,
  ):
    super().__init__(
        equation_set,
        physics_specs,
        horizontal_order,
        levels,
        reference_length=reference_length,
        is_cartesian_xz=is_cartesian_xz,
        periodic=periodic,
    )
    if z_top <= 0:
      raise ValueError(f'`z_top` must be positive; got {z_top}.')
    self.z_top = z_top
    self.domain_size = tuple(domain_size)
    delta_a = domain_size[0] / element_count_a
    delta_b = domain_size[1] / element_count_b
    operator = spectral_element.SpectralElementOperator.build(
        horizontal_order, delta_a, delta_b
    )
    geometry = self._build_geometry(
        element_count_a,
        element_count_b,
        delta_a,
        delta_b,
        halo,
        topography,
        coriolis_f,
        operator,
    )
    patch = GridPatchGLL.allocate(
        geometry, operator, equation_set, data_instances
    )
    patch.rayleigh_strength_node = jnp.asarray(
        cosine_sponge_profile(
            geometry.z_levels, z_top, rayleigh_depth, rayleigh_coeff_max
        )
    )
    patch.rayleigh_strength_redge = jnp.asarray(
        cosine_sponge_profile(
            geometry.z_interfaces, z_top, rayleigh_depth, rayleigh_coeff_max
        )
    )
    self.add_patch(patch)
    logging.info(
        'Built Cartesian GLL grid: order=%d elements=%dx%d levels=%d halo=%d',
        horizontal_order,
        element_count_a,
        element_count_b,
        levels,
        halo,
    )

  def node_coordinates(
      self, element_count: int, delta: float, halo: int
  ) -> np.ndarray:
    """Returns node coordinates along one axis, halo nodes extrapolated."""
    p = self.horizontal_order
    index = np.arange(element_count * p + 2 * halo) - halo
    element, node = np.divmod(index, p)
    return (element + self.gll_nodes[node]) * delta

  def _build_geometry(
      self,
      element_count_a,
      element_count_b,
      delta_a,
      delta_b,
      halo,
      topography,
      coriolis_f,
      operator,
  ) -> PatchGeometry:
    p = self.horizontal_order
    levels = self.levels
    x = self.node_coordinates(element_count_a, delta_a, halo)
    y = self.node_coordinates(element_count_b, delta_b, halo)
    xx, yy = np.meshgrid(x, y, indexing='ij')
    na, nb = xx.shape

    if topography is None:
      z_surface = np.zeros_like(xx)
    else:
      z_surface = np.asarray(topography(xx, yy), dtype=np.float64)
    dzs_da = np.zeros_like(xx)
    dzs_db = np.zeros_like(xx)
    if topography is not None:
      zs_el = spectral_element.to_elements(z_surface[..., np.newaxis], p, halo)
      interior = lambda d: spectral_element.set_interior(
          dzs_da[..., np.newaxis], spectral_element.from_elements(d), halo
      )[..., 0]
      dzs_da = np.asarray(interior(operator.d_alpha(zs_el)))
      dzs_db = np.asarray(interior(operator.d_beta(zs_el)))

    eta_interfaces = np.linspace(0.0, 1.0, levels + 1)
    eta_levels = 0.5 * (eta_interfaces[1:] + eta_interfaces[:-1])
    depth = self.z_top - z_surface
    z_interfaces = (
        z_surface[..., np.newaxis] + eta_interfaces * depth[..., np.newaxis]
    )
    z_levels = z_surface[..., np.newaxis] + eta_levels * depth[..., np.newaxis]

    # Jacobian normalised to one for flat terrain.
    column_jacobian = depth / self.z_top
    jacobian = np.repeat(column_jacobian[..., np.newaxis], levels, axis=-1)
    jacobian_redge = np.repeat(
        column_jacobian[..., np.newaxis], levels + 1, axis=-1
    )

    def deriv_r(eta):
      # ∂z/∂α along surfaces of constant η.
      decay = (1.0 - eta)
      return np.stack(
          [
              dzs_da[..., np.newaxis] * decay,
              dzs_db[..., np.newaxis] * decay,
          ],
          axis=-1,
      )

    ones = np.ones((na, nb))
    zeros = np.zeros((na, nb))
    flat_metric = metric.Metric2D(
        jacobian=ones,
        cov_aa=ones,
        cov_ab=zeros,
        cov_bb=ones,
        con_aa=ones,
        con_ab=zeros,
        con_bb=ones,
    )

    weights = np.zeros(na)
    weights[halo:na - halo] = np.tile(self.gll_weights, element_count_a)
    weights_b = np.zeros(nb)
    weights_b[halo:nb - halo] = np.tile(self.gll_weights, element_count_b)
    layer_depth = np.diff(eta_interfaces) * self.z_top
    element_area_node = (
        jacobian
        * (weights[:, np.newaxis] * delta_a)[..., np.newaxis]
        * (weights_b[np.newaxis, :] * delta_b)[..., np.newaxis]
        * layer_depth
    )

    return PatchGeometry(
        halo=halo,
        element_count_a=element_count_a,
        element_count_b=element_count_b,
        element_delta_a=delta_a,
        element_delta_b=delta_b,
        jacobian=jacobian,
        jacobian_redge=jacobian_redge,
        metric=flat_metric,
        deriv_r_node=deriv_r(eta_levels),
        deriv_r_redge=deriv_r(eta_interfaces),
        z_levels=z_levels,
        z_interfaces=z_interfaces,
        element_area_node=element_area_node,
        coriolis_f=coriolis_f * ones,
    )
