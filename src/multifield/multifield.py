from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable
from collections.abc import Iterator, Mapping, Sequence

import itertools
import logging
import math
import threading

import numpy as np
from numpy.typing import NDArray
import matplotlib.pyplot as plt


logger = logging.getLogger(__name__)

FloatArray = NDArray[np.float64]
CellIndex = tuple[int, ...]
ArrayLike1D = np.ndarray | Sequence[float]
ArrayLike2D = np.ndarray | Sequence[Sequence[float]]


# ---------------------------
# Errors
# ---------------------------
class FieldError(ValueError):
    """Base class for every error raised by a multi-resolution field."""


class InvalidConfiguration(FieldError):
    """Bad resolution/range/dimension, raised at construction."""


class InvalidLocation(FieldError):
    """Non-finite or wrongly shaped coordinate passed to a field operation."""


class MissingArithmetic(FieldError):
    """The strategy lacks an operation (combine, zero, subtract) that is needed."""


# ---------------------------
# Utility
# ---------------------------
def _as_location(x: ArrayLike1D, dim: int, name: str = "location") -> FloatArray:
    """Convert to contiguous float64 (dim,)."""
    try:
        arr = np.asarray(x, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise InvalidLocation(f"{name} is not a numeric coordinate.") from exc
    if arr.shape != (dim,):
        raise InvalidLocation(f"{name} must have shape ({dim},), got {arr.shape}.")
    if not np.isfinite(arr).all():
        raise InvalidLocation(f"{name} contains non-finite values.")
    return np.ascontiguousarray(arr)


def _as_locations(x: ArrayLike2D, dim: int, name: str = "locations") -> FloatArray:
    """Convert to contiguous float64 (N,dim)."""
    try:
        arr = np.asarray(x, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise InvalidLocation(f"{name} is not a numeric coordinate array.") from exc
    if arr.ndim != 2 or arr.shape[1] != dim:
        raise InvalidLocation(f"{name} must have shape (N,{dim}).")
    if not np.isfinite(arr).all():
        raise InvalidLocation(f"{name} contains non-finite values.")
    return np.ascontiguousarray(arr)


def _same_properties(a: Any, b: Any) -> bool:
    if a is b:
        return True
    if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
        return bool(np.array_equal(a, b))
    return bool(a == b)


# ---------------------------
# Level hierarchy
# ---------------------------
@dataclass(frozen=True, slots=True)
class LevelSet:
    """Resolution tiers between ``resolution`` (level 0) and ``range`` (level L).

    widths[l] = resolution * 2**l; L is the first level whose width reaches range.
    """
    resolution: float
    range: float
    widths: tuple[float, ...]

    @classmethod
    def build(cls, resolution: float, range: float) -> LevelSet:
        try:
            r = float(resolution)
            g = float(range)
        except (TypeError, ValueError) as exc:
            raise InvalidConfiguration("resolution and range must be numbers.") from exc
        if not (math.isfinite(r) and r > 0.0):
            raise InvalidConfiguration("resolution must be positive and finite.")
        if not math.isfinite(g) or g < r:
            raise InvalidConfiguration("range must be finite and >= resolution.")
        # doubling a float is exact, so widths[l] == r * 2**l bit for bit
        widths = [r]
        while widths[-1] < g:
            widths.append(widths[-1] * 2.0)
        return cls(resolution=r, range=g, widths=tuple(widths))

    @property
    def coarsest(self) -> int:
        return len(self.widths) - 1

    def width(self, level: int) -> float:
        if not 0 <= level < len(self.widths):
            raise IndexError(f"level {level} outside 0..{self.coarsest}.")
        return self.widths[level]

    def __len__(self) -> int:
        return len(self.widths)

    def __iter__(self) -> Iterator[int]:
        return iter(range(len(self.widths)))


# ---------------------------
# Sparse per-level store
# ---------------------------
class SparseLevelGrid:
    """Lazily populated map from integer cell coordinates to an aggregate value."""

    __slots__ = ("level", "width", "_zero", "_cells")

    def __init__(self, level: int, width: float, zero: Any) -> None:
        self.level = level
        self.width = float(width)
        self._zero = zero
        self._cells: dict[CellIndex, Any] = {}

    @staticmethod
    def cell_index_for(location: ArrayLike1D, width: float) -> CellIndex:
        # floor: a point on a boundary lands in the higher-indexed cell
        return tuple(math.floor(float(c) / width) for c in location)

    def midpoint(self, cell: CellIndex) -> FloatArray:
        return (np.asarray(cell, dtype=np.float64) + 0.5) * self.width

    def get_or_zero(self, cell: CellIndex) -> Any:
        return self._cells.get(cell, self._zero)

    def accumulate(self, cell: CellIndex, delta: Any, combine: Callable[[Any, Any], Any]) -> None:
        self._cells[cell] = combine(self._cells.get(cell, self._zero), delta)

    def items(self) -> Iterator[tuple[CellIndex, Any]]:
        return iter(self._cells.items())

    def clear(self) -> None:
        self._cells.clear()

    def __len__(self) -> int:
        return len(self._cells)

    def __contains__(self, cell: object) -> bool:
        return cell in self._cells

    def __repr__(self) -> str:
        return f"SparseLevelGrid(level={self.level}, width={self.width}, cells={len(self._cells)})"


# ---------------------------
# Shell selection
# ---------------------------
def near_block(center: CellIndex, radius: int) -> list[CellIndex]:
    """Cells within Chebyshev index distance ``radius`` of ``center``."""
    steps = range(-radius, radius + 1)
    return [tuple(c + o for c, o in zip(center, off)) for off in itertools.product(steps, repeat=len(center))]


def shell_cells(
    location: ArrayLike1D,
    level: int,
    levels: LevelSet,
    *,
    near_radius: int = 1,
    max_distance: float | None = None,
) -> list[CellIndex]:
    """Level-``level`` cells a source at ``location`` writes to.

    The shell is the next coarser neighbourhood refined to this level, minus
    this level's own neighbourhood. Over all levels the shells and the
    finest neighbourhood tile space without overlap, and every shell cell
    sits at least ``near_radius + 1`` cells from the source's cell.
    Cells whose midpoint lies farther than ``max_distance`` are dropped, so
    the cutoff seen by a query point is soft: a kept cell of width ``w``
    still reaches points up to ``max_distance + w * sqrt(dim) / 2`` away.

    With ``max_distance=levels.range`` the coarsest level's shell is always
    empty, since its cells start ``1.5 * widths[-1] >= 1.5 * range`` out; that
    level only serves as the parent neighbourhood of the level below.
    """
    width = levels.width(level)
    loc = [float(c) for c in location]
    own = SparseLevelGrid.cell_index_for(loc, width)
    parent = tuple(c // 2 for c in own)
    inner = set(near_block(own, near_radius))

    out: list[CellIndex] = []
    for coarse in near_block(parent, near_radius):
        for child in itertools.product(*[(2 * c, 2 * c + 1) for c in coarse]):
            if child in inner:
                continue
            if max_distance is not None and math.dist([(c + 0.5) * width for c in child], loc) > max_distance:
                continue
            out.append(child)
    out.sort()
    return out


# ---------------------------
# Configuration & strategy
# ---------------------------
@dataclass(slots=True)
class FieldConfig:
    """Geometry of a field, fixed once the field is built.

    resolution: finest distinguishable distance (level-0 cell width)
    range: largest modeled influence distance
    dim: number of spatial dimensions
    near_radius: half-width, in cells, of the neighbourhood block (1 -> 3**dim cells)
    """
    resolution: float
    range: float
    dim: int = 2
    near_radius: int = 1

    def __post_init__(self) -> None:
        if isinstance(self.dim, bool) or not isinstance(self.dim, (int, np.integer)) or self.dim < 1:
            raise InvalidConfiguration("dim must be a positive integer.")
        if isinstance(self.near_radius, bool) or not isinstance(self.near_radius, (int, np.integer)) or self.near_radius < 1:
            raise InvalidConfiguration("near_radius must be an integer >= 1.")
        self.dim = int(self.dim)
        self.near_radius = int(self.near_radius)
        self.level_set()

    def level_set(self) -> LevelSet:
        return LevelSet.build(self.resolution, self.range)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> FieldConfig:
        """Build from a plain mapping; unknown keys are ignored."""
        try:
            resolution = float(data["resolution"])
            range_ = float(data["range"])
        except KeyError as exc:
            raise InvalidConfiguration(f"missing configuration key {exc.args[0]!r}.") from exc
        except (TypeError, ValueError) as exc:
            raise InvalidConfiguration("resolution and range must be numbers.") from exc
        return cls(
            resolution=resolution,
            range=range_,
            dim=data.get("dim", 2),
            near_radius=data.get("near_radius", 1),
        )


@dataclass(frozen=True, slots=True)
class FieldStrategy:
    """Caller arithmetic and physics for one field.

    evaluate(offset, properties) -> V: contribution at ``offset`` from a source
    combine(V, V) -> V: associative, commutative aggregation
    zero: identity of ``combine``
    subtract(V, V) -> V: optional, enables particle removal
    coincident(properties) -> V: optional same-finest-cell contribution
    """
    evaluate: Callable[[FloatArray, Any], Any]
    combine: Callable[[Any, Any], Any]
    zero: Any
    subtract: Callable[[Any, Any], Any] | None = None
    coincident: Callable[[Any], Any] | None = None

    def __post_init__(self) -> None:
        if not callable(self.evaluate):
            raise MissingArithmetic("evaluate must be callable.")
        if not callable(self.combine):
            raise MissingArithmetic("combine must be callable.")
        if self.zero is None:
            raise MissingArithmetic("an explicit zero is required.")
        if self.subtract is not None and not callable(self.subtract):
            raise MissingArithmetic("subtract must be callable when given.")
        if self.coincident is not None and not callable(self.coincident):
            raise MissingArithmetic("coincident must be callable when given.")


@dataclass(frozen=True, slots=True, eq=False)
class Particle:
    location: FloatArray
    properties: Any = None


# ---------------------------
# Main field
# ---------------------------
class FieldEngine:
    """Hierarchical multi-resolution field of point sources.

    Insertion writes each source into a constant number of shell cells per
    level; a query sums one cell aggregate per level. Both are
    O(log(range / resolution)).
    """

    def __init__(self, config: FieldConfig, strategy: FieldStrategy) -> None:
        if not isinstance(config, FieldConfig):
            raise InvalidConfiguration("config must be a FieldConfig.")
        if not isinstance(strategy, FieldStrategy):
            raise MissingArithmetic("strategy must be a FieldStrategy.")
        self._config = replace(config)
        self._dim = self._config.dim
        self._near_radius = self._config.near_radius
        self._strategy = strategy
        self._levels = self._config.level_set()
        # the coarsest shell lies beyond range; level 0 stays for the coincidence bucket
        self._active = tuple(range(max(self._levels.coarsest, 1)))
        self._grids: tuple[SparseLevelGrid, ...] = tuple(
            SparseLevelGrid(level, self._levels.width(level), strategy.zero) for level in self._levels
        )
        # finest-cell buckets of the sources themselves, for near-zone lookups
        self._near: dict[CellIndex, list[Particle]] = {}
        self._count = 0
        self._lock = threading.RLock()
        logger.debug(
            f"FieldEngine: dim={self._dim} resolution={self._levels.resolution} "
            f"range={self._levels.range} levels={len(self._levels)}"
        )

    # -------- properties --------
    @property
    def config(self) -> FieldConfig: return replace(self._config)

    @property
    def strategy(self) -> FieldStrategy: return self._strategy

    @property
    def levels(self) -> LevelSet: return self._levels

    @property
    def grids(self) -> tuple[SparseLevelGrid, ...]: return self._grids

    @property
    def dim(self) -> int: return self._dim

    @property
    def num_particles(self) -> int: return self._count

    @property
    def positions(self) -> FloatArray:
        with self._lock:
            pts = [p.location for bucket in self._near.values() for p in bucket]
        if not pts:
            return np.empty((0, self.dim), dtype=np.float64)
        return np.vstack(pts).astype(np.float64)

    # -------- insertion --------
    def _contributions(self, loc: FloatArray, properties: Any) -> list[tuple[int, CellIndex, Any]]:
        """Every (level, cell, delta) a source writes, computed without touching the grids."""
        out: list[tuple[int, CellIndex, Any]] = []
        evaluate = self._strategy.evaluate
        for level in self._active:
            grid = self._grids[level]
            for cell in shell_cells(
                loc, level, self._levels,
                near_radius=self._near_radius,
                max_distance=self._levels.range,
            ):
                out.append((level, cell, evaluate(grid.midpoint(cell) - loc, properties)))
        if self._strategy.coincident is not None:
            own = SparseLevelGrid.cell_index_for(loc, self._levels.resolution)
            out.append((0, own, self._strategy.coincident(properties)))
        return out

    def _apply(self, contributions: list[tuple[int, CellIndex, Any]], op: Callable[[Any, Any], Any]) -> None:
        for level, cell, delta in contributions:
            self._grids[level].accumulate(cell, delta, op)

    def add_particle(self, location: ArrayLike1D, properties: Any = None) -> None:
        """Insert one source. On any error the field is left unchanged."""
        loc = _as_location(location, self.dim)
        contributions = self._contributions(loc, properties)
        own = SparseLevelGrid.cell_index_for(loc, self._levels.resolution)
        with self._lock:
            self._apply(contributions, self._strategy.combine)
            self._near.setdefault(own, []).append(Particle(loc, properties))
            self._count += 1

    def add_particles(self, locations: ArrayLike2D, properties: Sequence[Any] | None = None) -> None:
        """Insert a batch of sources; the whole batch is validated and evaluated first."""
        xs = _as_locations(locations, self.dim)
        if properties is None:
            props: Sequence[Any] = [None] * xs.shape[0]
        else:
            props = properties
            if len(props) != xs.shape[0]:
                raise ValueError("properties must match locations length.")
        staged = [(x, p, self._contributions(x, p)) for x, p in zip(xs, props)]
        with self._lock:
            for x, p, contributions in staged:
                self._apply(contributions, self._strategy.combine)
                own = SparseLevelGrid.cell_index_for(x, self._levels.resolution)
                self._near.setdefault(own, []).append(Particle(x, p))
            self._count += len(staged)
        logger.debug(f"add_particles: inserted {len(staged)} sources, total {self._count}")

    def remove_particle(self, location: ArrayLike1D, properties: Any = None) -> None:
        """Undo a previous ``add_particle`` with the same location and properties."""
        if self._strategy.subtract is None:
            raise MissingArithmetic("removal needs a strategy with subtract.")
        loc = _as_location(location, self.dim)
        own = SparseLevelGrid.cell_index_for(loc, self._levels.resolution)
        contributions = self._contributions(loc, properties)
        with self._lock:
            bucket = self._near.get(own, [])
            for i, p in enumerate(bucket):
                if np.array_equal(p.location, loc) and _same_properties(p.properties, properties):
                    break
            else:
                raise FieldError("no particle with these properties at this location.")
            self._apply(contributions, self._strategy.subtract)
            del bucket[i]
            if not bucket:
                del self._near[own]
            self._count -= 1

    # -------- queries --------
    def value(self, location: ArrayLike1D) -> Any:
        """Aggregate field at ``location``: one cell per shell level, folded with combine."""
        loc = _as_location(location, self.dim)
        combine = self._strategy.combine
        total = self._strategy.zero
        with self._lock:
            for level in self._active:
                grid = self._grids[level]
                total = combine(total, grid.get_or_zero(SparseLevelGrid.cell_index_for(loc, grid.width)))
        return total

    def values(self, locations: ArrayLike2D) -> np.ndarray:
        """Field at each row of ``locations``, stacked along axis 0."""
        xs = _as_locations(locations, self.dim)
        return np.asarray([self.value(x) for x in xs])

    def near_particles(self, location: ArrayLike1D) -> list[Particle]:
        """Sources whose near zone (not covered by shells) contains ``location``."""
        loc = _as_location(location, self.dim)
        own = SparseLevelGrid.cell_index_for(loc, self._levels.resolution)
        with self._lock:
            return [p for cell in near_block(own, self._near_radius) for p in self._near.get(cell, ())]

    # --------- Utilities ---------
    def diagnostics(self) -> dict[str, Any]:
        with self._lock:
            cells = [len(g) for g in self._grids]
        return {
            "num_particles": self._count,
            "dim": self.dim,
            "num_levels": len(self._levels),
            "widths": self._levels.widths,
            "cells_per_level": cells,
            "total_cells": int(sum(cells)),
        }

    def sample_grid(
        self, xmin: float, xmax: float, ymin: float, ymax: float, nx: int, ny: int
    ) -> tuple[FloatArray, FloatArray, np.ndarray]:
        """Evaluate a 2-D field on a regular grid; returns X, Y and values of shape (ny, nx, ...)."""
        if self.dim != 2:
            raise ValueError("sample_grid requires a 2-D field.")
        xs = np.linspace(xmin, xmax, nx)
        ys = np.linspace(ymin, ymax, ny)
        X, Y = np.meshgrid(xs, ys, indexing="xy")
        pts = np.stack([X.ravel(), Y.ravel()]).T
        F = self.values(pts)
        return X, Y, F.reshape((ny, nx) + F.shape[1:])

    def __repr__(self) -> str:
        return (
            f"FieldEngine(dim={self.dim}, resolution={self._levels.resolution}, "
            f"range={self._levels.range}, particles={self._count})"
        )


# ------------------------------
# Plot helpers
# ------------------------------
def plot_field(
    fld: FieldEngine,
    *,
    domain: tuple[float, float, float, float],
    nx: int = 96,
    ny: int = 72,
    quiver_subsample: int = 6,
    show_particles: bool = True,
    figsize: tuple[float, float] = (8.0, 6.0),
    cbar_label: str = "field",
    show: bool = True,
) -> tuple[Any, Any]:
    """Heatmap of a 2-D field (magnitude for vector fields) with optional quiver and sources."""
    xmin, xmax, ymin, ymax = domain
    X, Y, F = fld.sample_grid(xmin, xmax, ymin, ymax, nx, ny)
    F = np.asarray(F, dtype=np.float64)
    vector = F.ndim == 3
    mag = np.linalg.norm(F, axis=2) if vector else F

    fig, ax = plt.subplots(figsize=figsize)
    mesh = ax.pcolormesh(X, Y, mag, shading="auto", cmap="viridis")
    fig.colorbar(mesh, ax=ax, fraction=0.046, pad=0.04).set_label(cbar_label)

    if vector and F.shape[2] == 2 and quiver_subsample and quiver_subsample > 0:
        s = quiver_subsample
        ax.quiver(X[::s, ::s], Y[::s, ::s], F[::s, ::s, 0], F[::s, ::s, 1], color="white", alpha=0.8)

    if show_particles and fld.num_particles:
        x = fld.positions
        ax.scatter(x[:, 0], x[:, 1], s=8.0, c="tab:red", edgecolors="k", linewidths=0.3, alpha=0.85)

    ax.set_xlim(xmin, xmax)
    ax.set_ylim(ymin, ymax)
    ax.set_aspect("equal", adjustable="box")
    ax.set_title(f"{fld.num_particles} sources, {len(fld.levels)} levels, resolution {fld.levels.resolution:g}")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.grid(True, alpha=0.2)
    if show:
        plt.show()
    return fig, ax
