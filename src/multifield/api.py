from __future__ import annotations

import json
import logging
import operator
import os
import tomllib
from pathlib import Path
from typing import Any, Callable, Mapping

import numpy as np

from .multifield import (
    FieldConfig,
    FieldEngine,
    FieldStrategy,
    FloatArray,
    InvalidConfiguration,
)


logger = logging.getLogger(__name__)


# ----------------------
# Configuration loading
# ----------------------

def load_config(path: str | os.PathLike[str]) -> FieldConfig:
    """Read a FieldConfig from a JSON or TOML file.

    A TOML file may keep the keys at top level or under a ``[field]`` table.
    """
    suffix = Path(path).suffix.lower()
    with open(path, "rb") as fh:
        raw = fh.read()
    if suffix == ".toml":
        data: dict[str, Any] = tomllib.loads(raw.decode("utf-8"))
    elif suffix in {".json", ""}:
        data = json.loads(raw.decode("utf-8"))
    else:
        raise InvalidConfiguration(f"Unsupported config format: {suffix}")
    if not isinstance(data, dict):
        raise InvalidConfiguration("configuration must be a table/object.")
    if isinstance(data.get("field"), dict):
        data = data["field"]
    logger.debug(f"Loaded field configuration from {path}")
    return FieldConfig.from_mapping(data)


def build_field(config: FieldConfig | Mapping[str, Any], strategy: FieldStrategy) -> FieldEngine:
    """Construct a FieldEngine from a config object or plain mapping."""
    if not isinstance(config, FieldConfig):
        config = FieldConfig.from_mapping(config)
    return FieldEngine(config, strategy)


# ----------------------
# Strategy factories
# ----------------------

def _strength(properties: Any) -> float:
    """Mass/charge carried by a particle; a bare particle has unit strength."""
    return 1.0 if properties is None else float(properties)


def scalar_strategy(
    evaluate: Callable[[FloatArray, Any], float],
    *,
    coincident: Callable[[Any], float] | None = None,
) -> FieldStrategy:
    """Real-valued field summed with ``+``."""
    return FieldStrategy(
        evaluate=lambda offset, props: float(evaluate(offset, props)),
        combine=operator.add,
        zero=0.0,
        subtract=operator.sub,
        coincident=coincident,
    )


def vector_strategy(
    evaluate: Callable[[FloatArray, Any], Any],
    dim: int,
    *,
    coincident: Callable[[Any], Any] | None = None,
) -> FieldStrategy:
    """Vector field of shape (dim,) summed componentwise."""
    if dim < 1:
        raise InvalidConfiguration("dim must be a positive integer.")
    zero = np.zeros(dim, dtype=np.float64)
    zero.setflags(write=False)

    def as_vec(v: Any) -> FloatArray:
        out = np.asarray(v, dtype=np.float64)
        if out.shape != (dim,):
            raise ValueError(f"vector value must have shape ({dim},), got {out.shape}.")
        return out

    return FieldStrategy(
        evaluate=lambda offset, props: as_vec(evaluate(offset, props)),
        combine=np.add,
        zero=zero,
        subtract=np.subtract,
        coincident=None if coincident is None else (lambda props: as_vec(coincident(props))),
    )


def gravity_strategy(
    dim: int = 3,
    *,
    G: float = 1.0,
    softening: float = 0.0,
    power: float = 2.0,
) -> FieldStrategy:
    """Attractive acceleration  a = -G m r_hat / (|r|^2 + eps^2)^(power/2).

    ``properties`` is the source mass (default 1).
    """
    eps2 = float(softening) ** 2

    def accel(offset: FloatArray, props: Any) -> FloatArray:
        r2 = float(offset @ offset) + eps2
        return -G * _strength(props) * offset / r2 ** ((power + 1.0) / 2.0)

    return vector_strategy(accel, dim)


def potential_strategy(*, G: float = 1.0, softening: float = 0.0) -> FieldStrategy:
    """Newtonian potential  phi = -G m / sqrt(|r|^2 + eps^2)."""
    eps2 = float(softening) ** 2

    def phi(offset: FloatArray, props: Any) -> float:
        return -G * _strength(props) / float(np.sqrt(offset @ offset + eps2))

    return scalar_strategy(phi)


def coulomb_strategy(dim: int = 3, *, k: float = 1.0, softening: float = 0.0) -> FieldStrategy:
    """Electric field  E = k q r_hat / (|r|^2 + eps^2); ``properties`` is the charge."""
    eps2 = float(softening) ** 2

    def efield(offset: FloatArray, props: Any) -> FloatArray:
        r2 = float(offset @ offset) + eps2
        return k * _strength(props) * offset / r2 ** 1.5

    return vector_strategy(efield, dim)
