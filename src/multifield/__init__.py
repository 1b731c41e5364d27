from .multifield import (
    FieldError,
    InvalidConfiguration,
    InvalidLocation,
    MissingArithmetic,
    LevelSet,
    SparseLevelGrid,
    near_block,
    shell_cells,
    FieldConfig,
    FieldStrategy,
    Particle,
    FieldEngine,
    plot_field,
)
from .api import (
    load_config, build_field,
    scalar_strategy, vector_strategy,
    gravity_strategy, potential_strategy, coulomb_strategy,
)
from .plotly_viz import (
    plot_field_interactive,
    PlotlyFieldConfig,
)
from .logging_config import setup_logging

__all__ = [
    "FieldError", "InvalidConfiguration", "InvalidLocation", "MissingArithmetic",
    "LevelSet",
    "SparseLevelGrid",
    "near_block",
    "shell_cells",
    "FieldConfig",
    "FieldStrategy",
    "Particle",
    "FieldEngine",
    "plot_field",
    "load_config", "build_field",
    "scalar_strategy", "vector_strategy",
    "gravity_strategy", "potential_strategy", "coulomb_strategy",
    "plot_field_interactive", "PlotlyFieldConfig",
    "setup_logging",
]
