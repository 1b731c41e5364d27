from __future__ import annotations

import numpy as np

from multifield import FieldConfig, FieldEngine, gravity_strategy, plot_field, setup_logging


def main() -> None:
    setup_logging()
    rng = np.random.default_rng(7)

    # two clumps of unequal mass
    x1 = rng.normal(loc=(-15.0, 0.0), scale=3.0, size=(1500, 2))
    x2 = rng.normal(loc=(+20.0, 5.0), scale=5.0, size=(2500, 2))
    m = np.concatenate([np.full(1500, 2.0), np.full(2500, 1.0)])

    fld = FieldEngine(FieldConfig(resolution=0.5, range=64.0), gravity_strategy(2, softening=0.2))
    fld.add_particles(np.vstack([x1, x2]), m)
    print(fld.diagnostics())

    plot_field(
        fld,
        domain=(-40.0, 40.0, -30.0, 30.0),
        nx=160,
        ny=120,
        quiver_subsample=8,
        cbar_label="|a|",
    )

if __name__ == "__main__":
    main()
