from __future__ import annotations

import numpy as np

from multifield import FieldConfig, FieldEngine, PlotlyFieldConfig, coulomb_strategy, plot_field_interactive


def main() -> None:
    rng = np.random.default_rng(3)
    pos = rng.normal(loc=(-4.0, 0.0), scale=0.8, size=(300, 2))
    neg = rng.normal(loc=(+4.0, 0.0), scale=0.8, size=(300, 2))

    fld = FieldEngine(FieldConfig(resolution=0.25, range=32.0), coulomb_strategy(2, softening=0.1))
    fld.add_particles(np.vstack([pos, neg]), np.concatenate([np.ones(300), -np.ones(300)]))

    cfg = PlotlyFieldConfig(domain=(-12.0, 12.0, -9.0, 9.0), nx=120, ny=90, norm="log", quiver_scale=2.0)
    fig = plot_field_interactive(fld, config=cfg, save_html="dipole_field.html")
    fig.show()

if __name__ == "__main__":
    main()
