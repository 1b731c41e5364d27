from __future__ import annotations

import math
import os
from typing import Final

import numpy as np
import matplotlib.pyplot as plt

from multifield import FieldConfig, FieldEngine, potential_strategy


ART = os.environ.get("ARTIFACTS_DIR", "artifacts")
os.makedirs(ART, exist_ok=True)


def direct_potential(x: np.ndarray, m: np.ndarray, xq: np.ndarray) -> np.ndarray:
    r = np.linalg.norm(xq[:, None, :] - x[None, :, :], axis=2)
    return -(m[None, :] / r).sum(axis=1)


def error_vs_resolution_plot() -> None:
    N: Final = 400
    rng = np.random.default_rng(0)
    x = rng.normal(0.0, 2.0, size=(N, 2))
    m = rng.uniform(0.5, 1.5, size=N)

    thetas = np.linspace(0.0, 2.0 * math.pi, 180, endpoint=False)
    xq = 25.0 * np.stack([np.cos(thetas), np.sin(thetas)], axis=1)
    ref = direct_potential(x, m, xq)

    resolutions = [4.0, 2.0, 1.0, 0.5, 0.25]
    errs = []
    for res in resolutions:
        fld = FieldEngine(FieldConfig(res, 128.0), potential_strategy())
        fld.add_particles(x, m)
        approx = fld.values(xq)
        errs.append(float(np.linalg.norm(approx - ref) / np.linalg.norm(ref)))

    plt.figure()
    plt.loglog(resolutions, errs, marker="o")
    plt.xlabel("resolution")
    plt.ylabel("relative L2 potential error")
    plt.title("Potential on a ring at r = 25: error vs resolution")
    plt.grid(True, which="both", alpha=0.3)
    plt.tight_layout()
    plt.savefig(os.path.join(ART, "error_vs_resolution.png"), dpi=150)


def radial_profile_plot() -> None:
    rng = np.random.default_rng(1)
    x = rng.normal(0.0, 1.0, size=(200, 2))
    m = np.ones(200)
    fld = FieldEngine(FieldConfig(0.5, 64.0), potential_strategy())
    fld.add_particles(x, m)

    r = np.linspace(3.0, 90.0, 300)
    xq = np.stack([r, np.zeros_like(r)], axis=1)
    plt.figure()
    plt.plot(r, direct_potential(x, m, xq), label="direct sum")
    plt.plot(r, fld.values(xq), label="multi-resolution", drawstyle="steps-mid")
    plt.axvline(64.0, ls="--", c="k", alpha=0.5, label="range")
    plt.xlabel("r")
    plt.ylabel("potential")
    plt.title("Radial potential profile")
    plt.legend()
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(os.path.join(ART, "radial_profile.png"), dpi=150)


if __name__ == "__main__":
    error_vs_resolution_plot()
    radial_profile_plot()
