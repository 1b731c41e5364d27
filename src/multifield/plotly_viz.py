from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Any

import numpy as np

try:
    import plotly.graph_objects as go
    _PLOTLY = True
except Exception:  # pragma: no cover
    _PLOTLY = False

from .multifield import FieldEngine


@dataclass(slots=True)
class PlotlyFieldConfig:
    domain: tuple[float, float, float, float] = (-10.0, 10.0, -10.0, 10.0)
    nx: int = 96
    ny: int = 96
    quiver_subsample: int = 6
    quiver_scale: float = 1.0
    show_particles: bool = True
    colorscale: str = "Viridis"
    norm: Literal["linear", "log"] = "linear"
    cbar_label: str = "|field|"


def _quiver_segments(X: np.ndarray, Y: np.ndarray, U: np.ndarray, V: np.ndarray, skip: int = 6, scale: float = 1.0):
    """Return x, y for a Plotly multi-segment quiver using Scatter with mode='lines'."""
    xs, ys = [], []
    for j in range(0, Y.shape[0], skip):
        for i in range(0, X.shape[1], skip):
            x0, y0 = X[j, i], Y[j, i]
            x1, y1 = x0 + scale * U[j, i], y0 + scale * V[j, i]
            xs.extend([x0, x1, None])
            ys.extend([y0, y1, None])
    return xs, ys


def _apply_norm(mag: np.ndarray, mode: Literal["linear", "log"]) -> tuple[np.ndarray, str]:
    if mode == "linear":
        return mag, "linear"
    eps = max(1e-12, float(np.abs(mag).max(initial=0.0)) * 1e-6)
    return np.log10(np.abs(mag) + eps), "log10"


def plot_field_interactive(
    fld: FieldEngine,
    *,
    config: PlotlyFieldConfig | None = None,
    save_html: str | None = None,
) -> Any:
    """Interactive heatmap of a 2-D field with Plotly (pan/zoom, hover). Returns the Figure."""
    if not _PLOTLY:
        raise RuntimeError("plotly is not installed. `pip install plotly`")

    cfg = config or PlotlyFieldConfig()
    xmin, xmax, ymin, ymax = cfg.domain
    X, Y, F = fld.sample_grid(xmin, xmax, ymin, ymax, cfg.nx, cfg.ny)
    F = np.asarray(F, dtype=np.float64)
    vector = F.ndim == 3
    mag = np.linalg.norm(F, axis=2) if vector else F
    z, norm_name = _apply_norm(mag, cfg.norm)

    fig = go.Figure(
        data=[
            go.Heatmap(
                x=X[0, :], y=Y[:, 0], z=z,
                colorscale=cfg.colorscale,
                colorbar=dict(title=f"{cfg.cbar_label} ({norm_name})"),
                zsmooth="best",
            )
        ]
    )

    if vector and F.shape[2] == 2:
        qx, qy = _quiver_segments(X, Y, F[..., 0], F[..., 1], skip=max(1, cfg.quiver_subsample), scale=cfg.quiver_scale)
        fig.add_trace(go.Scatter(x=qx, y=qy, mode="lines", line=dict(width=1), name="field"))

    if cfg.show_particles and fld.num_particles:
        x = fld.positions
        fig.add_trace(go.Scattergl(x=x[:, 0], y=x[:, 1], mode="markers",
                                   marker=dict(size=5, color="red", line=dict(width=0.5, color="black")),
                                   name="sources"))

    fig.update_layout(
        title=f"{fld.num_particles} sources, {len(fld.levels)} levels",
        xaxis_title="x",
        yaxis_title="y",
        xaxis=dict(scaleanchor="y", scaleratio=1, range=[xmin, xmax]),
        yaxis=dict(range=[ymin, ymax]),
        template="plotly_white",
        legend=dict(x=0.01, y=0.99),
    )

    if save_html:
        fig.write_html(save_html, include_plotlyjs="cdn")
    return fig
