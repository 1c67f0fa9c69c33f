import logging
from typing import List, Optional, Sequence

import numpy as np
import matplotlib.pyplot as plt
import matplotlib.patches as patches
from matplotlib import cm

from tracknav.geometry import TrackingGeometry
from tracknav.propagation import PropagationResult
from tracknav.volumes import CylinderVolumeBounds

logger = logging.getLogger(__name__)


def _show_and_close(fig, *, do_show: bool = True, out_path: Optional[str] = None) -> None:
    r"""
    Optionally save and show a Matplotlib figure, then always close it.

    Closing prevents figure accumulation in batch runs; ``plt.show()`` may be
    patched to a no-op by the headless guard of :mod:`tracknav.main`.

    Parameters
    ----------
    fig : matplotlib.figure.Figure
    do_show : bool, optional
        If ``True`` (default) call ``plt.show()`` before closing.
    out_path : str, optional
        If given, ``fig.savefig(out_path)`` is called first.
    """
    fig.tight_layout()
    if out_path:
        fig.savefig(out_path, dpi=120)
        logger.info("Saved figure to %s", out_path)
    if do_show:
        plt.show()
    plt.close(fig)


def _track_points(result: PropagationResult) -> np.ndarray:
    if not result.steps:
        return np.empty((0, 3))
    return np.array([(s.x, s.y, s.z) for s in result.steps], dtype=np.float64)


def plot_geometry_rz(geometry: TrackingGeometry, *, ax=None, show: bool = True,
                     out_path: Optional[str] = None) -> None:
    r"""
    Draw leaf volumes and layer extents in the :math:`(z, r)` plane.

    Cylindrical volumes are drawn as outlined rectangles
    :math:`[z_{\min}, z_{\max}] \times [r_{\min}, r_{\max}]` and labelled with
    their name; every layer is drawn as a filled rectangle spanning its
    extent, coloured by layer type (sensitive layers blue, passive grey).

    Parameters
    ----------
    geometry : TrackingGeometry
    ax : matplotlib.axes.Axes, optional
        Draw into an existing axes; the figure is then neither shown nor closed.
    show : bool, optional
        Forwarded to :func:`_show_and_close`.
    out_path : str, optional
        Save the figure to this path.
    """
    own = ax is None
    if own:
        fig, ax = plt.subplots(figsize=(14, 6))
    for vol in geometry.leaf_volumes():
        if isinstance(vol.bounds, CylinderVolumeBounds):
            z0, z1 = vol.z_range()
            r0, r1 = vol.bounds.r_min, vol.bounds.r_max
            ax.add_patch(patches.Rectangle((z0, r0), z1 - z0, r1 - r0, linewidth=1.2, edgecolor="black",
                                           facecolor="none", alpha=0.6))
            ax.text(0.5 * (z0 + z1), r1, vol.name, fontsize=8, ha="center", va="bottom")
        for layer in vol.layers:
            ext = layer.extent()
            colour = "tab:blue" if layer.sensitive_surfaces else "tab:gray"
            ax.add_patch(patches.Rectangle((ext.z[0], ext.r[0]), ext.z[1] - ext.z[0],
                                           max(ext.r[1] - ext.r[0], 0.5), facecolor=colour, alpha=0.5))
    ax.autoscale_view()
    ax.set_xlabel("z (mm)")
    ax.set_ylabel("r (mm)")
    ax.set_title("Tracking geometry in r vs z")
    ax.grid(True, alpha=0.3)
    if own:
        _show_and_close(fig, do_show=show, out_path=out_path)


def plot_geometry_xy(geometry: TrackingGeometry, *, z_window: Sequence[float] = (-40.0, 40.0), ax=None,
                     show: bool = True, out_path: Optional[str] = None) -> None:
    """
    Draw the outlines of sensitive surfaces whose centre lies in ``z_window``
    projected on the transverse plane.
    """
    own = ax is None
    if own:
        fig, ax = plt.subplots(figsize=(9, 9))
    lo, hi = float(z_window[0]), float(z_window[1])
    n = 0
    for vol in geometry.leaf_volumes():
        for layer in vol.layers:
            for s in layer.sensitive_surfaces:
                if not lo <= s.center[2] <= hi:
                    continue
                v = s.polyhedron_vertices()
                ax.plot(np.append(v[:, 0], v[0, 0]), np.append(v[:, 1], v[0, 1]), color="tab:blue", linewidth=0.7)
                n += 1
    logger.debug("plot_geometry_xy: %d surfaces in z window [%g, %g]", n, lo, hi)
    ax.set_aspect("equal")
    ax.set_xlabel("x (mm)")
    ax.set_ylabel("y (mm)")
    ax.set_title(f"Sensitive surfaces, {lo:g} <= z <= {hi:g} mm")
    ax.grid(True, alpha=0.3)
    if own:
        _show_and_close(fig, do_show=show, out_path=out_path)


def plot_trajectories(results: List[PropagationResult], geometry: Optional[TrackingGeometry] = None, *,
                      max_tracks: Optional[int] = None, show: bool = True, out_path: Optional[str] = None) -> None:
    r"""
    Plot propagated tracks in :math:`(z, r)` and :math:`(x, y)` side by side.

    Every reached object is a marker; sensitive hits are drawn filled, layer
    and boundary crossings hollow. With ``geometry`` the :math:`(z, r)` panel
    also shows the volume and layer layout.
    """
    if not results:
        return
    fig, (ax_rz, ax_xy) = plt.subplots(1, 2, figsize=(18, 7), gridspec_kw={"width_ratios": [2, 1]})
    if geometry is not None:
        plot_geometry_rz(geometry, ax=ax_rz)
    colours = cm.viridis(np.linspace(0.0, 1.0, max(len(results), 2)))
    for i, res in enumerate(results):
        if max_tracks is not None and i >= max_tracks:
            break
        pts = _track_points(res)
        if pts.shape[0] == 0:
            continue
        r = np.hypot(pts[:, 0], pts[:, 1])
        hit = np.array([s.kind == "surface" for s in res.steps])
        ax_rz.plot(pts[:, 2], r, color=colours[i], linewidth=0.8, alpha=0.8)
        ax_rz.scatter(pts[hit, 2], r[hit], s=10, color=colours[i])
        ax_rz.scatter(pts[~hit, 2], r[~hit], s=14, facecolors="none", edgecolors=colours[i])
        ax_xy.plot(pts[:, 0], pts[:, 1], color=colours[i], linewidth=0.8, alpha=0.8)
        ax_xy.scatter(pts[hit, 0], pts[hit, 1], s=10, color=colours[i])

    ax_rz.set_xlabel("z (mm)")
    ax_rz.set_ylabel("r (mm)")
    ax_rz.set_title("Navigation steps in r vs z")
    ax_xy.set_aspect("equal")
    ax_xy.set_xlabel("x (mm)")
    ax_xy.set_ylabel("y (mm)")
    ax_xy.set_title("Navigation steps in x vs y")
    for ax in (ax_rz, ax_xy):
        ax.grid(True, alpha=0.3)
    _show_and_close(fig, do_show=show, out_path=out_path)
