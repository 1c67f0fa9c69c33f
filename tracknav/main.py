#!/usr/bin/env python3
r"""
Navigation runner (headless-safe).

Builds a reference geometry, shoots straight tracks from the origin through
it with the :class:`~tracknav.navigation.Navigator` and reports what every
track reached.

Track directions are drawn uniformly in azimuth and pseudorapidity,

.. math::

    \phi \sim \mathcal{U}(-\pi, \pi),\qquad
    \eta \sim \mathcal{U}(-\eta_\text{max}, \eta_\text{max}),\qquad
    \theta = 2\arctan e^{-\eta},

    \hat{\mathbf{d}} = (\sin\theta\cos\phi,\ \sin\theta\sin\phi,\ \cos\theta).

For the telescope geometry the tracks start upstream of the first plane and
get a small Gaussian angular spread around :math:`+z` instead.

CLI overview
------------
See :func:`build_parser` for all options. Typical usage:

.. code-block:: bash

   tracknav -n 500 --out steps.csv
   tracknav --config config.json --plot -v
   tracknav --telescope -n 20 --plot
"""

from __future__ import annotations

import argparse
import logging
import math
import os
import time
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd

from tracknav.builders.detectors import build_cylindrical_detector, build_telescope_detector
from tracknav.config import detector_config, load_config, navigator_config
from tracknav.geometry import TrackingGeometry
from tracknav.navigation import Navigator
from tracknav.profiling import prof
from tracknav.propagation import PropagationResult, PropagatorOptions, propagate


def build_parser() -> argparse.ArgumentParser:
    r"""
    Construct the command-line interface of the navigation runner.

    Returns
    -------
    argparse.ArgumentParser
        Parser with options for geometry selection, track generation, output,
        plotting and profiling.
    """
    p = argparse.ArgumentParser(description="Propagate straight tracks through a tracking geometry.")
    p.add_argument("--config", type=str, default=None,
                   help="Path to JSON config with 'navigator' and 'detector' blocks (default: built-in).")
    p.add_argument("-n", "--n-tracks", type=int, default=100,
                   help="Number of tracks to propagate (default: 100).")
    p.add_argument("-s", "--seed", type=int, default=None,
                   help="Random seed for track directions.")
    p.add_argument("--eta-max", type=float, default=2.5,
                   help="Largest |eta| of generated directions (default: 2.5).")
    p.add_argument("--telescope", action="store_true", default=False,
                   help="Use the telescope geometry instead of the cylindrical detector.")
    p.add_argument("--max-steps", type=int, default=1000,
                   help="Step limit per track (default: 1000).")
    p.add_argument("--max-step-size", type=float, default=1000.0,
                   help="Largest single step in mm (default: 1000).")
    p.add_argument("--out", type=str, default=None,
                   help="If set, write all navigation steps as CSV to this path.")
    p.add_argument("--plot", action="store_true", default=False,
                   help="Show geometry and trajectory plots (default: False).")
    p.add_argument("--no-plot", dest="plot", action="store_false",
                   help="Disable plotting.")
    p.add_argument("--plot-out", type=str, default=None,
                   help="Save the trajectory plot to this path (works headless).")
    p.add_argument("--profile", action="store_true", default=False,
                   help="Enable cProfile around the propagation phase.")
    p.add_argument("--profile-out", type=str, default=None,
                   help="If set, write pstats text to this file.")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose logging.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Format is ``'%(asctime)s | %(levelname)-8s | %(message)s'`` with
    ``%H:%M:%S`` timestamps; ``DEBUG`` if ``verbose`` else ``INFO``.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def apply_plotting_guard(enable_plots: bool) -> None:
    r"""
    Enforce a **headless-safe** Matplotlib configuration when plotting is disabled.

    Must be called **before** importing :mod:`tracknav.plotting`. If
    ``enable_plots`` is ``False``, the backend is set to ``'Agg'``, interactive
    mode is turned off and ``plt.show()`` is neutralized.
    """
    if enable_plots:
        return
    os.environ.setdefault("MPLBACKEND", "Agg")
    import matplotlib
    matplotlib.use("Agg", force=True)
    import matplotlib.pyplot as _plt
    _plt.ioff()
    _plt.show = lambda *a, **k: None  # type: ignore[assignment]


def generate_directions(rng: np.random.Generator, n: int, eta_max: float) -> np.ndarray:
    """Unit directions uniform in phi and eta, shape ``(n, 3)``."""
    phi = rng.uniform(-math.pi, math.pi, n)
    eta = rng.uniform(-eta_max, eta_max, n)
    theta = 2.0 * np.arctan(np.exp(-eta))
    st = np.sin(theta)
    return np.column_stack([st * np.cos(phi), st * np.sin(phi), np.cos(theta)])


def run_tracks(navigator: Navigator, origins: np.ndarray, directions: np.ndarray,
               options: PropagatorOptions) -> List[PropagationResult]:
    out: List[PropagationResult] = []
    for pos, d in zip(origins, directions):
        out.append(propagate(navigator, pos, d, options=options))
    return out


def summarize(results: List[PropagationResult]) -> pd.DataFrame:
    """One row per track: reached counts, path, material and final stage."""
    rows = []
    for i, r in enumerate(results):
        rows.append({
            "track": i,
            "n_sensitive": sum(1 for s in r.surfaces() if s.category == "sensitive"),
            "n_surfaces": len(r.surfaces()),
            "n_layers": len(r.surfaces("layer")),
            "n_boundaries": len(r.surfaces("boundary")),
            "path_length": r.path_length,
            "material_in_x0": r.material_in_x0,
            "n_steps": r.n_steps,
            "final_stage": r.final_stage.value,
            "aborted": r.aborted,
        })
    return pd.DataFrame(rows)


def steps_frame(results: List[PropagationResult]) -> pd.DataFrame:
    frames = []
    for i, r in enumerate(results):
        df = r.to_frame()
        df.insert(0, "track", i)
        frames.append(df)
    return pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()


def main(argv: Optional[List[str]] = None) -> None:
    r"""
    End-to-end run: **config -> geometry -> propagate -> report**.

    1. Parse CLI (:func:`build_parser`) and set up logging (:func:`setup_logging`).
    2. Enforce the headless plotting guard (:func:`apply_plotting_guard`).
    3. Load the optional JSON config and build the geometry.
    4. Propagate ``--n-tracks`` straight tracks, optionally under cProfile.
    5. Log a per-run summary, optionally write the steps CSV and plot.
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    apply_plotting_guard(args.plot)

    config = {}
    if args.config is not None:
        cfg_path = Path(args.config)
        logging.info("Reading config from %s", cfg_path)
        config = load_config(cfg_path)
    nav_cfg = navigator_config(config)

    t0 = time.perf_counter()
    geometry: TrackingGeometry
    if args.telescope:
        geometry = build_telescope_detector()
    else:
        geometry = build_cylindrical_detector(detector_config(config))
    logging.info("Geometry %r built in %.2fs", geometry, time.perf_counter() - t0)

    rng = np.random.default_rng(args.seed)
    n = max(0, int(args.n_tracks))
    if args.telescope:
        z0 = min(l.representation.center[2] for v in geometry.leaf_volumes() for l in v.layers) - 5.0
        origins = np.tile([0.0, 0.0, z0], (n, 1))
        directions = np.column_stack([rng.normal(0.0, 0.05, n), rng.normal(0.0, 0.05, n), np.ones(n)])
    else:
        origins = np.zeros((n, 3))
        directions = generate_directions(rng, n, args.eta_max)

    navigator = Navigator(geometry, nav_cfg)
    options = PropagatorOptions(max_steps=args.max_steps, max_step_size=args.max_step_size)
    logging.info("Propagating %d tracks (resolve sensitive=%s material=%s passive=%s)", n,
                 nav_cfg.resolve_sensitive, nav_cfg.resolve_material, nav_cfg.resolve_passive)
    t0 = time.perf_counter()
    with prof(args.profile, out_path=args.profile_out, logger=logging.getLogger("profile")):
        results = run_tracks(navigator, origins, directions, options)
    dt = time.perf_counter() - t0
    logging.info("Propagation done in %.2fs (%.2f ms/track)", dt, 1e3 * dt / max(n, 1))

    summary = summarize(results)
    if not summary.empty:
        logging.info("Sensitive surfaces per track: mean=%.2f min=%d max=%d",
                     summary["n_sensitive"].mean(), summary["n_sensitive"].min(), summary["n_sensitive"].max())
        logging.info("Material per track: mean=%.4f X0", summary["material_in_x0"].mean())
        logging.info("Final stages: %s", summary["final_stage"].value_counts().to_dict())
        n_aborted = int(summary["aborted"].sum())
        if n_aborted:
            logging.warning("%d tracks stopped by the step or path limit", n_aborted)

    if args.out:
        df = steps_frame(results)
        df.to_csv(args.out, index=False)
        logging.info("Wrote %d navigation steps to %s", len(df), args.out)

    if args.plot or args.plot_out:
        from tracknav import plotting
        plotting.plot_trajectories(results, geometry, max_tracks=200, show=args.plot, out_path=args.plot_out)


if __name__ == "__main__":
    main()
