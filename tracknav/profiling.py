from __future__ import annotations

import cProfile
import gc
import io
import logging
import pstats
import time
from contextlib import contextmanager
from typing import Optional, Sequence, Union

_SORT_KEYS = {
    "tottime": pstats.SortKey.TIME,
    "cumtime": pstats.SortKey.CUMULATIVE,
    "calls": pstats.SortKey.CALLS,
    "ncalls": pstats.SortKey.CALLS,
    "pcalls": pstats.SortKey.PCALLS,
    "name": pstats.SortKey.NAME,
    "stdname": pstats.SortKey.STDNAME,
    "file": pstats.SortKey.FILENAME,
    "line": pstats.SortKey.LINE,
    "nfl": pstats.SortKey.NFL,
}


def _resolve_sort_key(sort: Union[str, pstats.SortKey]) -> pstats.SortKey:
    r"""
    Map a sort alias (``"tottime"``, ``"cumtime"``, ``"calls"``, ...) to a
    :class:`pstats.SortKey`. Unknown strings fall back to ``SortKey.TIME``.

    >>> _resolve_sort_key("cumtime") is pstats.SortKey.CUMULATIVE
    True
    """
    if isinstance(sort, pstats.SortKey):
        return sort
    return _SORT_KEYS.get(str(sort).lower(), pstats.SortKey.TIME)


@contextmanager
def prof(
    enable: bool = False,
    *,
    sort: Union[str, pstats.SortKey] = "tottime",
    limit: Optional[int] = 25,
    out_path: Optional[str] = None,
    dump_path: Optional[str] = None,
    strip_dirs: bool = True,
    disable_gc: bool = False,
    include: Optional[Sequence[Union[str, int]]] = None,
    logger: Optional[logging.Logger] = None,
):
    r"""
    Configurable CPU profiler context manager around :class:`cProfile.Profile`.

    The elapsed wall-clock time :math:`\Delta t = t_1 - t_0` of the block is
    taken from :func:`time.perf_counter` and written in the report header.

    Parameters
    ----------
    enable : bool, default: False
        If ``False`` the context is a no-op and yields ``None``.
    sort : {str, pstats.SortKey}, default: ``"tottime"``
        Sorting criterion, see :func:`_resolve_sort_key`.
    limit : int or None, default: 25
        Row limit passed to ``Stats.print_stats``; ``None`` prints all rows.
    out_path : str or None, optional
        Write the text report to this UTF-8 file instead of logging/printing it.
    dump_path : str or None, optional
        Write a binary ``.pstats`` file (for *snakeviz*, *gprof2dot*).
    strip_dirs : bool, default: True
        Shorten file paths in the text report.
    disable_gc : bool, default: False
        Suspend garbage collection inside the block.
    include : sequence of {str, int} or None, optional
        Filters forwarded to ``Stats.print_stats(*include)``.
    logger : logging.Logger or None, optional
        If given (and ``out_path`` is not), emit the report with ``logger.info``.

    Yields
    ------
    cProfile.Profile or None

    Examples
    --------
    >>> with prof(True, sort="cumtime", limit=10):
    ...     run_tracks()
    """
    if not enable:
        yield None
        return

    pr = cProfile.Profile()
    gc_was_enabled = False
    if disable_gc:
        gc_was_enabled = gc.isenabled()
        if gc_was_enabled:
            gc.disable()

    t0 = time.perf_counter()
    pr.enable()
    try:
        yield pr
    finally:
        pr.disable()
        t1 = time.perf_counter()
        if disable_gc and gc_was_enabled:
            gc.enable()

        s = io.StringIO()
        ps = pstats.Stats(pr, stream=s)
        if strip_dirs:
            ps.strip_dirs()
        ps.sort_stats(_resolve_sort_key(sort))
        if include:
            ps.print_stats(*include)
        else:
            ps.print_stats(limit if limit is not None else 1_000_000)
        text = f"[prof] elapsed={t1 - t0:.6f}s sort={sort} limit={limit} gc_off={disable_gc}\n" + s.getvalue()

        if dump_path:
            ps.dump_stats(dump_path)
        if out_path:
            with open(out_path, "w", encoding="utf-8") as f:
                f.write(text)
        elif logger is not None:
            logger.info(text)
        else:
            print(text, end="")
