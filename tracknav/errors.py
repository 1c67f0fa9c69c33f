"""Exception types raised by geometry construction and navigation."""

from __future__ import annotations


class GeometryConfigurationError(ValueError):
    """A geometry object cannot be built from the given configuration.

    Raised at build time (binning that hides sensitive surfaces, layers that
    do not fit into their volume, volumes that cannot be glued, mismatched
    configuration lists). A geometry that raised is never handed out.
    """


class NavigationContractError(RuntimeError):
    """The navigator was driven in a way that violates its call contract.

    Examples are calling :meth:`tracknav.navigation.Navigator.target` before
    any :meth:`~tracknav.navigation.Navigator.status` call, or losing the
    current volume while still inside the geometry.
    """
