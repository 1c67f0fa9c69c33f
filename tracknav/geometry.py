r"""
The closed tracking geometry: volume tree, identifiers and global queries.

Closing the geometry assigns a :class:`GeometryIdentifier` to every volume,
boundary, layer and surface (leaf volumes in tree order, layers in their
sorting order inside each volume, sensitive surfaces in the order of their
surface array). Volume connectivity is exposed as a :mod:`networkx` graph
whose nodes are the leaf volume names plus an ``"exterior"`` node standing
for everything outside the world.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

import networkx as nx
import numpy as np

from tracknav.errors import GeometryConfigurationError
from tracknav.volumes import BoundarySurface, TrackingVolume

logger = logging.getLogger(__name__)

EXTERIOR = "exterior"


@dataclass(frozen=True, slots=True, order=True)
class GeometryIdentifier:
    """Hierarchical identifier; unused levels are zero."""
    volume: int = 0
    boundary: int = 0
    layer: int = 0
    approach: int = 0
    sensitive: int = 0

    def __str__(self) -> str:
        return (f"vol={self.volume}|bnd={self.boundary}|lay={self.layer}"
                f"|apr={self.approach}|sen={self.sensitive}")


class TrackingGeometry:
    """
    Owner of the world volume.

    Parameters
    ----------
    world : TrackingVolume
        Root of the volume tree.

    Raises
    ------
    GeometryConfigurationError
        If two leaf volumes share a name.
    """

    def __init__(self, world: TrackingVolume):
        self.world = world
        self.log = logging.getLogger(self.__class__.__name__)
        self._volumes: Dict[str, TrackingVolume] = {}
        self._surfaces: Dict[GeometryIdentifier, object] = {}
        self._close()

    # ------------------------------------------------------------------
    def _close(self) -> None:
        for v in self._iter_volumes(self.world):
            if v.name in self._volumes:
                raise GeometryConfigurationError(f"Duplicate volume name '{v.name}'.")
            self._volumes[v.name] = v

        for vid, vol in enumerate(self.world.leaf_volumes(), start=1):
            vol.geometry_id = GeometryIdentifier(volume=vid)
            for bid, b in enumerate(vol.boundaries, start=1):
                b.geometry_id = GeometryIdentifier(volume=vid, boundary=bid)
                b.surface.geometry_id = b.geometry_id
                self._surfaces[b.geometry_id] = b.surface
            for lid, layer in enumerate(vol.layers, start=1):
                layer.geometry_id = GeometryIdentifier(volume=vid, layer=lid)
                layer.representation.geometry_id = layer.geometry_id
                self._surfaces[layer.geometry_id] = layer.representation
                for aid, s in enumerate(layer.approach_surfaces, start=1):
                    s.geometry_id = GeometryIdentifier(volume=vid, layer=lid, approach=aid)
                    self._surfaces[s.geometry_id] = s
                for sid, s in enumerate(layer.sensitive_surfaces, start=1):
                    s.geometry_id = GeometryIdentifier(volume=vid, layer=lid, sensitive=sid)
                    self._surfaces[s.geometry_id] = s
        self.log.info("Closed geometry: %d volumes (%d leaves), %d surfaces",
                      len(self._volumes), len(self.world.leaf_volumes()), len(self._surfaces))

    @staticmethod
    def _iter_volumes(volume: TrackingVolume) -> Iterator[TrackingVolume]:
        yield volume
        for v in volume.confined_volumes:
            yield from TrackingGeometry._iter_volumes(v)

    # ------------------------------------------------------------------
    def volume(self, position) -> Optional[TrackingVolume]:
        """Lowest volume containing ``position``, ``None`` outside the world."""
        p = np.asarray(position, dtype=np.float64)
        if not self.world.inside(p):
            return None
        return self.world.lower_volume(p)

    def find_volume(self, name: str) -> TrackingVolume:
        try:
            return self._volumes[name]
        except KeyError as e:
            raise KeyError(f"No volume named '{name}'. Known: {', '.join(self._volumes)}") from e

    def find_surface(self, geometry_id: GeometryIdentifier):
        return self._surfaces.get(geometry_id)

    @property
    def volumes(self) -> List[TrackingVolume]:
        return list(self._volumes.values())

    def leaf_volumes(self) -> List[TrackingVolume]:
        return self.world.leaf_volumes()

    def outer_boundaries(self) -> List[BoundarySurface]:
        """Leaf boundary surfaces with no volume on one side."""
        return [b for v in self.leaf_volumes() for b in v.boundaries if b.is_outer]

    def surfaces(self) -> List[object]:
        return list(self._surfaces.values())

    # ------------------------------------------------------------------
    def adjacency_graph(self) -> nx.Graph:
        """Undirected graph of leaf volumes connected through shared faces."""
        g = nx.Graph()
        g.add_node(EXTERIOR)
        for v in self.leaf_volumes():
            g.add_node(v.name, volume=v)
        for v in self.leaf_volumes():
            for b in v.boundaries:
                others = [o for o in b.along_volumes + b.opposite_volumes if o is not v]
                if b.is_outer:
                    g.add_edge(v.name, EXTERIOR, face=b.face.value)
                for o in others:
                    g.add_edge(v.name, o.name, face=b.face.value)
        return g

    def check_connectivity(self) -> nx.Graph:
        """
        Verify every leaf volume can be reached from the exterior.

        Raises
        ------
        GeometryConfigurationError
            Naming the unreachable volumes.
        """
        g = self.adjacency_graph()
        reached = nx.node_connected_component(g, EXTERIOR)
        missing = sorted(n for n in g.nodes if n not in reached)
        if missing:
            raise GeometryConfigurationError(f"Volumes unreachable from the exterior: {', '.join(missing)}")
        self.log.debug("Connectivity check passed for %d volumes", g.number_of_nodes() - 1)
        return g

    def __repr__(self) -> str:
        return f"TrackingGeometry(world={self.world.name!r}, volumes={len(self._volumes)})"
