"""
View graph construction and management

Undirected graph with one node per view and one edge per verified image
pair. Every edge carries the TwoViewInfo describing the transformation from
the lower view id to the higher view id.
"""

import logging
from collections import deque
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .twoview_info import TwoViewInfo, swap_cameras
from .types import ViewId

logger = logging.getLogger(__name__)

ViewIdPair = Tuple[ViewId, ViewId]


def make_view_id_pair(view_id_1: ViewId, view_id_2: ViewId) -> ViewIdPair:
    """Canonical (low, high) key of an edge"""
    if view_id_1 < view_id_2:
        return (view_id_1, view_id_2)
    return (view_id_2, view_id_1)


class ViewGraph:
    """
    View graph data structure

    Nodes are views that participate in at least one edge.
    """

    def __init__(self):
        self.edges: Dict[ViewIdPair, TwoViewInfo] = {}
        self.neighbors: Dict[ViewId, Set[ViewId]] = {}

    def add_edge(self, view_id_1: ViewId, view_id_2: ViewId, info: TwoViewInfo) -> None:
        """
        Add (or replace) the edge between two views

        If view_id_1 > view_id_2 the info is assumed to describe the
        transformation from view_id_1 to view_id_2 and is inverted before it
        is stored, so stored edges always go from the lower to the higher id.
        """
        if view_id_1 == view_id_2:
            raise ValueError(f"Cannot add an edge from view {view_id_1} to itself")

        if view_id_1 > view_id_2:
            info = swap_cameras(info)
        pair = make_view_id_pair(view_id_1, view_id_2)

        if pair in self.edges:
            logger.debug(f"Replacing existing edge {pair}")
        self.edges[pair] = info
        self.neighbors.setdefault(pair[0], set()).add(pair[1])
        self.neighbors.setdefault(pair[1], set()).add(pair[0])

    def remove_edge(self, view_id_1: ViewId, view_id_2: ViewId) -> bool:
        pair = make_view_id_pair(view_id_1, view_id_2)
        if pair not in self.edges:
            return False
        del self.edges[pair]

        for a, b in (pair, pair[::-1]):
            neighbors = self.neighbors.get(a)
            if neighbors is not None:
                neighbors.discard(b)
                if not neighbors:
                    del self.neighbors[a]
        return True

    def remove_view(self, view_id: ViewId) -> bool:
        """Remove a view and every edge touching it"""
        neighbors = self.neighbors.get(view_id)
        if neighbors is None:
            return False
        for neighbor_id in list(neighbors):
            self.remove_edge(view_id, neighbor_id)
        # remove_edge drops the node once its last edge is gone
        self.neighbors.pop(view_id, None)
        return True

    def has_view(self, view_id: ViewId) -> bool:
        return view_id in self.neighbors

    def has_edge(self, view_id_1: ViewId, view_id_2: ViewId) -> bool:
        return make_view_id_pair(view_id_1, view_id_2) in self.edges

    def get_edge(self, view_id_1: ViewId, view_id_2: ViewId) -> Optional[TwoViewInfo]:
        """
        Edge info oriented from view_id_1 to view_id_2

        Returns:
            None if the edge does not exist
        """
        info = self.edges.get(make_view_id_pair(view_id_1, view_id_2))
        if info is None or view_id_1 < view_id_2:
            return info
        return swap_cameras(info)

    def get_all_edges(self) -> Dict[ViewIdPair, TwoViewInfo]:
        return dict(self.edges)

    def get_neighbor_ids_for_view(self, view_id: ViewId) -> Set[ViewId]:
        return set(self.neighbors.get(view_id, set()))

    def view_ids(self) -> Set[ViewId]:
        return set(self.neighbors.keys())

    def num_views(self) -> int:
        return len(self.neighbors)

    def num_edges(self) -> int:
        return len(self.edges)

    def connected_components(self) -> List[Set[ViewId]]:
        """Connected components ordered by decreasing size"""
        visited: Set[ViewId] = set()
        components = []
        for start in sorted(self.neighbors):
            if start in visited:
                continue
            component = {start}
            frontier = deque([start])
            visited.add(start)
            while frontier:
                node = frontier.popleft()
                for neighbor in self.neighbors[node]:
                    if neighbor not in visited:
                        visited.add(neighbor)
                        component.add(neighbor)
                        frontier.append(neighbor)
            components.append(component)
        components.sort(key=lambda c: (-len(c), min(c)))
        return components

    def get_largest_connected_component_ids(self) -> Set[ViewId]:
        components = self.connected_components()
        return components[0] if components else set()

    def extract_subgraph(self, view_ids: Iterable[ViewId]) -> "ViewGraph":
        """Graph induced by the given views"""
        keep = set(view_ids)
        subgraph = ViewGraph()
        for (a, b), info in self.edges.items():
            if a in keep and b in keep:
                subgraph.add_edge(a, b, info)
        return subgraph

    def __repr__(self) -> str:
        return f"ViewGraph(views={self.num_views()}, edges={self.num_edges()})"
