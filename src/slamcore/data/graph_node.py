"""Covisibility graph and spanning tree, stored per keyframe.

Every keyframe owns one ``GraphNode``. The nodes together form:

- a weighted undirected covisibility graph, where the weight of an edge
  is the number of landmarks both keyframes observe;
- a spanning tree over all keyframes, grown incrementally by attaching
  each new keyframe under its strongest covisibility partner;
- a set of loop edges, added when a loop closure is confirmed and never
  removed.

Each node guards its own state with its own lock. There is no global
lock: operations touching several nodes (``update_connections``,
``erase_all_connections``, ``recover_spanning_connections``) are
sequences of single-node critical sections, and a node never calls into
another node while holding its own lock. The only place two node locks
are held together is ``add_loop_edge_pair``, which takes them in
ascending keyframe id order.
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections import defaultdict
from typing import TYPE_CHECKING

from ..exceptions import ContractViolationError

if TYPE_CHECKING:
    from .keyframe import Keyframe

logger = logging.getLogger(__name__)


def _sort_by_weight(weights: dict[Keyframe, int]) -> tuple[list[Keyframe], list[int]]:
    """Sort keyframes by descending weight (ties: higher id first)."""
    pairs = sorted(weights.items(), key=lambda kv: (kv[1], kv[0].id), reverse=True)
    return [kf for kf, _ in pairs], [w for _, w in pairs]


class GraphNode:
    """Covisibility and spanning-tree links of a single keyframe."""

    # Covisibility edges are materialized only above this many shared landmarks
    WEIGHT_THRESHOLD = 15

    def __init__(self, owner: Keyframe, weight_threshold: int | None = None) -> None:
        """Initialize an unconnected node.

        Args:
            owner: Keyframe owning this node
            weight_threshold: Override for ``WEIGHT_THRESHOLD``
        """
        self._owner = owner
        self._weight_threshold = (
            self.WEIGHT_THRESHOLD if weight_threshold is None else weight_threshold
        )
        self._lock = threading.Lock()

        # Covisibility: weight per neighbor, plus the same data sorted
        self._connected_keyfrms_and_weights: dict[Keyframe, int] = {}
        self._ordered_covisibilities: list[Keyframe] = []
        self._ordered_weights: list[int] = []

        # Spanning tree
        self._spanning_parent: Keyframe | None = None
        self._spanning_parent_is_not_set = True
        self._spanning_children: set[Keyframe] = set()

        # Loop edges
        self._loop_edges: set[Keyframe] = set()

    @property
    def owner(self) -> Keyframe:
        return self._owner

    @property
    def weight_threshold(self) -> int:
        return self._weight_threshold

    # Covisibility graph

    def add_connection(self, keyfrm: Keyframe, weight: int) -> None:
        """Insert or update the edge to ``keyfrm``.

        Only this node is modified; the caller is responsible for the
        reciprocal update on ``keyfrm``'s node.
        """
        if keyfrm is self._owner:
            return
        with self._lock:
            if self._connected_keyfrms_and_weights.get(keyfrm) == weight:
                return
            self._connected_keyfrms_and_weights[keyfrm] = weight
            self._update_covisibility_orders_locked()

    def erase_connection(self, keyfrm: Keyframe) -> None:
        """Remove the edge to ``keyfrm`` if present."""
        with self._lock:
            if keyfrm not in self._connected_keyfrms_and_weights:
                return
            del self._connected_keyfrms_and_weights[keyfrm]
            self._update_covisibility_orders_locked()

    def erase_all_connections(self) -> None:
        """Detach this node from all its neighbors, then clear its own edges.

        Neighbors are updated one after another, each under its own lock;
        the whole operation is not atomic across nodes.
        """
        with self._lock:
            neighbors = list(self._connected_keyfrms_and_weights)

        for keyfrm in neighbors:
            keyfrm.graph_node.erase_connection(self._owner)

        with self._lock:
            self._connected_keyfrms_and_weights.clear()
            self._ordered_covisibilities.clear()
            self._ordered_weights.clear()

    def update_connections(self) -> None:
        """Recompute this node's edges from the owner's landmark observations.

        Every non-erased landmark observed by the owner adds one to the
        weight of each other keyframe observing it. Neighbors whose weight
        exceeds the threshold become edges; when none does, the single
        strongest neighbor is kept so the node is never isolated. Each
        materialized neighbor receives the reciprocal edge.

        On the first successful call for a non-root keyframe, the
        strongest neighbor also becomes the spanning parent.
        """
        keyfrm_weights: dict[Keyframe, int] = defaultdict(int)
        for lm in self._owner.get_landmarks():
            if lm is None or lm.will_be_erased():
                continue
            for keyfrm in lm.get_observations():
                if keyfrm is self._owner:
                    continue
                keyfrm_weights[keyfrm] += 1

        if not keyfrm_weights:
            return

        covisibilities = {
            keyfrm: weight
            for keyfrm, weight in keyfrm_weights.items()
            if weight > self._weight_threshold
        }
        if not covisibilities:
            nearest = max(keyfrm_weights, key=lambda kf: (keyfrm_weights[kf], kf.id))
            covisibilities = {nearest: keyfrm_weights[nearest]}

        for keyfrm, weight in covisibilities.items():
            keyfrm.graph_node.add_connection(self._owner, weight)

        ordered_covisibilities, ordered_weights = _sort_by_weight(covisibilities)

        new_parent = None
        with self._lock:
            self._connected_keyfrms_and_weights = covisibilities
            self._ordered_covisibilities = ordered_covisibilities
            self._ordered_weights = ordered_weights

            if self._spanning_parent_is_not_set and not self._owner.is_root:
                new_parent = ordered_covisibilities[0]
                self._spanning_parent = new_parent
                self._spanning_parent_is_not_set = False

        if new_parent is not None:
            new_parent.graph_node.add_spanning_child(self._owner)
            logger.debug(
                "Keyframe %d attached under keyframe %d (weight %d)",
                self._owner.id,
                new_parent.id,
                ordered_weights[0],
            )

    def update_covisibility_orders(self) -> None:
        """Re-derive the ordered neighbor and weight lists."""
        with self._lock:
            self._update_covisibility_orders_locked()

    def _update_covisibility_orders_locked(self) -> None:
        self._ordered_covisibilities, self._ordered_weights = _sort_by_weight(
            self._connected_keyfrms_and_weights
        )

    def get_connected_keyframes(self) -> set[Keyframe]:
        with self._lock:
            return set(self._connected_keyfrms_and_weights)

    def get_covisibilities(self) -> list[Keyframe]:
        """Return all neighbors, strongest first."""
        with self._lock:
            return list(self._ordered_covisibilities)

    def get_covisibility_weights(self) -> list[int]:
        """Return the weights parallel to ``get_covisibilities``."""
        with self._lock:
            return list(self._ordered_weights)

    def get_top_n_covisibilities(self, num_covisibilities: int) -> list[Keyframe]:
        """Return the ``num_covisibilities`` strongest neighbors (or fewer)."""
        with self._lock:
            return self._ordered_covisibilities[: max(num_covisibilities, 0)]

    def get_covisibilities_over_weight(self, weight: int) -> list[Keyframe]:
        """Return the neighbors whose weight is strictly greater than ``weight``."""
        with self._lock:
            # weights are descending, so search the negated sequence
            num = bisect.bisect_left(
                self._ordered_weights, -weight, key=lambda w: -w
            )
            return self._ordered_covisibilities[:num]

    def get_weight(self, keyfrm: Keyframe) -> int:
        """Return the edge weight to ``keyfrm`` (0 if not connected)."""
        with self._lock:
            return self._connected_keyfrms_and_weights.get(keyfrm, 0)

    @property
    def num_connections(self) -> int:
        with self._lock:
            return len(self._connected_keyfrms_and_weights)

    # Spanning tree

    def set_spanning_parent(self, keyfrm: Keyframe) -> None:
        """Assign the spanning parent of a node that has none.

        Raises:
            ContractViolationError: If a parent is already assigned
        """
        with self._lock:
            if self._spanning_parent is not None:
                raise ContractViolationError(
                    f"Keyframe {self._owner.id} already has spanning parent "
                    f"{self._spanning_parent.id}"
                )
            self._spanning_parent = keyfrm
            self._spanning_parent_is_not_set = False

    def get_spanning_parent(self) -> Keyframe | None:
        with self._lock:
            return self._spanning_parent

    def change_spanning_parent(self, keyfrm: Keyframe) -> None:
        """Reassign the spanning parent and register as its child."""
        with self._lock:
            self._spanning_parent = keyfrm
            self._spanning_parent_is_not_set = False
        keyfrm.graph_node.add_spanning_child(self._owner)

    def add_spanning_child(self, keyfrm: Keyframe) -> None:
        with self._lock:
            self._spanning_children.add(keyfrm)

    def erase_spanning_child(self, keyfrm: Keyframe) -> None:
        with self._lock:
            self._spanning_children.discard(keyfrm)

    def get_spanning_children(self) -> set[Keyframe]:
        with self._lock:
            return set(self._spanning_children)

    def has_spanning_child(self, keyfrm: Keyframe) -> bool:
        with self._lock:
            return keyfrm in self._spanning_children

    def recover_spanning_connections(self) -> None:
        """Hand this node's spanning children over before it is erased.

        Children are reattached greedily: the candidate parents start as
        this node's own parent; in each round, the (child, candidate) pair
        with the largest covisibility weight among live children is
        reparented, and the child becomes a candidate itself. Children
        that cannot be attached this way fall back to this node's parent.
        Finally this node leaves its parent's child set.

        Must run after ``erase_all_connections`` and while nothing else
        updates this node's edges.

        Raises:
            ContractViolationError: If this node has no spanning parent
        """
        with self._lock:
            parent = self._spanning_parent
            pending_children = set(self._spanning_children)

        if parent is None:
            raise ContractViolationError(
                f"Keyframe {self._owner.id} has no spanning parent to take over "
                f"its children"
            )

        new_parent_candidates = {parent}

        while pending_children:
            max_weight = 0
            max_weight_parent = None
            max_weight_child = None

            for child in sorted(pending_children, key=lambda kf: kf.id):
                if child.will_be_erased():
                    continue
                child_node = child.graph_node
                for candidate in child_node.get_covisibilities():
                    if candidate not in new_parent_candidates:
                        continue
                    weight = child_node.get_weight(candidate)
                    if max_weight < weight:
                        max_weight = weight
                        max_weight_parent = candidate
                        max_weight_child = child

            if max_weight_child is None:
                break

            max_weight_child.graph_node.change_spanning_parent(max_weight_parent)
            pending_children.discard(max_weight_child)
            new_parent_candidates.add(max_weight_child)
            logger.debug(
                "Keyframe %d reparented onto keyframe %d (weight %d)",
                max_weight_child.id,
                max_weight_parent.id,
                max_weight,
            )

        for child in pending_children:
            child.graph_node.change_spanning_parent(parent)
            logger.debug(
                "Keyframe %d reparented onto fallback keyframe %d", child.id, parent.id
            )

        with self._lock:
            self._spanning_children.clear()

        parent.graph_node.erase_spanning_child(self._owner)

    # Loop edges

    def add_loop_edge(self, keyfrm: Keyframe) -> None:
        """Record a loop edge to ``keyfrm`` on this node only.

        The owner becomes permanently non-erasable. Use
        ``add_loop_edge_pair`` to register both directions at once.
        """
        with self._lock:
            self._loop_edges.add(keyfrm)
        self._owner.set_not_to_be_erased()

    def get_loop_edges(self) -> set[Keyframe]:
        with self._lock:
            return set(self._loop_edges)

    def has_loop_edge(self) -> bool:
        with self._lock:
            return bool(self._loop_edges)

    def __repr__(self) -> str:
        return (
            f"GraphNode(owner={self._owner.id}, "
            f"num_connections={self.num_connections})"
        )


def add_loop_edge_pair(keyfrm_1: Keyframe, keyfrm_2: Keyframe) -> None:
    """Register a loop edge on both keyframes atomically.

    Both node locks are held together, acquired in ascending keyframe id
    order. Both keyframes become permanently non-erasable.

    Raises:
        ValueError: If both arguments are the same keyframe
    """
    if keyfrm_1 is keyfrm_2:
        raise ValueError(f"Loop edge from keyframe {keyfrm_1.id} to itself")

    first, second = sorted((keyfrm_1, keyfrm_2), key=lambda kf: kf.id)
    with first.graph_node._lock, second.graph_node._lock:
        keyfrm_1.graph_node._loop_edges.add(keyfrm_2)
        keyfrm_2.graph_node._loop_edges.add(keyfrm_1)

    keyfrm_1.set_not_to_be_erased()
    keyfrm_2.set_not_to_be_erased()
    logger.debug("Loop edge between keyframes %d and %d", keyfrm_1.id, keyfrm_2.id)
