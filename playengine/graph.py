"""Lookup structure over a play's nodes and edges."""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Dict, List, Optional

from .constants import PARALLEL_SPLIT_STEP_TYPE
from .contracts import Play, WorkflowEdge, WorkflowNode
from .errors import MalformedPlay


class PlayGraph:
    """Adjacency view of a :class:`Play`, validated once on construction.

    Raises:
        MalformedPlay: If node ids repeat, an edge references an unknown node,
            the graph has a cycle, there is not exactly one entry node, there
            is no terminal node, or a non-fork node has more than one outgoing
            edge without a condition.
    """

    def __init__(self, play: Play) -> None:
        self.play = play
        self._nodes: Dict[str, WorkflowNode] = {}
        self._outgoing: Dict[str, List[WorkflowEdge]] = defaultdict(list)
        self._incoming: Dict[str, List[WorkflowEdge]] = defaultdict(list)
        self._order: Optional[List[str]] = None

        for node in play.nodes:
            if node.id in self._nodes:
                raise MalformedPlay(f"duplicate node id '{node.id}'", play.id)
            if node.play_id != play.id:
                raise MalformedPlay(
                    f"node '{node.id}' belongs to play '{node.play_id}'", play.id
                )
            self._nodes[node.id] = node

        for edge in play.edges:
            for end in (edge.from_node_id, edge.to_node_id):
                if end not in self._nodes:
                    raise MalformedPlay(
                        f"edge '{edge.id}' references unknown node '{end}'", play.id
                    )
            if edge.from_node_id == edge.to_node_id:
                raise MalformedPlay(f"edge '{edge.id}' is a self-loop", play.id)
            self._outgoing[edge.from_node_id].append(edge)
            self._incoming[edge.to_node_id].append(edge)

        self._validate()

    # ------------------------------------------------------------------
    def _validate(self) -> None:
        play_id = self.play.id
        if not self._nodes:
            raise MalformedPlay("play has no nodes", play_id)

        entries = [n for n in self._nodes if not self._incoming.get(n)]
        if len(entries) != 1:
            raise MalformedPlay(
                f"expected exactly one entry node, found {len(entries)}: {sorted(entries)}",
                play_id,
            )
        self._entry_id = entries[0]

        if not self.terminal_nodes():
            raise MalformedPlay("play has no terminal node", play_id)

        for node_id, edges in self._outgoing.items():
            if len(edges) < 2:
                continue
            if self._nodes[node_id].step_type == PARALLEL_SPLIT_STEP_TYPE:
                continue
            unconditional = [e.id for e in edges if not e.is_conditional]
            if len(unconditional) > 1:
                raise MalformedPlay(
                    f"node '{node_id}' has ambiguous unconditional edges {unconditional}",
                    play_id,
                )

        # Kahn's algorithm doubles as the cycle check.
        self.topological_order()

    # ------------------------------------------------------------------
    def node(self, node_id: str) -> WorkflowNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise MalformedPlay(f"unknown node '{node_id}'", self.play.id) from None

    def nodes(self) -> List[WorkflowNode]:
        return [self._nodes[n] for n in self.topological_order()]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def outgoing_edges(self, node_id: str) -> List[WorkflowEdge]:
        return list(self._outgoing.get(node_id, ()))

    def incoming_edges(self, node_id: str) -> List[WorkflowEdge]:
        return list(self._incoming.get(node_id, ()))

    def entry_node(self) -> WorkflowNode:
        return self._nodes[self._entry_id]

    def is_terminal(self, node_id: str) -> bool:
        return not self._outgoing.get(node_id)

    def terminal_nodes(self) -> List[WorkflowNode]:
        return [n for n in self._nodes.values() if self.is_terminal(n.id)]

    def topological_order(self) -> List[str]:
        """Node ids in dependency order; ties keep definition order."""
        if self._order is not None:
            return self._order

        in_degree = {n: len(self._incoming.get(n, ())) for n in self._nodes}
        queue = deque(n for n in self._nodes if in_degree[n] == 0)
        order: List[str] = []
        while queue:
            current = queue.popleft()
            order.append(current)
            for edge in self._outgoing.get(current, ()):
                in_degree[edge.to_node_id] -= 1
                if in_degree[edge.to_node_id] == 0:
                    queue.append(edge.to_node_id)

        if len(order) != len(self._nodes):
            stuck = sorted(set(self._nodes) - set(order))
            raise MalformedPlay(f"play contains a cycle through {stuck}", self.play.id)
        self._order = order
        return order
