"""Play definition sources."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

import yaml
from pydantic import ValidationError

from .contracts import Play, WorkflowEdge, WorkflowNode
from .errors import MalformedPlay, PlayNotFound
from .graph import PlayGraph

logger = logging.getLogger(__name__)

PLAY_FILE_SUFFIXES = (".yaml", ".yml", ".json")


def play_from_definition(data: Mapping[str, Any]) -> Play:
    """Build and validate a :class:`Play` from a plain mapping.

    Nodes and edges may omit ``play_id``; edges may use ``from``/``to`` and
    omit ``id``.

    Raises:
        MalformedPlay: If the mapping does not describe a valid play.
    """
    if not isinstance(data, Mapping):
        raise MalformedPlay("play definition must be a mapping")
    play_id = data.get("id")
    if not play_id:
        raise MalformedPlay("play definition has no 'id'")

    nodes = []
    for raw in data.get("nodes") or []:
        node = dict(raw)
        node.setdefault("play_id", play_id)
        nodes.append(node)

    edges = []
    for raw in data.get("edges") or []:
        edge = dict(raw)
        if "from" in edge:
            edge["from_node_id"] = edge.pop("from")
        if "to" in edge:
            edge["to_node_id"] = edge.pop("to")
        edge.setdefault("play_id", play_id)
        edge.setdefault("id", f"{edge.get('from_node_id')}->{edge.get('to_node_id')}")
        edges.append(edge)

    try:
        play = Play.model_validate(
            {
                "id": play_id,
                "name": data.get("name") or play_id,
                "description": data.get("description"),
                "config": data.get("config") or {},
                "nodes": nodes,
                "edges": edges,
            }
        )
    except ValidationError as exc:
        raise MalformedPlay(f"invalid definition: {exc}", play_id) from exc

    PlayGraph(play)
    return play


def load_play_file(path: str | Path) -> Play:
    """Load a play from a YAML or JSON file."""
    path = Path(path)
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise MalformedPlay(f"cannot parse {path}: {exc}") from exc
    return play_from_definition(data)


class PlaySource(Protocol):
    """Source of play graph definitions."""

    async def load_workflow_nodes(self, play_id: str) -> list[WorkflowNode]:
        """Return the nodes of ``play_id``."""

    async def load_workflow_edges(self, play_id: str) -> list[WorkflowEdge]:
        """Return the edges of ``play_id``."""

    async def load_play(self, play_id: str) -> Play:
        """Return the full play or raise :class:`PlayNotFound`."""


class InMemoryPlaySource(PlaySource):
    """Plays held in a dictionary keyed by id."""

    def __init__(self, plays: Iterable[Play] = ()) -> None:
        self._plays: Dict[str, Play] = {}
        for play in plays:
            self.add(play)

    def add(self, play: Play) -> None:
        self._plays[play.id] = play

    async def load_play(self, play_id: str) -> Play:
        try:
            return self._plays[play_id]
        except KeyError:
            raise PlayNotFound(play_id) from None

    async def load_workflow_nodes(self, play_id: str) -> list[WorkflowNode]:
        return list((await self.load_play(play_id)).nodes)

    async def load_workflow_edges(self, play_id: str) -> list[WorkflowEdge]:
        return list((await self.load_play(play_id)).edges)


class DirectoryPlaySource(InMemoryPlaySource):
    """Plays read from the YAML/JSON files of a directory.

    Files are parsed lazily on first lookup; a malformed file is logged and
    skipped so the remaining plays stay available.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._loaded = False

    def _files(self) -> List[Path]:
        if not self.path.is_dir():
            raise FileNotFoundError(f"Play directory not found: {self.path}")
        return sorted(p for p in self.path.iterdir() if p.suffix in PLAY_FILE_SUFFIXES)

    def _load_all(self) -> None:
        for file in self._files():
            try:
                self.add(load_play_file(file))
            except MalformedPlay as exc:
                logger.error(f"Skipping play file {file}: {exc}")
        self._loaded = True

    async def load_play(self, play_id: str) -> Play:
        if not self._loaded:
            self._load_all()
        return await super().load_play(play_id)

    def list_plays(self) -> List[Play]:
        if not self._loaded:
            self._load_all()
        return list(self._plays.values())


def get_play_source(path: Optional[str | Path] = None) -> PlaySource:
    """Directory source for ``path``, or an empty in-memory source."""
    if path:
        return DirectoryPlaySource(path)
    return InMemoryPlaySource()
