import pytest

from playengine.contracts import Play, WorkflowEdge, WorkflowNode
from playengine.errors import MalformedPlay
from playengine.graph import PlayGraph


def _play(nodes, edges, play_id="p1") -> Play:
    return Play(
        id=play_id,
        name="Test play",
        nodes=[WorkflowNode(id=n, play_id=play_id, step_type=t) for n, t in nodes],
        edges=[
            WorkflowEdge(
                id=f"{a}->{b}",
                play_id=play_id,
                from_node_id=a,
                to_node_id=b,
                condition=cond,
            )
            for a, b, cond in edges
        ],
    )


def test_graph_exposes_entry_terminals_and_order():
    play = _play(
        [("a", "start"), ("b", "manual_task"), ("c", "manual_task"), ("d", "end")],
        [
            ("a", "b", {"metric": "annual_value", "op": ">", "value": 100000}),
            ("a", "c", None),
            ("b", "d", None),
            ("c", "d", None),
        ],
    )
    graph = PlayGraph(play)

    assert graph.entry_node().id == "a"
    assert [n.id for n in graph.terminal_nodes()] == ["d"]
    assert graph.topological_order() == ["a", "b", "c", "d"]
    assert [e.id for e in graph.outgoing_edges("a")] == ["a->b", "a->c"]
    assert [e.id for e in graph.incoming_edges("d")] == ["b->d", "c->d"]
    assert graph.is_terminal("d")
    assert not graph.is_terminal("a")


def test_graph_rejects_cycle():
    play = _play(
        [("a", "start"), ("b", "manual_task"), ("c", "manual_task"), ("d", "end")],
        [("a", "b", None), ("b", "c", None), ("c", "b", {"metric": "x", "value": 1}), ("c", "d", None)],
    )
    with pytest.raises(MalformedPlay, match="cycle"):
        PlayGraph(play)


def test_graph_rejects_multiple_entries():
    play = _play([("a", "start"), ("b", "start"), ("c", "end")], [("a", "c", None), ("b", "c", None)])
    with pytest.raises(MalformedPlay, match="exactly one entry"):
        PlayGraph(play)


def test_graph_rejects_dangling_edge():
    play = _play([("a", "start"), ("b", "end")], [("a", "b", None), ("a", "zzz", {"metric": "x", "value": 1})])
    with pytest.raises(MalformedPlay, match="unknown node 'zzz'"):
        PlayGraph(play)


def test_graph_rejects_duplicate_node_ids():
    play = _play([("a", "start"), ("a", "end")], [])
    with pytest.raises(MalformedPlay, match="duplicate node id"):
        PlayGraph(play)


def test_graph_rejects_empty_play():
    with pytest.raises(MalformedPlay, match="no nodes"):
        PlayGraph(_play([], []))


def test_graph_rejects_ambiguous_unconditional_edges():
    play = _play(
        [("a", "start"), ("b", "end"), ("c", "end")],
        [("a", "b", None), ("a", "c", None)],
    )
    with pytest.raises(MalformedPlay, match="ambiguous"):
        PlayGraph(play)


def test_fork_node_may_fan_out_unconditionally():
    play = _play(
        [("a", "fork"), ("b", "end"), ("c", "end")],
        [("a", "b", None), ("a", "c", None)],
    )
    graph = PlayGraph(play)
    assert {n.id for n in graph.terminal_nodes()} == {"b", "c"}


def test_malformed_play_message_names_play():
    play = _play([("a", "start"), ("b", "start"), ("c", "end")], [("a", "c", None), ("b", "c", None)], play_id="deal")
    with pytest.raises(MalformedPlay) as exc_info:
        PlayGraph(play)
    assert exc_info.value.play_id == "deal"
    assert str(exc_info.value).startswith("Play deal: ")
