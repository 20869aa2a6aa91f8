from __future__ import annotations

from typing import Any

from pydantic import BaseModel, field_validator

from eventcrawler.services.jsonsearch import DecoderChain, collect_matches, find_first, iter_nodes


class Named(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("blank")
        return value


class Counted(BaseModel):
    count: int


def test_iter_nodes_is_breadth_first() -> None:
    tree = {"level": 0, "child": {"level": 1, "child": {"level": 2}}, "items": [{"level": 1}]}

    levels = [node["level"] for node in iter_nodes(tree)]

    assert levels == [0, 1, 1, 2]


def test_iter_nodes_skips_subtrees() -> None:
    tree = {"keep": {"id": 1}, "drop": {"kind": "skip", "inner": {"id": 2}}}

    ids = [node.get("id") for node in iter_nodes(tree, skip=lambda node: node.get("kind") == "skip")]

    assert 2 not in ids
    assert 1 in ids


def test_iter_nodes_visits_shared_nodes_once() -> None:
    shared = {"id": "shared"}
    tree: dict[str, Any] = {"a": shared, "b": shared, "c": [shared, shared]}

    assert [node.get("id") for node in iter_nodes(tree)].count("shared") == 1


def test_find_first_returns_shallowest_match() -> None:
    tree = {"deep": {"deeper": {"id": "x", "depth": 2}}, "shallow": {"id": "x", "depth": 1}}

    found = find_first(tree, lambda node: node.get("id") == "x")

    assert found == {"id": "x", "depth": 1}
    assert find_first(tree, lambda node: node.get("id") == "missing") is None


def test_decoder_chain_tries_decoders_in_order() -> None:
    chain = DecoderChain([Named, Counted])

    assert isinstance(chain.decode({"name": "a"}), Named)
    assert isinstance(chain.decode({"count": 3}), Counted)
    assert chain.decode({"name": "   "}) is None
    assert chain.decode(["not", "a", "dict"]) is None


def test_collect_matches_does_not_descend_into_matches() -> None:
    tree = {
        "results": [
            {"name": "outer", "nested": {"name": "inner"}},
            {"wrapper": {"name": "second"}},
        ]
    }

    matches = collect_matches([tree], DecoderChain([Named]))

    assert [match.name for match in matches] == ["outer", "second"]


def test_collect_matches_across_roots_with_skip() -> None:
    roots = [{"name": "first"}, {"hidden": True, "child": {"name": "never"}}, [{"name": "third"}]]

    matches = collect_matches(roots, DecoderChain([Named]), skip=lambda node: node.get("hidden", False))

    assert [match.name for match in matches] == ["first", "third"]


def test_nested_lists_do_not_add_depth() -> None:
    tree = {"level": 0, "rows": [[{"level": 1, "child": {"level": 2}}]], "child": {"level": 1}}

    assert [node["level"] for node in iter_nodes(tree)] == [0, 1, 1, 2]


def test_find_first_prefers_shallow_list_entry_over_deeper_mapping() -> None:
    tree = {"a": {"b": {"id": "x", "where": "deep"}}, "items": [{"id": "x", "where": "list"}]}

    assert find_first(tree, lambda node: node.get("id") == "x")["where"] == "list"
