"""Breadth-first search over arbitrary JSON trees with typed decoders."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Generic, Iterable, Iterator, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

__all__ = ["DecoderChain", "collect_matches", "find_first", "iter_nodes"]

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
NodePredicate = Callable[[dict], bool]

_END = object()


def _children(values: Iterable[Any], seen: set[int]) -> Iterator[dict]:
    """Yield the mappings among ``values``, flattening nested lists in place."""

    stack = [iter(values)]
    while stack:
        value = next(stack[-1], _END)
        if value is _END:
            stack.pop()
        elif isinstance(value, list):
            if id(value) not in seen:
                seen.add(id(value))
                stack.append(iter(value))
        elif isinstance(value, dict) and id(value) not in seen:
            seen.add(id(value))
            yield value


def iter_nodes(root: Any, skip: NodePredicate | None = None) -> Iterator[dict]:
    """Yield every mapping in ``root`` breadth-first.

    Lists are transparent: their mappings sit at the same depth as a mapping
    stored directly on the parent. Nodes for which ``skip`` returns true are
    neither yielded nor descended into. Each container is visited once even
    when it is referenced several times.
    """

    seen: set[int] = set()
    queue: deque = deque(_children([root], seen))
    while queue:
        node = queue.popleft()
        if skip is not None and skip(node):
            continue
        yield node
        queue.extend(_children(node.values(), seen))


def find_first(root: Any, predicate: NodePredicate, skip: NodePredicate | None = None) -> Optional[dict]:
    """Return the first mapping (breadth-first) that satisfies ``predicate``."""

    for node in iter_nodes(root, skip):
        if predicate(node):
            return node
    return None


class DecoderChain(Generic[ModelT]):
    """Try a list of pydantic models in order; the first that validates wins."""

    def __init__(self, decoders: Sequence[Type[ModelT]]) -> None:
        if not decoders:
            raise ValueError("DecoderChain needs at least one decoder")
        self._decoders = tuple(decoders)

    def decode(self, node: Any) -> ModelT | None:
        if not isinstance(node, dict):
            return None
        for decoder in self._decoders:
            try:
                return decoder.model_validate(node)
            except ValidationError:
                continue
        return None


def collect_matches(
    roots: Iterable[Any],
    chain: DecoderChain[ModelT],
    skip: NodePredicate | None = None,
) -> List[ModelT]:
    """Decode every matching node across ``roots``.

    Matched nodes are not descended into, so an event wrapper and the event it
    wraps yield a single match.
    """

    matches: List[ModelT] = []
    for root in roots:
        seen: set[int] = set()
        queue: deque = deque(_children([root], seen))
        while queue:
            node = queue.popleft()
            if skip is not None and skip(node):
                continue

            decoded = chain.decode(node)
            if decoded is not None:
                matches.append(decoded)
                continue
            queue.extend(_children(node.values(), seen))

    logger.debug("Decoded %d matching nodes", len(matches))
    return matches
