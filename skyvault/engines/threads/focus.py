"""
Focus re-rooting.

Turns a wired thread (any shape, any number of branches) into a tree centered
on one node: a single upward path to the top-most ancestor and the full fan
of replies below. Three clone rules apply:

- root: clone the focus, then go up through its parent and down through
  each reply
- up: clone an ancestor without its replies and make it the parent of the
  previously cloned node
- down: clone a descendant without a parent and append it to the replies of
  the clone above it

A visited set shared by both directions guarantees no node appears twice and
that traversal terminates even on corrupted links.
"""

from collections import deque
from typing import Deque, Dict, Iterable, Optional, Set, Tuple

from skyvault.engines.threads.uris import created_at
from skyvault.schemas.thread import ThreadViewNode


def _clone(node: ThreadViewNode) -> ThreadViewNode:
    return ThreadViewNode(post=node.post, record=node.record)


def _go_up(node: Optional[ThreadViewNode], child_clone: ThreadViewNode, visited: Set[str]) -> None:
    while node is not None and node.uri not in visited:
        visited.add(node.uri)
        parent_clone = _clone(node)
        child_clone.parent = parent_clone
        child_clone = parent_clone
        node = node.parent


def _go_down(nodes: Iterable[ThreadViewNode], parent_clone: ThreadViewNode, visited: Set[str]) -> None:
    # Breadth-first keeps each clone's replies in source order
    queue: Deque[Tuple[ThreadViewNode, ThreadViewNode]] = deque((n, parent_clone) for n in nodes)
    while queue:
        node, above = queue.popleft()
        if node.uri in visited:
            continue
        visited.add(node.uri)
        child_clone = _clone(node)
        above.replies.append(child_clone)
        queue.extend((reply, child_clone) for reply in node.replies)


def reroot(focus: ThreadViewNode) -> ThreadViewNode:
    """Focus-centered copy of a wired thread. The source nodes are not modified."""
    visited: Set[str] = {focus.uri}
    root_clone = _clone(focus)
    _go_up(focus.parent, root_clone, visited)
    _go_down(focus.replies, root_clone, visited)
    return root_clone


def reply_order(node: ThreadViewNode) -> Tuple[str, str]:
    return (created_at(node.record), node.uri)


def sort_replies(arena: Dict[str, ThreadViewNode]) -> None:
    """Order every node's replies by the post's createdAt, then uri."""
    for node in arena.values():
        node.replies.sort(key=reply_order)
