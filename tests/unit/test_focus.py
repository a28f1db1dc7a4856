"""Unit tests for focus re-rooting on hand-wired threads."""

from skyvault.engines.threads.focus import reroot, sort_replies
from skyvault.schemas.thread import AuthorView, PostView, ThreadViewNode


def _node(name: str, created: str = "") -> ThreadViewNode:
    return ThreadViewNode(
        post=PostView(uri=f"at://did:plc:t/app.bsky.feed.post/{name}", author=AuthorView(did="did:plc:t")),
        record={"createdAt": created},
    )


def _link(child: ThreadViewNode, parent: ThreadViewNode) -> None:
    child.parent = parent
    parent.replies.append(child)


def _name(node: ThreadViewNode) -> str:
    return node.uri.rsplit("/", 1)[-1]


def _shape(node: ThreadViewNode) -> list:
    return [[_name(r), _shape(r)] for r in node.replies]


class TestReroot:
    """Focus-centered copies of a wired thread."""

    def _thread(self):
        a, b, c, d = _node("A", "1"), _node("B", "2"), _node("C", "3"), _node("D", "4")
        _link(b, a)
        _link(c, b)
        _link(d, b)
        return a, b, c, d

    def test_focus_on_leaf_walks_up_only(self):
        _, _, _, d = self._thread()
        view = reroot(d)

        assert view.replies == []
        chain = []
        node = view.parent
        while node is not None:
            chain.append(_name(node))
            assert node.replies == []
            node = node.parent
        assert chain == ["B", "A"]

    def test_focus_on_root_keeps_every_branch(self):
        a, _, _, _ = self._thread()
        view = reroot(a)

        assert view.parent is None
        assert _shape(view) == [["B", [["C", []], ["D", []]]]]

    def test_focus_in_middle(self):
        _, b, _, _ = self._thread()
        view = reroot(b)

        assert _name(view.parent) == "A"
        assert view.parent.replies == []
        assert [_name(r) for r in view.replies] == ["C", "D"]
        assert all(r.parent is None for r in view.replies)

    def test_source_nodes_untouched(self):
        a, b, _, _ = self._thread()
        reroot(b)
        assert [_name(r) for r in a.replies] == ["B"]
        assert b.parent is a

    def test_corrupt_cycle_terminates(self):
        x, y = _node("X"), _node("Y")
        x.parent, y.parent = y, x
        x.replies, y.replies = [y], [x]

        view = reroot(x)
        assert _name(view.parent) == "Y"
        assert view.parent.parent is None
        assert [_name(r) for r in view.replies] == []


class TestSortReplies:
    def test_orders_by_created_at_then_uri(self):
        root = _node("R", "0")
        late, early, tie_b, tie_a = _node("L", "9"), _node("E", "1"), _node("TB", "5"), _node("TA", "5")
        for child in (late, early, tie_b, tie_a):
            _link(child, root)

        sort_replies({n.uri: n for n in (root, late, early, tie_b, tie_a)})
        assert [_name(r) for r in root.replies] == ["E", "TA", "TB", "L"]
