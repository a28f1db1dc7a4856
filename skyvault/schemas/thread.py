"""
Thread schemas - stored thread nodes, post views and focus-centered trees.

ThreadViewNode is a plain dataclass rather than a pydantic model: while a
thread is being wired its nodes point at each other in both directions, so
they must never be compared or printed structurally.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ThreadNodeRecord(BaseModel):
    """Flat per-post record (kind "thread_post_view") describing one position."""

    post: str
    parent: Optional[str] = None
    is_root: bool = False
    root_uri: str
    replies: List[str] = Field(default_factory=list)


class AuthorView(BaseModel):
    """Basic author card attached to a post view."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    did: str
    handle: str = ""
    display_name: str = Field("", alias="displayName")
    avatar: str = ""
    labels: Optional[List[Any]] = None


class PostView(BaseModel):
    """A post as presented to callers: record plus resolved author."""

    model_config = ConfigDict(populate_by_name=True)

    uri: str
    cid: str = ""
    record: Dict[str, Any] = Field(default_factory=dict)
    indexed_at: str = Field("", alias="indexedAt")
    author: AuthorView

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(eq=False, repr=False)
class ThreadViewNode:
    """One node of a conversation tree."""

    post: PostView
    record: Dict[str, Any] = field(default_factory=dict)
    parent: Optional["ThreadViewNode"] = None
    replies: List["ThreadViewNode"] = field(default_factory=list)

    @property
    def uri(self) -> str:
        return self.post.uri

    def __repr__(self) -> str:
        parent = self.parent.uri if self.parent else None
        return f"<ThreadViewNode {self.uri} parent={parent} replies={len(self.replies)}>"

    def to_dict(self, *, up: bool = True, down: bool = True) -> Dict[str, Any]:
        """
        Serialize a focus-shaped tree: parents are followed upward only and
        replies downward only, so both directions terminate.
        """
        return {
            "post": self.post.to_dict(),
            "record": self.record,
            "parent": self.parent.to_dict(up=True, down=False) if up and self.parent else None,
            "replies": [r.to_dict(up=False, down=True) for r in self.replies] if down else [],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThreadViewNode":
        node = cls(
            post=PostView.model_validate(data["post"]),
            record=data.get("record") or {},
        )
        if data.get("parent"):
            node.parent = cls.from_dict(data["parent"])
        node.replies = [cls.from_dict(r) for r in data.get("replies") or []]
        return node


class AnomalyKind(str, Enum):
    """Data inconsistencies detected while reconstructing a thread."""

    SELF_PARENT = "self_parent"
    CYCLE = "cycle"
    MISSING_PARENT = "missing_parent"
    ROOT_WITH_PARENT = "root_with_parent"
    MISSING_POST = "missing_post"
    MALFORMED_NODE = "malformed_node"


class ThreadAnomaly(BaseModel):
    """One anomaly, tied to the node where it was found."""

    kind: AnomalyKind
    uri: str
    detail: str = ""


@dataclass(eq=False)
class FocusView:
    """Thread re-rooted on a focus post. Rebuilt per request, never stored."""

    focus_uri: str
    root_uri: str
    thread: ThreadViewNode
    anomalies: List[ThreadAnomaly] = field(default_factory=list)
    unwired: List[str] = field(default_factory=list)
    retried: bool = False
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def complete(self) -> bool:
        """True when every declared parent edge was wired."""
        return not self.unwired

    def ancestors(self) -> List[ThreadViewNode]:
        """Upward chain from the focus' parent to the top-most known ancestor."""
        chain: List[ThreadViewNode] = []
        node = self.thread.parent
        while node is not None:
            chain.append(node)
            node = node.parent
        return chain

    def to_dict(self) -> Dict[str, Any]:
        return {
            "focus_uri": self.focus_uri,
            "root_uri": self.root_uri,
            "thread": self.thread.to_dict(),
            "anomalies": [a.model_dump(mode="json") for a in self.anomalies],
            "unwired": list(self.unwired),
            "retried": self.retried,
            "complete": self.complete,
            "built_at": self.built_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FocusView":
        built_at = data.get("built_at")
        return cls(
            focus_uri=data["focus_uri"],
            root_uri=data["root_uri"],
            thread=ThreadViewNode.from_dict(data["thread"]),
            anomalies=[ThreadAnomaly.model_validate(a) for a in data.get("anomalies") or []],
            unwired=list(data.get("unwired") or []),
            retried=bool(data.get("retried", False)),
            built_at=datetime.fromisoformat(built_at) if built_at else datetime.now(timezone.utc),
        )
