"""
Workspace - a named, swappable working context.

Holds resolved post views and focus views so reconstruction and browsing can
answer from memory before going to the store.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from skyvault.kernel.errors import DataInconsistency
from skyvault.logging_config import get_logger
from skyvault.schemas.thread import FocusView, PostView

logger = get_logger(__name__)


@dataclass(eq=False)
class Workspace:
    """In-memory working context, identified by name."""

    name: str
    posts: Dict[str, PostView] = field(default_factory=dict)
    thread_focus: Dict[str, FocusView] = field(default_factory=dict)
    # Owner whose posts were last bulk-loaded into `posts`
    loaded_owner: Optional[str] = None
    labelers: List[str] = field(default_factory=list)

    def cache_post(self, post: PostView) -> None:
        self.posts[post.uri] = post

    def cache_focus(self, view: FocusView) -> None:
        self.thread_focus[view.focus_uri] = view

    def clear(self) -> None:
        self.posts.clear()
        self.thread_focus.clear()
        self.loaded_owner = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "loaded_owner": self.loaded_owner,
            "labelers": list(self.labelers),
            "posts": {uri: post.to_dict() for uri, post in self.posts.items()},
            "thread_focus": {uri: view.to_dict() for uri, view in self.thread_focus.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workspace":
        """Rebuild a workspace; unreadable cached items are dropped and logged."""
        workspace = cls(
            name=data["name"],
            loaded_owner=data.get("loaded_owner"),
            labelers=list(data.get("labelers") or []),
        )
        for uri, raw in (data.get("posts") or {}).items():
            try:
                workspace.posts[uri] = PostView.model_validate(raw)
            except ValidationError as exc:
                _drop(workspace.name, uri, "post", exc)
        for uri, raw in (data.get("thread_focus") or {}).items():
            try:
                workspace.thread_focus[uri] = FocusView.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                _drop(workspace.name, uri, "focus", exc)
        return workspace


def _drop(workspace: str, uri: str, item_type: str, exc: Exception) -> None:
    issue = DataInconsistency(
        f"Dropped unreadable cached {item_type} {uri} from workspace {workspace}",
        record_id=uri,
    )
    logger.warning("%s: %s", issue, exc, extra={"workspace": workspace})
