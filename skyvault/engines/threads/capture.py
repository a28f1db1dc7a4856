"""
Thread capture - writes fetched thread views into the record store.

A fetched thread is a nested view: {"post": {...}, "parent": {...},
"replies": [...]}. Every post in it is stored as a `post` record, its author
as a `profile` record and its position as a `thread_post_view` record, each
paired with one provenance entry.
"""

from typing import Any, Dict, List, Optional, Tuple

from skyvault.engines.threads.uris import did_from_uri, extract_post_view, reply_ref
from skyvault.kernel.store.record_store import VersionedRecordStore
from skyvault.logging_config import get_logger
from skyvault.schemas.record import PutResult, RecordKind
from skyvault.schemas.request_params import RequestParams
from skyvault.schemas.thread import ThreadNodeRecord

logger = get_logger(__name__)


class ThreadCapture:
    """Stores posts, authors and thread positions with provenance."""

    def __init__(self, store: VersionedRecordStore):
        self.store = store

    async def store_record(
        self,
        kind: RecordKind,
        record_id: str,
        payload: Any,
        params: RequestParams,
        linked_to: Optional[List[str]] = None,
    ) -> Optional[PutResult]:
        """Store one record and its entry; returns None on a dry run."""
        if params.dry_run:
            if params.debug_output:
                logger.debug("Dry run, not storing %s:%s", kind.value, record_id)
            return None
        return await self.store.put_with_provenance(
            kind,
            record_id,
            payload,
            params.scope(self.store.default_snapshot),
            linked_to=linked_to,
        )

    async def store_profile(self, profile: Dict[str, Any], params: RequestParams) -> Optional[PutResult]:
        return await self.store_record(RecordKind.PROFILE, profile["did"], profile, params)

    async def store_repo_description(self, description: Dict[str, Any], params: RequestParams) -> Optional[PutResult]:
        return await self.store_record(RecordKind.REPO_DESCRIPTION, description["did"], description, params)

    async def store_thread(
        self,
        thread: Dict[str, Any],
        params: RequestParams,
        root_uri: Optional[str] = None,
    ) -> List[ThreadNodeRecord]:
        """
        Store every post of a fetched thread view; returns the thread nodes.

        The conversation root is the parent's declared `reply.root`, else
        the focus post itself. Parents are walked upward only and replies
        downward only.
        """
        focus = extract_post_view(thread)
        if focus is None:
            return []

        if root_uri is None:
            parent = extract_post_view(focus.get("parent"))
            if parent is not None:
                root_uri = reply_ref(parent["post"].get("record"), "root") or parent["post"]["uri"]
            else:
                root_uri = reply_ref(focus["post"].get("record"), "root") or focus["post"]["uri"]

        nodes: List[ThreadNodeRecord] = []
        seen = set()
        # (view, direction) where direction is root, up or down
        pending: List[Tuple[Dict[str, Any], str]] = [(focus, "root")]

        while pending:
            view, direction = pending.pop()
            post = view["post"]
            uri = post["uri"]
            if uri in seen:
                continue
            seen.add(uri)

            parent = extract_post_view(view.get("parent"))
            children: List[str] = []
            if parent is not None and direction in ("root", "up"):
                pending.append((parent, "up"))
            if direction in ("root", "down"):
                for reply in view.get("replies") or []:
                    reply_view = extract_post_view(reply)
                    if reply_view is not None:
                        children.append(reply_view["post"]["uri"])
                        pending.append((reply_view, "down"))

            record = post.get("record") or {}
            parent_uri = parent["post"]["uri"] if parent is not None else reply_ref(record, "parent")
            links = [u for u in (parent_uri, reply_ref(record, "root")) if u]

            await self.store_record(RecordKind.POST, uri, record, params, linked_to=links)
            author = post.get("author")
            if isinstance(author, dict) and author.get("did"):
                await self.store_profile(author, params)
            else:
                logger.debug("No author on %s (%s)", uri, did_from_uri(uri))

            node = ThreadNodeRecord(
                post=uri,
                parent=parent_uri,
                is_root=(uri == root_uri),
                root_uri=root_uri,
                replies=children,
            )
            await self.store_record(
                RecordKind.THREAD_NODE,
                uri,
                node.model_dump(),
                params,
                linked_to=links + children,
            )
            nodes.append(node)

        logger.info(
            "Captured %d posts for thread %s", len(nodes), root_uri,
            extra={"root_uri": root_uri, "dry_run": params.dry_run},
        )
        return nodes
