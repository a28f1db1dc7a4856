"""
Thread Reconstructor.

Rebuilds a navigable conversation tree from flat, independently stored
thread nodes and re-centers it on a focus post:

1. locate the focus node (fetching once unless it is stored as a thread root)
2. bulk-load every node sharing its root
3. build one ThreadViewNode per node into an arena keyed by uri
4. wire parent/reply edges, rejecting self-links and cycle-closing links
5. re-root on the focus
6. cache the FocusView in the workspace

A parent missing from the arena triggers one forced re-fetch and rebuild,
unless the focus was already fetched for this request. Whatever is still
missing afterwards stays unwired and the view is reported incomplete.
"""

from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from skyvault.engines.context.workspace import Workspace
from skyvault.engines.threads.fetcher import FetchCollaborator
from skyvault.engines.threads.focus import reply_order, reroot, sort_replies
from skyvault.engines.threads.uris import reply_ref
from skyvault.kernel.errors import ConflictRetryExhausted, DataInconsistency
from skyvault.kernel.store.record_store import VersionedRecordStore
from skyvault.logging_config import bind_log_context, get_logger
from skyvault.schemas.record import RecordKind
from skyvault.schemas.request_params import RequestParams
from skyvault.schemas.thread import (
    AnomalyKind,
    FocusView,
    ThreadAnomaly,
    ThreadNodeRecord,
    ThreadViewNode,
)

if TYPE_CHECKING:
    from skyvault.engines.browser.data_browser import DataBrowser

logger = get_logger(__name__)


def _creates_cycle(child: ThreadViewNode, parent: ThreadViewNode) -> bool:
    """Would linking child -> parent close a loop through existing parent links?"""
    seen: Set[str] = set()
    node: Optional[ThreadViewNode] = parent
    while node is not None and node.uri not in seen:
        if node is child:
            return True
        seen.add(node.uri)
        node = node.parent
    return False


class ThreadReconstructor:
    """
    Builds FocusViews from stored thread nodes.

    Usage:
        reconstructor = ThreadReconstructor(store, browser, fetcher)
        view = await reconstructor.get_thread(uri, workspace, RequestParams())
    """

    def __init__(
        self,
        store: VersionedRecordStore,
        browser: "DataBrowser",
        fetcher: FetchCollaborator,
    ):
        self.store = store
        self.browser = browser
        self.fetcher = fetcher

    async def get_thread(
        self,
        focus_id: str,
        workspace: Workspace,
        params: Optional[RequestParams] = None,
    ) -> Optional[FocusView]:
        """
        FocusView for `focus_id`, or None when the focus post cannot be found
        even after fetching.

        With `use_context` a view already cached in the workspace is returned
        as-is; otherwise the view is rebuilt and the cache refreshed.
        """
        params = params or RequestParams()
        if params.use_context and not params.force:
            cached = workspace.thread_focus.get(focus_id)
            if cached is not None:
                return cached

        with bind_log_context(focus_uri=focus_id, workspace=workspace.name, snapshot=params.scope()):
            view = await self._build(focus_id, params, force=params.force, retried=False)
        if view is not None:
            workspace.cache_focus(view)
        return view

    async def _stored_nodes(self, focus_id: str, snapshot: Optional[str]) -> List[ThreadNodeRecord]:
        """Decodable stored versions of the focus node, newest first."""
        candidates: List[ThreadNodeRecord] = []
        for row in await self.store.versions(RecordKind.THREAD_NODE, focus_id, snapshot):
            try:
                candidates.append(ThreadNodeRecord.model_validate(row.data))
            except ValidationError:
                logger.warning(
                    "%s", DataInconsistency(f"Malformed thread node {focus_id}@{row.version}", record_id=focus_id),
                )
        return candidates

    async def _locate(
        self,
        focus_id: str,
        params: RequestParams,
        force: bool,
    ) -> Tuple[Optional[ThreadNodeRecord], bool]:
        """
        Focus node plus whether the fetch collaborator was called.

        Only a version flagged `is_root` counts as a stored thread; anything
        else is fetched once, then any stored version is accepted.
        """
        snapshot = params.scope()
        candidates = await self._stored_nodes(focus_id, snapshot)
        node = next((n for n in candidates if n.is_root), None)
        if node is not None and not force:
            return node, False

        if params.debug_output:
            logger.debug("Fetching thread %s (stored=%d, force=%s)", focus_id, len(candidates), force)
        await self.fetcher.fetch_thread(focus_id, params)
        candidates = await self._stored_nodes(focus_id, snapshot)
        node = next((n for n in candidates if n.is_root), None)
        return node or (candidates[0] if candidates else None), True

    def _wire(
        self,
        arena: Dict[str, ThreadViewNode],
        nodes: Dict[str, ThreadNodeRecord],
        anomalies: List[ThreadAnomaly],
    ) -> List[str]:
        """Link every node to its declared parent. Returns parents not in the arena."""
        missing: List[str] = []
        for uri in sorted(arena, key=lambda u: reply_order(arena[u])):
            child = arena[uri]
            declared = nodes[uri].parent or reply_ref(child.record, "parent")
            if not declared:
                continue

            if declared == uri:
                anomalies.append(ThreadAnomaly(
                    kind=AnomalyKind.SELF_PARENT, uri=uri, detail="post names itself as parent",
                ))
                continue
            if nodes[uri].is_root:
                anomalies.append(ThreadAnomaly(
                    kind=AnomalyKind.ROOT_WITH_PARENT, uri=uri,
                    detail=f"root flag kept, parent {declared} dropped",
                ))
                continue

            parent = arena.get(declared)
            if parent is None:
                anomalies.append(ThreadAnomaly(
                    kind=AnomalyKind.MISSING_PARENT, uri=uri, detail=f"parent {declared} not stored",
                ))
                if declared not in missing:
                    missing.append(declared)
                continue
            if _creates_cycle(child, parent):
                anomalies.append(ThreadAnomaly(
                    kind=AnomalyKind.CYCLE, uri=uri, detail=f"link to {declared} would close a cycle",
                ))
                continue

            child.parent = parent
            parent.replies.append(child)
        return missing

    async def _build(
        self,
        focus_id: str,
        params: RequestParams,
        force: bool,
        retried: bool,
    ) -> Optional[FocusView]:
        node, fetched = await self._locate(focus_id, params, force)
        if node is None:
            logger.info("No thread node for %s", focus_id, extra={"focus_uri": focus_id})
            return None

        root_uri = node.root_uri or focus_id
        thread = await self.store.latest_for_thread(root_uri, params.scope())
        if focus_id not in thread.nodes:
            # Focus node filed under another root by a later capture
            thread.nodes[focus_id] = node
            thread.posts.update(
                {e.identity: e for e in await self.store.latest_for_owner(
                    RecordKind.POST, focus_id, as_path_prefix=False, snapshot=params.scope(),
                )}
            )

        anomalies = list(thread.anomalies)
        arena: Dict[str, ThreadViewNode] = {}
        for uri in thread.nodes:
            entry = thread.posts.get(uri)
            if entry is None:
                anomalies.append(ThreadAnomaly(kind=AnomalyKind.MISSING_POST, uri=uri, detail="no post record"))
                continue
            post_view = await self.browser.build_post_view(entry, params)
            arena[uri] = ThreadViewNode(post=post_view, record=entry.record or {})

        missing = self._wire(arena, thread.nodes, anomalies)

        if missing and not retried and not fetched:
            logger.info(
                "Thread %s missing %d parent(s); forcing one re-fetch", root_uri, len(missing),
                extra={"focus_uri": focus_id, "missing": missing},
            )
            return await self._build(focus_id, params, force=True, retried=True)

        focus = arena.get(focus_id)
        if focus is None:
            logger.info("Focus post %s not stored", focus_id, extra={"focus_uri": focus_id})
            return None

        sort_replies(arena)
        for anomaly in anomalies:
            logger.warning(
                "Thread anomaly %s at %s: %s", anomaly.kind.value, anomaly.uri, anomaly.detail,
                extra={"root_uri": root_uri},
            )
        if missing:
            logger.warning("%s", ConflictRetryExhausted(focus_id, missing), extra={"root_uri": root_uri})

        return FocusView(
            focus_uri=focus_id,
            root_uri=root_uri,
            thread=reroot(focus),
            anomalies=anomalies,
            unwired=missing,
            retried=retried,
        )
