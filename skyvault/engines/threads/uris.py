"""
Helpers for at:// URIs and post payloads.
"""

from typing import Any, Dict, Optional


def did_from_uri(uri: str) -> str:
    """Authority part of an at:// URI ("at://did:plc:x/app.bsky.feed.post/1" -> "did:plc:x")."""
    if uri.startswith("at://"):
        uri = uri[len("at://"):]
    return uri.split("/", 1)[0]


def reply_ref(record: Any, which: str) -> Optional[str]:
    """URI of a post record's reply parent or root, if it declares one."""
    if not isinstance(record, dict):
        return None
    reply = record.get("reply")
    if not isinstance(reply, dict):
        return None
    ref = reply.get(which)
    if isinstance(ref, dict) and isinstance(ref.get("uri"), str):
        return ref["uri"]
    return None


def created_at(record: Any) -> str:
    """Sort key for reply ordering; ISO strings compare chronologically."""
    if isinstance(record, dict) and isinstance(record.get("createdAt"), str):
        return record["createdAt"]
    return ""


def extract_post_view(thread: Any) -> Optional[Dict[str, Any]]:
    """The nested thread view if it carries a post (not notFound/blocked)."""
    if isinstance(thread, dict) and isinstance(thread.get("post"), dict) and thread["post"].get("uri"):
        return thread
    return None
