"""
Thread Engine - capture of fetched threads and focus-centered reconstruction.
"""

from skyvault.engines.threads.capture import ThreadCapture
from skyvault.engines.threads.fetcher import (
    AppViewFetcher,
    FetchCollaborator,
    OfflineFetcher,
    create_fetcher,
)
from skyvault.engines.threads.focus import reroot, sort_replies
from skyvault.engines.threads.reconstructor import ThreadReconstructor

__all__ = [
    "ThreadCapture",
    "AppViewFetcher",
    "FetchCollaborator",
    "OfflineFetcher",
    "create_fetcher",
    "reroot",
    "sort_replies",
    "ThreadReconstructor",
]
