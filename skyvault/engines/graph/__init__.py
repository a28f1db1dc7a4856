"""
Follow graph over stored follow_relationship records.
"""

from skyvault.engines.graph.follow_service import FollowEdge, FollowService, edge_id

__all__ = ["FollowEdge", "FollowService", "edge_id"]
