"""
Engines built on the record store: working context, thread capture and
reconstruction, data browsing and the follow graph.
"""
