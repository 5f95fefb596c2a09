"""Core domain package for battlemaster.

Core contains dedup, cursor tracking, catalog matching, the label decision
pipeline and the connection lifecycle without any websocket, HTTP or
storage-specific code, keeping the business logic portable.
"""
