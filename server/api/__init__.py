"""
HTTP and WebSocket routers for the notebook backend.
"""
