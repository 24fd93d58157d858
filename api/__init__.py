"""
MDGRAPH API - HTTP and WebSocket surface.
"""
