"""
QR treasure hunt backend.

This package provides a FastAPI application over a document store, a blob
store and a local media cache so creators can author hunts, print QR scan
points and let hunters play through them.
"""
