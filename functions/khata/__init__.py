"""
Order book service.

This package keeps order records behind one storage facade that can run on
Firestore, a SQL database or a local JSON document, and falls back to the
local document when the preferred backend stops answering.
"""
