"""Releaseboard terminal board — pure read-only projection over the store.

The board NEVER maintains its own state.  Every call re-reads the
releases from the store.

Modules
-------
projection
    ``BoardProjection`` reads the store and produces ``BoardSnapshot``
    Pydantic models grouped into environment columns.
renderer
    ``BoardRenderer`` turns ``BoardSnapshot`` into Rich renderables
    for terminal display, including continuous ``Rich.Live`` mode.
"""
