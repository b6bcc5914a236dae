"""Terminal rendering for Airlift.

Modules
-------
renderer
    ``RunRenderer`` turns ``RunReport``, ``RegistrySnapshot`` and
    ``SnapshotDiff`` models into Rich renderables.
"""
