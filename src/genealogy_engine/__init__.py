"""Genealogy Graph Engine - family tree layout, kinship and live sync.

Turns the flat member and event records of a genealogy scope into a
positioned tree, labels relatives relative to the user, and keeps the
tree consistent under optimistic local edits and a remote change feed.
"""

__version__ = "0.1.0"

# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    if name == "graph":
        from genealogy_engine import graph
        return graph
    if name == "backends":
        from genealogy_engine import backends
        return backends
    if name == "export":
        from genealogy_engine import export
        return export
    if name == "GenealogySession":
        from genealogy_engine.session import GenealogySession
        return GenealogySession
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
