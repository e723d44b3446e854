"""
Policy Status — Error Taxonomy

Two propagation policies share these types:
  - decision computation is fail-fast: InvalidBindingError and
    PolicyLookupError abort the whole status update;
  - per-cluster aggregation is best-effort: the first PolicyLookupError
    is remembered and logged, the rest of the clusters are still read.

NotFoundError is never a failure on its own. Callers turn it into a
no-op (root policy), a pending entry (replica), or an empty provenance
field (grouping object).
"""

from __future__ import annotations


class PolicyStatusError(Exception):
    """Base class for every error raised by this package."""
    pass


class StoreError(PolicyStatusError):
    """An object store read, list, or write failed."""
    pass


class NotFoundError(StoreError):
    """The requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} not found")


class InvalidBindingError(PolicyStatusError):
    """A PlacementBinding's placementRef is malformed or of an unsupported kind."""
    pass


class PolicyLookupError(PolicyStatusError, LookupError):
    """A lookup needed to compute decisions or statuses failed."""
    pass


class DecisionError(PolicyStatusError):
    """The placement decisions for a root policy could not be computed."""
    pass


class RefreshError(PolicyStatusError):
    """Re-reading the root policy before the write failed. Never fatal."""
    pass


class PersistError(PolicyStatusError):
    """Writing the root policy status failed. Retried by the caller."""
    pass
