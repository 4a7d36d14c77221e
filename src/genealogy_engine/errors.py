"""Error taxonomy for the genealogy engine.

Remote change-feed anomalies (duplicates, reordering, unknown ids) are never
raised; they are absorbed by the reconciler's merge rules.
"""
from __future__ import annotations


class GenealogyError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, *, table: str | None = None, entity_id: str | None = None):
        super().__init__(message)
        self.table = table
        self.entity_id = entity_id


class ConfigurationError(GenealogyError):
    """Missing or malformed collaborator configuration. Fatal at startup."""


class PermissionDeniedError(GenealogyError):
    """A collaborator refused a write.

    Carries an actionable hint so the presentation layer can tell the user
    which table's write policy needs attention.
    """

    def user_message(self) -> str:
        target = f"the '{self.table}' table" if self.table else "this table"
        return (
            f"Write denied: insufficient permission on {target}. "
            "Check the row-level write policy for this scope."
        )


class NotFoundError(GenealogyError):
    """The target of a mutation does not exist (e.g. editing a deleted member)."""


class TransientIOError(GenealogyError):
    """Fetch or subscribe failure; may succeed when retried."""


class SubmissionInProgressError(GenealogyError):
    """A local mutation is still outstanding; the new one was not submitted."""


class InvariantViolationError(GenealogyError):
    """A mutation would break a scope invariant (second root, bad generation, cycle)."""


class InvalidInputError(GenealogyError):
    """A record or patch failed validation (e.g. generation 0, unknown gender)."""

    @classmethod
    def from_validation(cls, exc, *, table: str | None = None, entity_id: str | None = None):
        """Build from a pydantic ``ValidationError``, one clause per bad field."""
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}" for err in exc.errors()
        )
        what = table.rstrip("s") if table else "record"
        return cls(f"Invalid {what}: {problems}", table=table, entity_id=entity_id)
