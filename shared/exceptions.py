"""RFC 9457 Problem Details exception hierarchy.

All pipeline and API errors extend ProblemDetailError and are converted to
application/problem+json responses by the exception handler middleware.
"""

from typing import Any


class ProblemDetailError(Exception):
    def __init__(
        self,
        type_uri: str,
        title: str,
        status: int,
        detail: str,
        violations: list[dict] | None = None,
    ):
        self.type_uri = type_uri
        self.title = title
        self.status = status
        self.detail = detail
        self.violations = violations
        super().__init__(detail)

    def extensions(self) -> dict[str, Any]:
        """Extra problem members beyond the RFC 9457 core fields."""
        return {}


class MalformedInputError(ProblemDetailError):
    """An input file or container could not be read at all."""

    def __init__(self, detail: str):
        super().__init__(
            type_uri="https://journal.local/problems/malformed-input",
            title="Malformed Input",
            status=422,
            detail=detail,
        )


class NoDataFoundError(ProblemDetailError):
    """Parsing succeeded structurally but produced nothing importable."""

    def __init__(self, detail: str, warnings: list[str] | None = None):
        self.warnings = list(warnings or [])
        super().__init__(
            type_uri="https://journal.local/problems/no-data-found",
            title="No Data Found",
            status=422,
            detail=detail,
        )

    def extensions(self) -> dict[str, Any]:
        return {"warnings": self.warnings} if self.warnings else {}


class UnsupportedSchemaError(NoDataFoundError):
    """A snapshot has no recognizable wellness table."""

    def __init__(self, tables: list[str]):
        self.tables = tables
        preview = ", ".join(tables[:10]) or "(none)"
        super().__init__(
            f"No recognizable wellness table in snapshot. Tables found: {preview}"
        )
        self.type_uri = "https://journal.local/problems/unsupported-schema"
        self.title = "Unsupported Schema"


class StorageFailureError(ProblemDetailError):
    """The store rejected a write. Earlier commits in the run stay committed."""

    def __init__(self, detail: str, summary: Any = None):
        self.summary = summary
        super().__init__(
            type_uri="https://journal.local/problems/storage-failure",
            title="Storage Failure",
            status=503,
            detail=detail,
        )

    def extensions(self) -> dict[str, Any]:
        if self.summary is None:
            return {}
        return {"partial_summary": self.summary.model_dump(mode="json")}


class InvalidStateTransitionError(ProblemDetailError):
    def __init__(self, current: str, target: str):
        super().__init__(
            type_uri="https://journal.local/problems/invalid-state-transition",
            title="Invalid State Transition",
            status=409,
            detail=f"Import cannot move from '{current}' to '{target}'",
        )


class UnsupportedSampleKindError(ProblemDetailError):
    def __init__(self, kind: str, allowed: set[str]):
        allowed_str = ", ".join(sorted(allowed))
        super().__init__(
            type_uri="https://journal.local/problems/unsupported-sample-kind",
            title="Unsupported Sample Kind",
            status=422,
            detail=f"Sample kind '{kind}' is not supported. Must be one of: {allowed_str}",
        )


class NotFoundError(ProblemDetailError):
    def __init__(self, detail: str):
        super().__init__(
            type_uri="https://journal.local/problems/not-found",
            title="Not Found",
            status=404,
            detail=detail,
        )
