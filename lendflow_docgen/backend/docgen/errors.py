# backend/docgen/errors.py
from __future__ import annotations


class PipelineError(Exception):
    """Base for everything the document pipeline raises on purpose."""


class ProjectInputError(PipelineError):
    """Project is missing fields a pipeline step needs. Never retried automatically."""

    def __init__(self, project_id: int, missing: list[str]):
        self.project_id = project_id
        self.missing = list(missing)
        super().__init__(f"project {project_id} missing required fields: {', '.join(self.missing)}")


class ProjectNotFound(PipelineError):
    def __init__(self, project_id: int):
        self.project_id = project_id
        super().__init__(f"project {project_id} not found")


# ---- transient external failures (handled by the module failure policy) ----

class ProseGenerationError(PipelineError):
    pass


class StorageError(PipelineError):
    pass


class StepTimeoutError(PipelineError):
    def __init__(self, label: str, seconds: float):
        self.label = label
        self.seconds = seconds
        super().__init__(f"Timeout: {label} exceeded {seconds:g}s limit")


# ---- invariant violations (fatal to the attempt, surfaced as 409) ----

class InvariantViolation(PipelineError):
    pass


class VersionConflict(InvariantViolation):
    def __init__(self, project_id: int, doc_type: str, version: int):
        self.project_id = project_id
        self.doc_type = doc_type
        self.version = version
        super().__init__(f"version {version} of {doc_type} already exists for project {project_id}")


class PipelineConflict(InvariantViolation):
    def __init__(self, project_id: int, expected: str | tuple[str, ...], detail: str | None = None):
        self.project_id = project_id
        self.expected = expected
        super().__init__(detail or f"project {project_id} is no longer in {expected} status")


def truncate_error(err: BaseException | str, limit: int) -> str:
    msg = err if isinstance(err, str) else (str(err) or type(err).__name__)
    return msg[: max(0, int(limit))]
