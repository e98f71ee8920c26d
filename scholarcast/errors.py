"""Exception taxonomy for the scholarcast pipeline.

Recovery happens as close to the failing stage as possible:
- StageFailure: a stage failed while fallbacks are disabled (strict runs)
- PaperFailure: one paper could not be processed; the orchestrator skips it
- BatchFailure: nothing usable came out of a whole search
- PersistenceFailure: the store rejected a write; always logged and swallowed
"""
from typing import List, Optional


class ScholarcastError(Exception):
    """Base class for all pipeline errors."""


class QueryValidationError(ScholarcastError):
    def __init__(self, verdict):
        self.verdict = verdict
        super().__init__(f"Query rejected: {verdict.reason}")


class StageFailure(ScholarcastError):
    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {type(cause).__name__}: {cause}")


class PaperFailure(ScholarcastError):
    def __init__(self, paper_id: str, title: str, cause: BaseException):
        self.paper_id = paper_id
        self.title = title
        self.cause = cause
        super().__init__(f"Paper {paper_id} ('{title[:60]}') failed: {cause}")


class BatchFailure(ScholarcastError):
    def __init__(self, reason: str, failures: Optional[List[PaperFailure]] = None):
        self.reason = reason
        self.failures = list(failures or [])
        super().__init__(reason)


class PersistenceFailure(ScholarcastError):
    def __init__(self, key: str, cause: BaseException):
        self.key = key
        self.cause = cause
        super().__init__(f"Could not persist {key}: {cause}")


class SummaryParseError(ValueError):
    """LLM output was not the JSON summary shape we asked for."""
