from typing import Any, List, Optional


class IngestError(Exception):
    """
    Base class for failures reaching or reading one external log source.
    """

    kind = "ingest_error"

    def __init__(self, message: str, system_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.system_id = system_id

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "system_id": self.system_id}


class SourceUnreachable(IngestError):
    kind = "unreachable"


class SourceAuthFailed(IngestError):
    kind = "auth_failed"


class SourceSchemaMissing(IngestError):
    kind = "schema_missing"


class RuleEvaluationError(Exception):
    """
    Raised when a detection rule blows up on a record. Never escapes the rule engine.
    """

    def __init__(self, rule_id: str, record_id: str, cause: BaseException):
        super().__init__(f"{rule_id} failed on record {record_id}: {cause}")
        self.rule_id = rule_id
        self.record_id = record_id
        self.cause = cause


class StoreError(Exception):
    """
    Persistence failure. `saved` rows are already committed; `unsaved` may be retried.
    """

    kind = "store_error"

    def __init__(self, message: str, saved: int = 0, unsaved: Optional[List[Any]] = None):
        super().__init__(message)
        self.message = message
        self.saved = saved
        self.unsaved = unsaved or []
