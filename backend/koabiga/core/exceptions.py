"""
Errors raised by the fee engine.

Validation and precondition failures carry enough detail for HTTP and CLI
callers to render a specific message. Persistence failures are opaque
to callers; the context is logged where they are raised.
"""
from typing import Any, Dict, List, Optional


class FeeEngineError(Exception):
    code = "FEE_ENGINE_ERROR"

    def __init__(self, detail: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(detail)
        self.detail = detail
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.detail}


class ValidationFailed(FeeEngineError):
    """Malformed input. No state was mutated."""

    code = "VALIDATION_ERROR"

    def __init__(self, detail: str, errors: Optional[List[Dict[str, str]]] = None, **kwargs):
        super().__init__(detail, **kwargs)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["errors"] = self.errors
        return out


class PreconditionFailed(FeeEngineError):
    """The entity is not in a state that allows the operation."""

    code = "PRECONDITION_FAILED"


class NotFound(FeeEngineError):
    code = "RESOURCE_NOT_FOUND"


class PersistenceError(FeeEngineError):
    code = "OPERATION_FAILED"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": "Operation failed"}
