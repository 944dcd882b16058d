from typing import Any

from pydantic import BaseModel, Field


class SuggestedAction(BaseModel):
    action: str
    endpoint: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class ErrorInfo(BaseModel):
    code: str
    message: str
    retryable: bool = False
    suggested_fix: str | None = None  # Human-readable fix suggestion
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)  # Timeline validation findings
