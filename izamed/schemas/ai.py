from typing import Any
from pydantic import BaseModel, Field

from izamed.services.ai.heuristics import UrgencyLevel

class AiBackendResult(BaseModel):
    text: str
    confidence_score: float = Field(..., ge=0.10, le=0.95)
    urgency_level: UrgencyLevel
    safety_warnings: list[str] = Field(..., min_length=1)
    service_used: str
    fallback_used: bool
    errors: dict[str, str] = Field(default_factory=dict)
    model_used: str | None = None
    processing_time: float = 0.0
    recommended_actions: list[str] = Field(default_factory=list)

class DiagnosisResult(AiBackendResult):
    diagnoses: list[str] = Field(default_factory=list)
    recommended_tests: list[str] = Field(default_factory=list)

# --- requests del AI assistant ---
class MessageIn(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
    context: dict[str, Any] = Field(default_factory=dict)

class DiagnosisIn(BaseModel):
    symptoms: list[str] = Field(..., min_length=1, max_length=30)
    age: int | None = Field(None, ge=0, le=130)
    gender: str | None = None
