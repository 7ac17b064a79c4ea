"""Pydantic models for the streaming backend's request and response schemas."""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StreamRequestBody(BaseModel):
    """Body of the push-stream request, and the payload of a `start_stream` frame."""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    prompt: str = Field(..., description="The user prompt", min_length=1, max_length=20000)
    model_selection: Dict[str, bool] = Field(..., alias="modelConfig", description="Model id -> enabled")
    weights: Optional[Dict[str, float]] = Field(None, alias="customWeights", description="Model id -> synthesis weight")
    mode: str = Field("chat", description="Conversation mode")

    @field_validator("weights")
    @classmethod
    def weights_must_be_non_negative(cls, value: Optional[Dict[str, float]]) -> Optional[Dict[str, float]]:
        if value is None:
            return value
        for model_id, weight in value.items():
            if weight < 0:
                raise ValueError(f"weight for {model_id!r} must not be negative")
        return value

    @property
    def enabled_models(self) -> List[str]:
        return [model_id for model_id, enabled in self.model_selection.items() if enabled]


class StartStreamFrame(StreamRequestBody):
    """A `start_stream` frame received over the WebSocket channel."""
    type: str = Field("start_stream")
    conversation_id: str = Field(..., alias="conversationId", min_length=1)


class HealthResponse(BaseModel):
    status: str
    models: List[str]
    max_concurrent_calls: int
