"""
Request/response models for the relay endpoints and the generation backend.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from shared.errors import InvalidRequestError


class Part(BaseModel):
    """One text part of a conversation turn."""
    text: str


class Message(BaseModel):
    """A conversation turn in the backend's wire shape."""
    role: Literal["user", "model"] = "user"
    parts: List[Part] = Field(default_factory=list)


def user_message(text: str) -> Dict[str, Any]:
    return {"role": "user", "parts": [{"text": text}]}


def require_prompt(prompt: Optional[str]) -> str:
    """Return the prompt, or raise InvalidRequestError when it is missing or blank."""
    if prompt is None or not prompt.strip():
        raise InvalidRequestError("Missing 'prompt'")
    return prompt


class SummarizeRequest(BaseModel):
    prompt: Optional[str] = None


class SummarizeResponse(BaseModel):
    summary: str


class ChatRequest(BaseModel):
    """Either a single prompt or a multi-turn history; history wins when both are set."""
    prompt: Optional[str] = None
    history: Optional[List[Message]] = None

    def to_contents(self) -> List[Dict[str, Any]]:
        if self.history:
            return [message.model_dump() for message in self.history]
        if self.prompt is not None and self.prompt.strip():
            return [user_message(self.prompt)]
        raise InvalidRequestError("Missing 'prompt' or 'history'")


class ChatResponse(BaseModel):
    answer: str


class GenerationRequest(BaseModel):
    """A backend-agnostic generation call."""
    contents: List[Dict[str, Any]]
    system_instruction: Optional[str] = None
    tools: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_prompt(
        cls,
        prompt: str,
        system_instruction: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> "GenerationRequest":
        return cls(
            contents=[user_message(prompt)],
            system_instruction=system_instruction,
            tools=tools or [],
        )
