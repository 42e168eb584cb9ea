"""Pydantic schemas for the compiled (API-ready) form of a flow.

A compiled flow is what the projector produces from the definition graph and
what the runner hands, action by action, to the chat-completion service.
Serialize with ``to_wire()`` to get the exact request shape.
"""

from __future__ import annotations
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field

PAYLOAD_MASK = "base64,..."


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageUrl(BaseModel):
    url: str


class ImageUrlBlock(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


class FileData(BaseModel):
    file_data: str
    filename: Optional[str] = None


class FileBlock(BaseModel):
    type: Literal["file"] = "file"
    file: FileData


ContentBlock = Annotated[Union[TextBlock, ImageUrlBlock, FileBlock], Field(discriminator="type")]


class CompiledMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: List[ContentBlock] = Field(default_factory=list)


class CompiledAction(BaseModel):
    model: str = "unknown"
    temperature: float
    messages: List[CompiledMessage] = Field(default_factory=list)
    structured_output: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CompiledStep(BaseModel):
    actions: List[CompiledAction] = Field(default_factory=list)


class CompiledFlow(BaseModel):
    steps: List[CompiledStep] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
