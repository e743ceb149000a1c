"""
Data models for the agent host.

Defines Embed, Message, AgentMetadata and the wire envelopes used to validate
request bodies. Do not duplicate these definitions elsewhere.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class Embed(BaseModel):
    """Typed reference to external content attached to a message."""

    model_config = ConfigDict(frozen=True)

    content_type: str
    uri: str

    def serialize(self) -> Dict[str, str]:
        return {"content_type": self.content_type, "uri": self.uri}


class Message(BaseModel):
    """Function argument or function result: text plus named embeds."""

    text: str
    embeds: Dict[str, Embed] = Field(default_factory=dict)


class AgentMetadata(BaseModel):
    """What GET / reports and what reloads compare."""

    base_prompt: str
    few_shots: List[str]


class SerializedEmbed(BaseModel):
    content_type: StrictStr
    uri: StrictStr


class SerializedMessage(BaseModel):
    """Wire form of a Message. `embeds` may be omitted."""

    text: StrictStr
    embeds: Optional[Dict[str, SerializedEmbed]] = None


class SerializedMessageEnvelope(BaseModel):
    """Parsed POST /{func_name} request body."""

    message: SerializedMessage
