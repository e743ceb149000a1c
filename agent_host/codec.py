from __future__ import annotations

from typing import Any, Dict, Mapping, Union

from .models import Embed, Message, SerializedMessage


def decode(serialized: Union[Mapping[str, Any], SerializedMessage]) -> Message:
    """
    Materialize a wire message.

    The shape is assumed to be valid already; the dispatcher checks it before
    calling this.
    """
    if isinstance(serialized, SerializedMessage):
        serialized = serialized.model_dump()

    raw_embeds = serialized.get("embeds") or {}
    embeds = {
        name: Embed(content_type=e["content_type"], uri=e["uri"])
        for name, e in raw_embeds.items()
    }
    return Message(text=serialized["text"], embeds=embeds)


def encode(message: Message) -> Dict[str, Any]:
    return {
        "text": message.text,
        "embeds": {name: e.serialize() for name, e in message.embeds.items()},
    }


def coerce_result(result: Any) -> Message:
    """Agent functions may return a plain string; wrap it as a Message."""
    if isinstance(result, str):
        return Message(text=result, embeds={})
    if isinstance(result, Message):
        return result
    raise TypeError(
        f"Agent function must return a str or a Message, got {type(result).__name__}"
    )
