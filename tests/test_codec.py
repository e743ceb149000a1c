from __future__ import annotations

import pytest
from pydantic import ValidationError

from agent_host.codec import coerce_result, decode, encode
from agent_host.models import Embed, Message, SerializedMessage


def test_decode_without_embeds_yields_empty_mapping():
    for serialized in ({"text": "hi"}, {"text": "hi", "embeds": {}}, {"text": "hi", "embeds": None}):
        message = decode(serialized)
        assert message == Message(text="hi", embeds={})


def test_decode_materializes_embeds():
    message = decode(
        {
            "text": "see attached",
            "embeds": {
                "photo": {"content_type": "image/png", "uri": "https://example.com/a.png"},
                "doc": {"content_type": "text/plain", "uri": "https://example.com/a.txt"},
            },
        }
    )
    assert message.text == "see attached"
    assert set(message.embeds) == {"photo", "doc"}
    assert isinstance(message.embeds["photo"], Embed)
    assert message.embeds["photo"].uri == "https://example.com/a.png"


def test_decode_accepts_validated_wire_model():
    wire = SerializedMessage.model_validate(
        {"text": "x", "embeds": {"e": {"content_type": "a/b", "uri": "u"}}}
    )
    assert decode(wire) == Message(text="x", embeds={"e": Embed(content_type="a/b", uri="u")})


def test_encode_always_includes_embeds():
    assert encode(Message(text="plain")) == {"text": "plain", "embeds": {}}


def test_round_trip_preserves_message():
    original = Message(
        text="two embeds",
        embeds={
            "a": Embed(content_type="image/jpeg", uri="https://example.com/a.jpg"),
            "b": Embed(content_type="application/pdf", uri="gs://bucket/b.pdf"),
        },
    )
    assert decode(encode(original)) == original


def test_embed_is_immutable():
    embed = Embed(content_type="text/plain", uri="https://example.com")
    with pytest.raises(ValidationError):
        embed.uri = "https://elsewhere.example.com"


def test_coerce_result_wraps_strings_and_passes_messages():
    assert coerce_result("hello") == Message(text="hello", embeds={})
    msg = Message(text="already")
    assert coerce_result(msg) is msg


def test_coerce_result_rejects_other_types():
    with pytest.raises(TypeError, match="must return a str or a Message"):
        coerce_result(42)
