"""Output encoders and their registry."""

from bilmap.encoders.base import EncodeOptions, Encoder, EncoderSpec
from bilmap.encoders.registry import get_encoder, initialize_encoders, list_encoders

__all__ = [
    "EncodeOptions",
    "Encoder",
    "EncoderSpec",
    "get_encoder",
    "initialize_encoders",
    "list_encoders",
]
