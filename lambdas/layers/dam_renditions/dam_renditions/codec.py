import json
from typing import Any, Callable, Dict, Generic, TypeVar

T = TypeVar("T")


class EnvelopeDecodeError(ValueError):
    pass


class EnvelopeCodec(Generic[T]):
    """
    Codec for list entries stored as a JSON list holding one JSON document.

    The REST list store pushes the request body verbatim, so every entry
    ends up as ``'["{...record...}"]'``. ``encode`` produces that shape
    and ``decode`` undoes both layers.
    """

    def __init__(
        self,
        to_dict: Callable[[T], Dict[str, Any]],
        from_dict: Callable[[Dict[str, Any]], T],
    ):
        self.to_dict = to_dict
        self.from_dict = from_dict

    def encode(self, value: T) -> str:
        return json.dumps([json.dumps(self.to_dict(value))])

    def decode(self, raw: Any) -> T:
        try:
            outer = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            if isinstance(outer, list):
                if len(outer) != 1:
                    raise EnvelopeDecodeError(
                        f"Expected a single-element envelope, got {len(outer)} elements"
                    )
                outer = outer[0]
            inner = json.loads(outer) if isinstance(outer, (str, bytes)) else outer
        except json.JSONDecodeError as e:
            raise EnvelopeDecodeError(f"Envelope is not valid JSON: {e}") from e

        if not isinstance(inner, dict):
            raise EnvelopeDecodeError(
                f"Envelope does not contain an object: {type(inner).__name__}"
            )
        try:
            return self.from_dict(inner)
        except ValueError as e:
            raise EnvelopeDecodeError(f"Envelope payload rejected: {e}") from e
