from __future__ import annotations

import json

import cbor2


def encode(obj, *, binary: bool = False) -> str | bytes:
    if binary:
        return cbor2.dumps(obj)
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def decode(data: str | bytes):
    if isinstance(data, (bytes, bytearray)):
        return cbor2.loads(bytes(data))
    return json.loads(data)
