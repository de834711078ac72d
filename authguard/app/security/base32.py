# authguard/app/security/base32.py
"""
RFC 4648 Base32 codec, unpadded variant.

encode() never emits '=' so secrets stay compact.
decode() is permissive: case-insensitive, strips trailing '=',
and skips characters outside the alphabet (spaces, dashes from
pasted secrets). It never raises.
"""

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_INDEX = {char: idx for idx, char in enumerate(ALPHABET)}


def encode(data: bytes) -> str:
    bits = 0
    value = 0
    output = []

    for byte in data:
        value = ((value << 8) | byte) & 0xFFFF
        bits += 8
        while bits >= 5:
            output.append(ALPHABET[(value >> (bits - 5)) & 31])
            bits -= 5

    if bits > 0:
        output.append(ALPHABET[(value << (5 - bits)) & 31])

    return "".join(output)


def decode(text: str) -> bytes:
    cleaned = text.upper().rstrip("=")
    bits = 0
    value = 0
    output = bytearray()

    for char in cleaned:
        idx = _INDEX.get(char)
        if idx is None:
            continue
        value = ((value << 5) | idx) & 0xFFFF
        bits += 5
        if bits >= 8:
            output.append((value >> (bits - 8)) & 0xFF)
            bits -= 8

    return bytes(output)
