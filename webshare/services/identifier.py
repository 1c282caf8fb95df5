import random

FNV32_OFFSET = 0x811C9DC5
FNV32_PRIME = 0x01000193


def fnv1a_32(data: bytes) -> int:
    """32-bit FNV-1a hash."""
    h = FNV32_OFFSET
    for byte in data:
        h ^= byte
        h = (h * FNV32_PRIME) & 0xFFFFFFFF
    return h


def assign_id(fingerprint: str, width: int = 3) -> str:
    """Map a content fingerprint to a short decimal identifier.

    The fingerprint is folded into a seed, and the seed drives a private
    random generator that draws ``width`` independent digits. Equal
    fingerprints always give equal ids; different fingerprints may collide,
    and a collision overwrites the older item.
    """
    if width <= 0:
        raise ValueError("Identifier width must be positive")
    rng = random.Random(fnv1a_32(fingerprint.encode()))
    return "".join(str(rng.randrange(10)) for _ in range(width))
