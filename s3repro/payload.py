"""Test payload generation"""

import os
import random
import string
from typing import Optional

_ALPHABET = (string.ascii_letters + string.digits + "-_").encode("ascii")
# Maps every byte value onto the 64 character alphabet
_TRANSLATION = bytes(_ALPHABET[i % len(_ALPHABET)] for i in range(256))

_JSON_PREFIX = b'{"data":"'
_JSON_SUFFIX = b'"}'


def generate_random_data(size: int, seed: Optional[int] = None) -> bytes:
    """Generate size random bytes, reproducible when seed is given"""
    if size < 0:
        raise ValueError(f"size must not be negative, got {size}")
    if seed is None:
        return os.urandom(size)
    return random.Random(seed).randbytes(size)


def generate_random_json(size: int, seed: Optional[int] = None) -> bytes:
    """
    Generate a JSON document of exactly size bytes

    The document is {"data": "<random characters>"}. Sizes too small for
    that shape get an empty object padded with whitespace.
    """
    if size < 2:
        raise ValueError(f"a JSON document needs at least 2 bytes, got {size}")

    overhead = len(_JSON_PREFIX) + len(_JSON_SUFFIX)
    if size < overhead:
        return b"{}" + b" " * (size - 2)

    filler = generate_random_data(size - overhead, seed).translate(_TRANSLATION)
    return _JSON_PREFIX + filler + _JSON_SUFFIX
