"""Base62 codec for slugs.

Digits, then lowercase, then uppercase letters. The most significant digit comes
first and there is no padding, so 0 encodes to "0".
"""

import string

ALPHABET = string.digits + string.ascii_lowercase + string.ascii_uppercase
BASE = len(ALPHABET)

_INDEX = {char: value for value, char in enumerate(ALPHABET)}


def encode(num: int) -> str:
    """Encode a non-negative integer as a Base62 string.

    Args:
        num (int): The integer to encode.

    Returns:
        str: The Base62 representation of ``num``.

    Raises:
        ValueError: If ``num`` is negative.
    """
    if num < 0:
        raise ValueError(f"Cannot encode negative number: {num}")
    if num == 0:
        return ALPHABET[0]

    digits = []
    while num > 0:
        num, remainder = divmod(num, BASE)
        digits.append(ALPHABET[remainder])
    return "".join(reversed(digits))


def decode(value: str) -> int:
    """Decode a Base62 string back into an integer.

    Raises:
        ValueError: If ``value`` is empty or contains a character outside the
            alphabet.
    """
    if not value:
        raise ValueError("Cannot decode an empty string")

    num = 0
    for char in value:
        try:
            num = num * BASE + _INDEX[char]
        except KeyError:
            raise ValueError(f"Invalid Base62 character: {char!r}") from None
    return num
