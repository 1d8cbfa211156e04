from __future__ import annotations

import logging
import os
import string

from dissect.regfs.c_regfs import c_regfs

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_REGFS", "CRITICAL"))

# Size of the fixed report buffers names are rendered into, including room for
# the terminator
STRING_BUFFER_SIZE = 512

_ASCII_FOLD = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


def decode16(data: bytes, max_out_len: int = STRING_BUFFER_SIZE) -> str:
    """Leniently decode a buffer of UTF-16-LE code units for presentation.

    Lone surrogates are replaced with U+FFFD. A buffer that does not consist of
    whole code units, or that ends in the middle of a surrogate pair, cannot be
    consumed cleanly and yields an empty string. Decoding stops at the first NUL
    code unit and the UTF-8 encoded result never exceeds ``max_out_len - 1``
    bytes, so it always fits a ``max_out_len`` sized buffer with terminator.

    This function never raises on malformed input.
    """
    if max_out_len <= 0 or not data:
        return ""

    if len(data) % 2:
        log.debug("Degraded UTF-16 string: odd buffer length %d", len(data))
        return ""

    units = c_regfs.uint16[len(data) // 2](data)
    try:
        units = units[: units.index(0)]
    except ValueError:
        pass

    if units and 0xD800 <= units[-1] <= 0xDBFF:
        log.debug("Degraded UTF-16 string: truncated surrogate pair")
        return ""

    text = data[: len(units) * 2].decode("utf-16-le", "replace")
    if "\ufffd" in text:
        log.debug("Degraded UTF-16 string: substituted malformed code units in %r", text)

    encoded = text.encode("utf-8")
    if len(encoded) >= max_out_len:
        log.debug("Degraded UTF-16 string: truncated %d bytes to %d", len(encoded), max_out_len - 1)
        text = encoded[: max_out_len - 1].decode("utf-8", "ignore")

    return text


def decode16_strict(data: bytes) -> str:
    # Raises UnicodeDecodeError, callers decide whether that is fatal
    return data.decode("utf-16-le")


def decode_name(blob: bytes, is_comp_name: bool) -> str:
    if is_comp_name:
        try:
            return blob.decode()
        except UnicodeDecodeError:
            pass

        return blob.decode("latin1")

    return decode16(blob, len(blob) * 2 + 1)


def fold_name(name: str) -> str:
    return name.translate(_ASCII_FOLD)


def name_equals(a: str, b: str) -> bool:
    """Registry names compare case-insensitively, folding ASCII letters only."""
    return fold_name(a) == fold_name(b)


def hashname(name: str) -> int:
    # Note that `name' is a python str(), which means the ord() used to
    # calculate name_hash works (it wouldn't for byte()).
    name_hash = 0
    for char in name.upper():
        name_hash = (name_hash * 37 + ord(char)) & 0xFFFFFFFF

    return name_hash


def xor32_crc(data: bytes) -> int:
    crc = 0
    for ii in c_regfs.uint32[len(data) // 4](data):
        crc ^= ii

    return crc
