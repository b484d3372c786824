"""Decode raw file bytes to text without a declared charset.

Order of precedence:

1. a byte-order mark (UTF-8, UTF-32 LE/BE, UTF-16 LE/BE, checked in that order);
2. without BOM, strict UTF-8 unless the policy forces the legacy code page;
3. the legacy code page (configured, or the platform preferred encoding).
"""

from __future__ import annotations

import codecs
import locale

from repo_flattener.config import NoBomEncoding

# UTF-32 LE must be tested before UTF-16 LE: its BOM starts with FF FE too.
BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)

_CODE_UNIT = {"utf-8": 1, "utf-32-le": 4, "utf-32-be": 4, "utf-16-le": 2, "utf-16-be": 2}


def detect_bom(data: bytes) -> tuple[str, int] | None:
    """Return `(codec, bom_length)` for the BOM `data` starts with, or None."""
    for bom, codec in BOMS:
        if data.startswith(bom):
            return codec, len(bom)
    return None


def is_valid_utf8(data: bytes) -> bool:
    """Strictly validate UTF-8.

    Rejects truncated sequences, bad continuation bytes, overlong forms,
    encoded surrogates (U+D800..U+DFFF) and code points above U+10FFFF.

    Args:
        data (bytes): the bytes to check

    Returns:
        bool: True if `data` is well-formed UTF-8
    """
    try:
        data.decode("utf-8", errors="strict")
    except UnicodeDecodeError:
        return False
    return True


def legacy_encoding(preferred: str = "") -> str:
    """Name of the legacy code page used when bytes are not UTF-8."""
    if preferred:
        try:
            return codecs.lookup(preferred).name
        except LookupError:
            pass
    return locale.getpreferredencoding(False) or "latin-1"


def decode_legacy(data: bytes, encoding: str = "") -> str:
    return data.decode(legacy_encoding(encoding), errors="replace")


def decode_bytes(
    data: bytes,
    policy: NoBomEncoding = NoBomEncoding.AUTO,
    *,
    legacy: str = "",
) -> str:
    """Decode `data` following the BOM / strict UTF-8 / legacy policy.

    A trailing partial code unit after a UTF-16/32 BOM is dropped.

    Args:
        data (bytes): raw file content
        policy (NoBomEncoding): what to do when there is no BOM
        legacy (str): legacy code page name, empty for the platform default

    Returns:
        str: the decoded text, BOM stripped
    """
    if not data:
        return ""

    bom = detect_bom(data)
    if bom is not None:
        codec, length = bom
        payload = data[length:]
        usable = len(payload) - (len(payload) % _CODE_UNIT[codec])
        return payload[:usable].decode(codec, errors="replace")

    if policy is NoBomEncoding.FORCE_LEGACY:
        return decode_legacy(data, legacy)
    if is_valid_utf8(data):
        return data.decode("utf-8")
    return decode_legacy(data, legacy)
