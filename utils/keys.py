"""Fixed AES keys of the NCM format."""
from functools import cache


CORE_KEY_HEX = "687A4852416D736F356B496E62617857"
META_KEY_HEX = "2331346C6A6B5F215C5D2630553C2728"


@cache
def core_key() -> bytes:
    """Key wrapping the master key section."""
    return bytes.fromhex(CORE_KEY_HEX)


@cache
def meta_key() -> bytes:
    """Key wrapping the metadata section."""
    return bytes.fromhex(META_KEY_HEX)
