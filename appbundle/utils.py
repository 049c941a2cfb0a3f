"""
Common utilities shared across the library
"""

# Standard
from typing import Any
import hashlib
import re

# First Party
import alog

# Local
from . import constants

log = alog.use_channel("ABUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

# Maximum length for a kubernetes name
MAX_NAME_LEN = 63

## Dicts #######################################################################


def nested_set(dct: dict, key: str, val: Any):
    """Helper to set values in a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict into which the key will be set
        key:  str
            Key that may contain '.' notation indicating dict nesting
        val:  Any
            The value to place at the nested key
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.setdefault(part, {})
        if not isinstance(dct, dict):
            raise TypeError(
                "Intermediate key {} is not a dict".format(  # pylint: disable=consider-using-f-string
                    constants.NESTED_DICT_DELIM.join(parts[:i])
                )
            )
    dct[parts[-1]] = val


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to search
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                "Intermediate key {} is not a dict".format(  # pylint: disable=consider-using-f-string
                    constants.NESTED_DICT_DELIM.join(parts[:i])
                )
            )
    return dct.get(parts[-1], dflt)


## Names #######################################################################


def sanitize_name(name: str) -> str:
    """Make an arbitrary string conform to the kubernetes DNS-1123 name rules
    while keeping it unique by truncating with a hash suffix when needed.

    Args:
        name:  str
            The raw name

    Returns:
        name:  str
            A lowercase, alphanumeric-and-dash name of at most 63 characters
    """
    clean = re.sub(r"[^a-z0-9-]+", "-", name.lower()).strip("-")
    clean = re.sub(r"-{2,}", "-", clean)
    if len(clean) > MAX_NAME_LEN:
        sha = hashlib.sha256()
        sha.update(name.encode("utf-8"))
        trunc_name = clean[: MAX_NAME_LEN - 5].rstrip("-") + "-" + sha.hexdigest()[:4]
        log.debug2("Truncated name [%s] -> [%s]", clean, trunc_name)
        clean = trunc_name
    return clean
