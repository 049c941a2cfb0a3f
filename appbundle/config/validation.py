"""
Validation of the loaded library config against config_validation.yaml

Each leaf of the validation file is a mapping with a `type` naming one of the
checks below, the keyword arguments for that check, and an optional
`optional` flag that lets the value be null. Any other mapping is a nested
section of the config.
"""

# Standard
from typing import Any, Callable, Dict, List, Optional, Tuple

# First Party
import aconfig
import alog

# Local
from .. import constants
from ..utils import nested_get  # pylint: disable=cyclic-import

log = alog.use_channel("CONFG")

## Checks ######################################################################

# pylint: disable=redefined-builtin


def _in_bounds(value, low, high) -> bool:
    return (low is None or value >= low) and (high is None or value <= high)


def _check_number(value: Any, min=None, max=None) -> bool:
    # bool is an int subclass but never a valid number here
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return _in_bounds(value, min, max)


def _check_int(value: Any, min=None, max=None) -> bool:
    return isinstance(value, int) and _check_number(value, min=min, max=max)


def _check_str(value: Any, min_len=None, max_len=None) -> bool:
    return isinstance(value, str) and _in_bounds(len(value), min_len, max_len)


def _check_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _check_enum(value: Any, values=None) -> bool:
    assert isinstance(values, list) and values, "Must specify at least one enum value!"
    return value in values


# pylint: enable=redefined-builtin

_CHECKS: Dict[str, Callable[..., bool]] = {
    "number": _check_number,
    "int": _check_int,
    "str": _check_str,
    "bool": _check_bool,
    "enum": _check_enum,
}

## Public ######################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get a list of any params that are invalid

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding validation setup

    Returns:
        invalid_params:  List[str]
            The dotted keys of all parameters that fail validation
    """
    invalid_params = []
    for key, (check, optional, kwargs) in _collect_checks(validation_config).items():
        value = nested_get(config, key)
        if optional and value is None:
            continue
        if not check(value, **kwargs):
            log.warning("Found invalid config key [%s]: %s", key, value)
            invalid_params.append(key)
    return invalid_params


## Implementation ##############################################################


def _collect_checks(
    validation_config: dict, prefix_parts: Optional[List[str]] = None
) -> Dict[str, Tuple[Callable[..., bool], bool, dict]]:
    """Walk the validation file and map each dotted key to its check, its
    optional flag, and the arguments for the check
    """
    checks = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        if not isinstance(val, dict):
            continue
        key_parts = prefix_parts + [key]
        check = _CHECKS.get(val.get("type"))
        if check is None:
            checks.update(_collect_checks(val, key_parts))
            continue
        kwargs = {
            arg: arg_val
            for arg, arg_val in val.items()
            if arg not in ("type", "optional")
        }
        log.debug3("Found %s check for %s", val["type"], key_parts)
        checks[constants.NESTED_DICT_DELIM.join(key_parts)] = (
            check,
            bool(val.get("optional", False)),
            kwargs,
        )
    return checks
