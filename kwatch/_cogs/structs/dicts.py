"""
Some basic dicts and field-in-a-dict manipulation helpers.
"""
import collections.abc
import enum
from typing import Any, List, Mapping, Optional, Tuple, TypeVar, Union

FieldPath = Tuple[str, ...]
FieldSpec = Union[None, str, FieldPath, List[str]]

_T = TypeVar('_T')


class _UNSET(enum.Enum):
    token = enum.auto()


def parse_field(
        field: FieldSpec,
) -> FieldPath:
    """
    Convert any field into a tuple of nested sub-fields.

    Supported notations:

    * ``None`` (for root of a dict).
    * ``"field.subfield"``
    * ``("field", "subfield")``
    * ``["field", "subfield"]``
    """
    if field is None:
        return tuple()
    elif isinstance(field, str):
        return tuple(field.split('.')) if field else tuple()
    elif isinstance(field, (list, tuple)):
        return tuple(field)
    else:
        raise ValueError(f"Field must be either a str, or a list/tuple. Got {field!r}")


def resolve(
        d: Optional[Mapping[Any, Any]],
        field: FieldSpec,
        default: Union[_T, _UNSET] = _UNSET.token,
) -> Union[Any, _T]:
    """
    Get a nested value from a dict by its dotted path.

    Numeric keys also index into the lists on the way,
    e.g. ``status.containerStatuses.0.ready``.

    With ``default``, any missing key or a non-container in the middle of
    the path gives the default: the objects are often partially populated
    (e.g. no ``status`` while they are being created). Without ``default``,
    a missing key raises ``KeyError`` (or ``IndexError`` for the lists),
    and a non-container on the way raises ``TypeError``.
    """
    path = parse_field(field)
    try:
        result = d
        for key in path:
            if isinstance(result, collections.abc.Mapping):
                result = result[key]
            elif isinstance(result, list) and key.lstrip('-').isdigit():
                result = result[int(key)]
            elif not isinstance(default, _UNSET):
                return default
            else:
                raise TypeError(f"The structure is not a dict with field {key!r}: {result!r}")
        return result
    except (KeyError, IndexError):
        if not isinstance(default, _UNSET):
            return default
        raise
