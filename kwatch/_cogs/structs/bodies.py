"""
All the structures coming from/to the Kubernetes API.

The usage of these classes is spread over the codebase, so they are extracted
into a separate module of such type definitions.

For strict type-checking, they are detailed to the per-field level
(e.g. `TypedDict` instead of just ``Mapping[Any, Any]``) --
as used by the tool. The callers can use arbitrary fields at runtime,
which are not declared in the type definitions at type-checking time.

The objects delivered to the handlers and predicates are the plain dicts
as JSON-decoded from the API: no wrapping, no copying, no views.
"""
import dataclasses
import enum
from typing import Any, List, Mapping, Optional, Union

from typing_extensions import Literal, TypedDict

Labels = Mapping[str, str]
Annotations = Mapping[str, str]

#
# Everything marked "raw" is a plain unwrapped unprocessed data as JSON-decoded
# from Kubernetes API, usually as retrieved in watching or fetching API calls.
# "Input" is a parsed JSON as is, while "event" is an "input" without "errors".
# All non-used payload falls into `Any`, and is not type-checked.
#

RawInputType = Literal['ADDED', 'MODIFIED', 'DELETED', 'ERROR', 'BOOKMARK']


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Labels
    annotations: Annotations
    finalizers: List[str]
    resourceVersion: str
    deletionTimestamp: str
    creationTimestamp: str
    selfLink: str


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]


# A special payload for type==ERROR (this is not a connection or client error).
class RawError(TypedDict, total=False):
    apiVersion: str     # usually: Literal['v1']
    kind: str           # usually: Literal['Status']
    metadata: Mapping[Any, Any]
    code: int
    reason: str
    status: str
    message: str


# As received from the stream before processing the errors and special cases.
class RawInput(TypedDict, total=True):
    type: RawInputType
    object: Union[RawBody, RawError]


class EventKind(str, enum.Enum):
    """
    The kind of change as reported by the watch-stream.

    Everything not recognised (including the future additions to the API)
    is ``UNKNOWN``; the raw type string is kept in :class:`ChangeEvent`.
    """
    ADDED = 'ADDED'
    MODIFIED = 'MODIFIED'
    DELETED = 'DELETED'
    UNKNOWN = 'UNKNOWN'

    def __str__(self) -> str:
        return str(self.value)

    @classmethod
    def from_type(cls, type: Optional[str]) -> "EventKind":
        try:
            return cls(type)
        except ValueError:
            return cls.UNKNOWN


@dataclasses.dataclass(frozen=True)
class ChangeEvent:
    """
    One notification of the watch-stream: what happened and to which object.

    The snapshot is the object's state as reported with the change
    (for deletions, the last known state).
    """
    kind: EventKind
    type: str
    snapshot: RawBody

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "ChangeEvent":
        type_ = str(raw.get('type', ''))
        snapshot = raw.get('object')
        return cls(
            kind=EventKind.from_type(type_),
            type=type_,
            snapshot=snapshot if isinstance(snapshot, Mapping) else {},  # type: ignore
        )


def get_name(body: Mapping[str, Any]) -> Optional[str]:
    meta = body.get('metadata')
    return meta.get('name') if isinstance(meta, Mapping) else None


def get_namespace(body: Mapping[str, Any]) -> Optional[str]:
    meta = body.get('metadata')
    return meta.get('namespace') if isinstance(meta, Mapping) else None


def get_labels(body: Mapping[str, Any]) -> Labels:
    meta = body.get('metadata')
    labels = meta.get('labels') if isinstance(meta, Mapping) else None
    return labels if isinstance(labels, Mapping) else {}
