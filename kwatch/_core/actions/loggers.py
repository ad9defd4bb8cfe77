"""
Logging of the observed objects and the CLI's logging setup.

Every observation loop logs via an object logger, which carries the reference
to the observed resource or object in the log records (as ``k8s_ref``).
The formatters use it either as a prefix of the text messages
(``[namespace/name] message``) or as a separate field in the JSON records.
"""
import copy
import enum
import logging
from typing import Any, Dict, MutableMapping, Optional, Tuple, Type, Union

from pythonjsonlogger.core import RESERVED_ATTRS
from pythonjsonlogger.json import JsonFormatter

from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import references

logger = logging.getLogger('kwatch.objects')

# A key for object references in JSON logs, as seen by the log parsers.
DEFAULT_JSON_REFKEY = 'object'

# The highest level of each severity, as the log collectors name them.
SEVERITIES = [
    (logging.DEBUG, 'debug'),
    (logging.INFO, 'info'),
    (logging.WARNING, 'warn'),
    (logging.ERROR, 'error'),
]


class LogFormat(enum.Enum):
    """ Log formats, as specified on CLI. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # not used for formatting, only for detection


class ObjectFormatter(logging.Formatter):
    """ A base for all own formatters, to recognize own handlers. """


class ObjectTextFormatter(ObjectFormatter):
    pass


class ObjectJsonFormatter(ObjectFormatter, JsonFormatter):
    def __init__(self, *args: Any, refkey: Optional[str] = None, **kwargs: Any) -> None:
        # The reference goes under its own key, never as the raw extra field.
        kwargs['reserved_attrs'] = set(kwargs.get('reserved_attrs', RESERVED_ATTRS)) | {'k8s_ref'}
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, **kwargs)
        self.refkey = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: Dict[str, Any],
            record: logging.LogRecord,
            message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        ref = getattr(record, 'k8s_ref', None)
        if ref is not None:
            log_record[self.refkey] = ref
        log_record.setdefault('severity', get_severity(record.levelno))


class ObjectPrefixingMixin(ObjectFormatter):
    def format(self, record: logging.LogRecord) -> str:
        ref = getattr(record, 'k8s_ref', None)
        if ref is not None:
            record = copy.copy(record)  # the other handlers get the original message
            record.msg = f"{make_prefix(ref)} {record.msg}"
        return super().format(record)


class ObjectPrefixingTextFormatter(ObjectPrefixingMixin, ObjectTextFormatter):
    pass


class ObjectPrefixingJsonFormatter(ObjectPrefixingMixin, ObjectJsonFormatter):
    pass


def get_severity(levelno: int) -> str:
    for threshold, severity in SEVERITIES:
        if levelno <= threshold:
            return severity
    return 'fatal'


def make_prefix(ref: Dict[str, Any]) -> str:
    """ ``[namespace/name]`` for the objects, ``[namespace/resource]`` for the watches. """
    target = ref.get('name') or ref.get('resource') or ''
    namespace = ref.get('namespace')
    return f"[{namespace}/{target}]" if namespace else f"[{target}]"


class ObjectLogger(typedefs.LoggerAdapter):
    """
    A logger/adapter to carry the object identifiers for formatting.

    Constructed for each observation loop: for the watch loops, it refers
    to the watched resource (and namespace); for the pollers, to the object.
    """

    def __init__(
            self,
            *,
            resource: references.Resource,
            namespace: references.Namespace = None,
            name: Optional[str] = None,
            logger: Union[logging.Logger, typedefs.LoggerAdapter] = logger,
    ) -> None:
        k8s_ref = {
            'resource': repr(resource),
            'apiVersion': resource.api_version,
            'kind': resource.kind,
            'namespace': namespace,
            'name': name,
        }
        super().__init__(logger, {'k8s_ref': k8s_ref})  # type: ignore

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> Tuple[str, MutableMapping[str, Any]]:
        # The message's own extras are kept, not replaced by the adapter's.
        kwargs['extra'] = {**(self.extra or {}), **kwargs.get('extra', {})}
        return msg, kwargs


class _OwnStreamHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """
    Marks the handlers installed by :func:`configure`, to replace them on re-runs.

    Repeated runs happen in the CLI tests, where the previous handlers write
    into the closed streams of the previous runs' output interceptors.
    """


def configure(
        debug: Optional[bool] = None,
        verbose: Optional[bool] = None,
        quiet: Optional[bool] = None,
        log_format: LogFormat = LogFormat.FULL,
        log_prefix: Optional[bool] = False,
        log_refkey: Optional[str] = None,
        log_level: Optional[int] = None,
) -> None:
    if debug or verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = log_level if log_level is not None else logging.INFO

    handler = _OwnStreamHandler()
    handler.setFormatter(make_formatter(log_format=log_format,
                                        log_prefix=log_prefix,
                                        log_refkey=log_refkey))
    root = logging.getLogger()
    root.handlers[:] = [h for h in root.handlers if not isinstance(h, _OwnStreamHandler)]
    root.addHandler(handler)
    root.setLevel(level)

    # The event loop's internals are only shown in the debug mode.
    asyncio_logger = logging.getLogger('asyncio')
    asyncio_logger.propagate = bool(debug)
    if not debug:
        asyncio_logger.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: Union[LogFormat, str] = LogFormat.FULL,
        log_prefix: Optional[bool] = False,
        log_refkey: Optional[str] = None,
) -> ObjectFormatter:
    if log_prefix is None:
        log_prefix = log_format is not LogFormat.JSON

    cls: Type[ObjectFormatter]
    if log_format is LogFormat.JSON:
        cls = ObjectPrefixingJsonFormatter if log_prefix else ObjectJsonFormatter
        return cls(refkey=log_refkey)  # type: ignore[call-arg]
    elif isinstance(log_format, (LogFormat, str)):
        fmt = log_format.value if isinstance(log_format, LogFormat) else log_format
        cls = ObjectPrefixingTextFormatter if log_prefix else ObjectTextFormatter
        return cls(fmt)
    else:
        raise ValueError(f"Unsupported log format: {log_format!r}")
