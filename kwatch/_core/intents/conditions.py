"""
The readiness predicates for the condition poller, as expressed on the CLI.

Supported expressions (as in ``kubectl wait --for``, but simpler):

* ``status.readyReplicas`` -- the field exists and is truthy.
* ``status.phase=Running`` -- the field equals the value (YAML-typed: ``true``, ``3``).
* ``condition=Available`` -- the status condition of that type is ``"True"``.
* ``condition=Available=False`` -- the status condition has that status.

Several expressions are combined: all of them must be satisfied.
"""
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

import yaml

from kwatch._cogs.structs import bodies, dicts

Predicate = Callable[[bodies.RawBody], bool]


class ConditionParseError(ValueError):
    """ Raised when a condition expression cannot be understood. """


def parse_condition(expr: str) -> Predicate:
    expr = expr.strip()
    if not expr:
        raise ConditionParseError("An empty condition expression.")

    path, sep, raw_value = expr.partition('=')
    path = path.strip()
    if not path or path.startswith('.') or path.endswith('.') or '..' in path:
        raise ConditionParseError(f"Malformed field path in {expr!r}.")

    if path.lower() == 'condition':
        cond_type, _, cond_status = raw_value.partition('=')
        if not cond_type:
            raise ConditionParseError(f"No condition type in {expr!r}.")
        return has_condition(cond_type, cond_status or 'True')
    elif sep:
        try:
            value = yaml.safe_load(raw_value) if raw_value else ''
        except yaml.YAMLError:
            value = raw_value
        return field_equals(path, value)
    else:
        return field_is_truthy(path)


def parse_conditions(exprs: Iterable[str]) -> Optional[Predicate]:
    predicates = [parse_condition(expr) for expr in exprs]
    return all_of(predicates) if predicates else None


def field_is_truthy(path: str) -> Predicate:
    def predicate(body: bodies.RawBody) -> bool:
        return bool(dicts.resolve(body, path, None))
    return predicate


def field_equals(path: str, value: Any) -> Predicate:
    def predicate(body: bodies.RawBody) -> bool:
        actual = dicts.resolve(body, path, None)
        if actual == value:
            return True
        # The YAML-typed value can mismatch the actual type: e.g. "1" vs 1.
        return actual is not None and str(actual) == str(value)
    return predicate


def has_condition(cond_type: str, cond_status: str = 'True') -> Predicate:
    def predicate(body: bodies.RawBody) -> bool:
        condition = find_condition(body, cond_type)
        return condition is not None and str(condition.get('status')) == cond_status
    return predicate


def all_of(predicates: Sequence[Predicate]) -> Predicate:
    def predicate(body: bodies.RawBody) -> bool:
        return all(p(body) for p in predicates)
    return predicate


def find_condition(body: bodies.RawBody, cond_type: str) -> Optional[Mapping[str, Any]]:
    conditions = dicts.resolve(body, 'status.conditions', None)
    if not isinstance(conditions, list):
        return None
    for condition in conditions:
        if isinstance(condition, Mapping) and condition.get('type') == cond_type:
            return condition
    return None


def summarize_pod_status(body: bodies.RawBody) -> str:
    """ A brief readiness summary of a pod: Ready, Not Ready, Unknown. """
    condition = find_condition(body, 'Ready')
    status = condition.get('status') if condition is not None else None
    return 'Ready' if status == 'True' else 'Not Ready' if status == 'False' else 'Unknown'


def describe(body: bodies.RawBody) -> str:
    """ A brief description of an object for the change notifications. """
    name = bodies.get_name(body) or ''
    namespace = bodies.get_namespace(body) or ''
    labels = dict(bodies.get_labels(body))
    return f"Name: {name}, Namespace: {namespace}, Labels: {labels}"
