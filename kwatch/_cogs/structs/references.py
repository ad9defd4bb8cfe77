import dataclasses
import re
import urllib.parse
from typing import Collection, FrozenSet, Iterator, Mapping, NewType, Optional, Tuple

# A namespace name as used in the URLs; not to be mixed with other strings.
NamespaceName = NewType('NamespaceName', str)

# A namespace for the API calls; `None` is for cluster-wide calls (or cluster-scoped objects).
Namespace = Optional[NamespaceName]

# The conventional versions only: "v1", "v2beta3", etc. Others look like the groups' parts.
K8S_VERSION_PATTERN = re.compile(r'^v\d+(?:(?:alpha|beta)\d+)?$')


@dataclasses.dataclass(frozen=True, eq=False, repr=False)
class Resource:
    """
    An API resource as served by the cluster: a built-in or a custom one.

    The group, the version and the plural name address it in the API URLs,
    and identify it in comparisons. The rest is from the cluster's discovery,
    and is used to match the user-typed names and to render the objects.
    """

    group: str
    """ ``""`` for the core API (pods, namespaces); ``"apps"``, ``"kwatch.dev"`` for others. """

    version: str
    """ ``"v1"``, ``"v1beta1"``, etc. """

    plural: str
    """ The last part of the URL: ``"pods"``, ``"deployments"``. """

    kind: Optional[str] = None
    """ As in the manifests: ``"Pod"``, ``"Deployment"``. """

    singular: Optional[str] = None
    shortcuts: FrozenSet[str] = frozenset()
    categories: FrozenSet[str] = frozenset()

    namespaced: Optional[bool] = None
    """ ``False`` for the cluster-scoped resources, e.g. namespaces & nodes. """

    preferred: bool = True
    """ Only the preferred versions match the selectors without a version. """

    verbs: FrozenSet[str] = frozenset()
    """ The operations permitted by the API: ``{"get", "list", "watch", ...}``. """

    @property
    def _coordinates(self) -> Tuple[str, str, str]:
        return (self.group, self.version, self.plural)

    def __hash__(self) -> int:
        return hash(self._coordinates)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Resource):
            return NotImplemented
        return self._coordinates == other._coordinates

    def __repr__(self) -> str:
        return '.'.join(part for part in (self.plural, self.version, self.group) if part)

    def __iter__(self) -> Iterator[str]:
        return iter(self._coordinates)

    @property
    def api_version(self) -> str:
        """ The ``apiVersion`` as used in the manifests: "v1", "apps/v1". """
        return f'{self.group}/{self.version}' if self.group else self.version

    def get_url(
            self,
            *,
            server: Optional[str] = None,
            namespace: Namespace = None,
            name: Optional[str] = None,
            params: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        The URL of either the list of objects or of an individual object.

        The namespace is used only for the namespaced resources; without it,
        the list is cluster-wide. An individual namespaced object cannot be
        addressed without a namespace.
        """
        if self.namespaced and namespace is None and name is not None:
            raise ValueError(f"A namespace is required for an object of {self!r}.")

        segments = ['api'] if not self.group else ['apis', self.group]
        segments.append(self.version)
        if self.namespaced and namespace is not None:
            segments.extend(['namespaces', namespace])
        segments.append(self.plural)
        if name is not None:
            segments.append(name)

        url = '/' + '/'.join(segments)
        if params:
            url += '?' + urllib.parse.urlencode(params, encoding='utf-8')
        return url if server is None else server.rstrip('/') + url


@dataclasses.dataclass(frozen=True)
class ResourceIdentity:
    """
    A single object: its resource, namespace and name.

    The namespace of cluster-scoped objects is ignored.
    """
    resource: Resource
    namespace: Namespace
    name: str

    def __str__(self) -> str:
        where = f'{self.namespace}/' if self.namespace and self.resource.namespaced else ''
        return f'{self.resource!r} {where}{self.name}'

    def get_url(self, *, server: Optional[str] = None) -> str:
        namespace = self.namespace if self.resource.namespaced else None
        return self.resource.get_url(server=server, namespace=namespace, name=self.name)


@dataclasses.dataclass(frozen=True)
class Selector:
    """
    A resource as typed by a user, to be resolved to the actual resources.

    Any of the names can be used, as ``kubectl`` accepts them: the plural,
    the singular, the kind, or a shortcut, optionally qualified with
    the version and/or the group: ``pods``, ``po``, ``pods.v1``,
    ``deployments.apps``, ``deployments.v1.apps``, ``Deployment``.
    The split form is also accepted, as in the manifests:
    ``Selector('apps/v1', 'deployments')``.

    Selectors never go to the API: they are only matched locally against
    the resources discovered in the cluster.
    """

    arg1: dataclasses.InitVar[Optional[str]] = None
    arg2: dataclasses.InitVar[Optional[str]] = None
    arg3: dataclasses.InitVar[Optional[str]] = None

    group: Optional[str] = None
    version: Optional[str] = None
    any_name: Optional[str] = None

    def __post_init__(
            self,
            arg1: Optional[str],
            arg2: Optional[str],
            arg3: Optional[str],
    ) -> None:
        group, version, any_name = _parse_selector(arg1, arg2, arg3)
        if not any_name:
            raise TypeError("Unspecific resource with no names.")

        # The dataclass is frozen, so its own trick is used to set the fields.
        object.__setattr__(self, 'group', group)
        object.__setattr__(self, 'version', version)
        object.__setattr__(self, 'any_name', any_name)

    def __repr__(self) -> str:
        values = {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}
        kwtext = ', '.join(f'{key}={val!r}' for key, val in values.items() if val is not None)
        return f'{self.__class__.__name__}({kwtext})'

    def check(self, resource: Resource) -> bool:
        """ Whether the resource is one of those meant by the selector. """
        if self.group is not None and self.group != resource.group:
            return False
        if self.version is None and not resource.preferred:
            return False
        if self.version is not None and self.version != resource.version:
            return False
        name = (self.any_name or '').lower()
        names = {(resource.kind or '').lower(), resource.plural, resource.singular}
        return name in names or name in resource.shortcuts

    def select(self, resources: Collection[Resource]) -> Collection[Resource]:
        matching = {resource for resource in resources if self.check(resource)}

        # The core group wins over the others, as in kubectl:
        # "pods" means "pods.v1", never "pods.v1beta1.metrics.k8s.io".
        core = {resource for resource in matching if not resource.group}
        return core or matching


def _parse_selector(
        arg1: Optional[str],
        arg2: Optional[str],
        arg3: Optional[str],
) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """ Split the positional selector args into the group, the version & the name. """
    if arg3 is not None:
        return arg1, arg2, arg3
    elif arg2 is not None:
        if arg1 is not None and '/' in arg1:  # "apps/v1"
            group, version = arg1.rsplit('/', 1)
            return group, version, arg2
        elif arg1 == 'v1':  # the core API's apiVersion
            return '', 'v1', arg2
        else:
            return arg1, None, arg2
    elif arg1 is None:
        return None, None, None

    name, _, rest = arg1.partition('.')
    if not rest:
        return None, None, name
    maybe_version, _, maybe_group = rest.partition('.')
    if K8S_VERSION_PATTERN.match(maybe_version):
        return maybe_group or None, maybe_version, name
    return rest, None, name
