import asyncio
import dataclasses
import datetime
import functools
import json
import logging
from typing import Any, Awaitable, Callable, Collection, Dict, Iterable, List, \
                   Optional, Sequence, TextIO, Tuple, TypeVar

import aiohttp
import click
import iso8601
import yaml

from kwatch._cogs.aiokits import aioflags, aiotasks, aiotime
from kwatch._cogs.clients import errors, login, resources
from kwatch._cogs.configs import configuration, loading
from kwatch._cogs.helpers import versions
from kwatch._cogs.structs import bodies, credentials, references
from kwatch._core.actions import loggers
from kwatch._core.intents import conditions
from kwatch._core.reactor import dispatching, running, waiting, watching

logger = logging.getLogger(__name__)

_T = TypeVar('_T')

# The errors that are reported as the CLI failures rather than as the tracebacks.
REPORTABLE_ERRORS: Tuple[type, ...] = (
    errors.APIError,
    watching.WatchError,
    waiting.WaitError,
    credentials.LoginError,
    resources.ResourceNotFoundError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)

# The exit code of a wait interrupted before its outcome is known, as for SIGINT.
EXIT_CANCELLED = 130


@dataclasses.dataclass()
class CLIControls:
    """ Controls, which are impossible to pass via CLI: for embedding & testing. """
    stop_flag: Optional[aioflags.Flag] = None
    settings: Optional[configuration.Settings] = None
    connection: Optional[credentials.ConnectionInfo] = None


@dataclasses.dataclass(frozen=True)
class Scope:
    """ Everything a command needs to talk to the cluster, as resolved from the options. """
    settings: configuration.Settings
    connection: credentials.ConnectionInfo
    namespace: references.Namespace
    stop_flag: Optional[aioflags.Flag] = None

    def namespace_for(self, resource: references.Resource) -> references.Namespace:
        return self.namespace if resource.namespaced else None

    def execute(
            self,
            fn: Callable[[resources.ResourceClient, aiotasks.Future], Awaitable[_T]],
    ) -> _T:
        """
        Run the command's activity with an open client, until done or interrupted.
        """
        async def activity(stopper: aioflags.Flag) -> _T:
            async with resources.ResourceClient(self.connection, settings=self.settings) as client:
                return await fn(client, stopper)  # type: ignore

        try:
            return running.run(activity, stop_flag=self.stop_flag)
        except REPORTABLE_ERRORS as e:
            raise click.ClickException(str(e) or repr(e)) from e


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


class DurationParamType(click.ParamType):
    name = 'duration'

    def __init__(self, *, positive: bool = False) -> None:
        super().__init__()
        self.positive = positive

    def convert(self, value: Any, param: Any, ctx: Any) -> Optional[float]:
        duration: Optional[float]
        if value is None or isinstance(value, float):
            duration = value
        else:
            try:
                duration = loading.parse_duration(value)
            except loading.ConfigError as e:
                self.fail(str(e), param, ctx)
        if self.positive and duration is not None and duration <= 0:
            self.fail(f"The duration must be positive, got {value!r}.", param, ctx)
        return duration


DURATION = DurationParamType()
POSITIVE_DURATION = DurationParamType(positive=True)


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default=None)
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: Optional[loggers.LogFormat] = None,
                log_prefix: Optional[bool] = None,
                log_refkey: Optional[str] = None,
                *args: Any, **kwargs: Any) -> Any:
        options = dict(debug=debug, verbose=verbose, quiet=quiet,
                       log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        click.get_current_context().meta['kwatch.logging'] = options
        _configure_logging(options)
        return fn(*args, **kwargs)

    return wrapper


def cluster_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to resolve the settings, the credentials & the namespace. """
    @click.option('--config', 'config_path', type=click.Path(dir_okay=False),
                  envvar='KWATCH_CONFIG', help="A YAML file with the settings.")
    @click.option('--kubeconfig', type=str, help="A kubeconfig file (or several).")
    @click.option('--context', 'kube_context', type=str, help="A kubeconfig's context.")
    @click.option('-n', '--namespace', type=str)
    @click.option('-A', '--all-namespaces', 'clusterwide', is_flag=True)
    @click.make_pass_decorator(CLIControls, ensure=True)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(__controls: CLIControls,
                *args: Any,
                config_path: Optional[str],
                kubeconfig: Optional[str],
                kube_context: Optional[str],
                namespace: Optional[str],
                clusterwide: bool,
                **kwargs: Any) -> Any:
        if namespace and clusterwide:
            raise click.UsageError("Either --namespace or --all-namespaces can be used, not both.")

        # Every invocation gets its own settings: the embedder's ones are the defaults only.
        base = _copy_settings(__controls.settings) if __controls.settings is not None else None
        try:
            settings = loading.load_settings(config_path, settings=base)
        except loading.ConfigError as e:
            raise click.BadParameter(str(e), param_hint='--config') from e
        if kubeconfig is not None:
            settings.kubernetes.kubeconfig = kubeconfig
        if kube_context is not None:
            settings.kubernetes.context = kube_context

        # The config file's logging settings apply unless overridden on the command line.
        logging_opts = click.get_current_context().meta.get('kwatch.logging')
        if logging_opts is not None and config_path is not None:
            _configure_logging(logging_opts, settings=settings)

        if __controls.connection is not None:
            connection = __controls.connection
        else:
            try:
                connection = login.login(
                    kubeconfig=settings.kubernetes.kubeconfig,
                    context=settings.kubernetes.context,
                )
            except credentials.LoginError as e:
                raise click.ClickException(str(e)) from e

        scope = Scope(
            settings=settings,
            connection=connection,
            namespace=None if clusterwide else references.NamespaceName(
                namespace or
                settings.kubernetes.namespace or
                connection.default_namespace or
                'default'
            ),
            stop_flag=__controls.stop_flag,
        )
        return fn(scope, *args, **kwargs)

    return wrapper


def _copy_settings(settings: configuration.Settings) -> configuration.Settings:
    # The executor is shared as is: its threads cannot be copied.
    return dataclasses.replace(settings, **{
        field.name: dataclasses.replace(getattr(settings, field.name))
        for field in dataclasses.fields(settings)
        if field.name != 'execution'
    })


def _configure_logging(
        options: Dict[str, Any],
        settings: Optional[configuration.Settings] = None,
) -> None:
    log_format = options['log_format']
    if log_format is None and settings is not None:
        log_format = loggers.LogFormat[settings.logging.format.upper()]
    loggers.configure(
        debug=options['debug'],
        verbose=options['verbose'],
        quiet=options['quiet'],
        log_format=log_format if log_format is not None else loggers.LogFormat.FULL,
        log_prefix=options['log_prefix'],
        log_refkey=options['log_refkey'],
        log_level=settings.logging.level if settings is not None else None,
    )


async def _discover(client: resources.ResourceClient, name: str) -> references.Resource:
    try:
        selector = references.Selector(name)
    except TypeError as e:
        raise click.UsageError(f"Malformed resource name {name!r}: {e}") from e
    try:
        return await client.discover(selector)
    except resources.AmbiguousResourceError as e:
        raise click.UsageError(str(e)) from e


def _override(section: Any, **values: Any) -> None:
    for key, value in values.items():
        if value is not None:
            setattr(section, key, value)


def _echo_change(kind: bodies.EventKind, output: str, body: bodies.RawBody) -> None:
    if output == 'json':
        click.echo(json.dumps({'type': kind.value, 'object': body}, default=str))
    else:
        click.echo(f"[{kind.value}] {conditions.describe(body)}")


def format_age(created: Optional[str], now: Optional[datetime.datetime] = None) -> str:
    """ The object's age in the ``kubectl`` style: 45s, 12m, 5h, 3d. """
    if not created:
        return '<unknown>'
    try:
        timestamp = iso8601.parse_date(created)
    except iso8601.ParseError:
        return '<unknown>'
    now = now if now is not None else datetime.datetime.now(datetime.timezone.utc)
    seconds = max(0, int((now - timestamp).total_seconds()))
    return (f"{seconds}s" if seconds < 2 * 60 else
            f"{seconds // 60}m" if seconds < 2 * 60 * 60 else
            f"{seconds // 3600}h" if seconds < 2 * 24 * 60 * 60 else
            f"{seconds // 86400}d")


def format_table(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    rows = [list(headers)] + [list(row) for row in rows]
    widths = [max(len(row[idx]) for row in rows) for idx in range(len(headers))]
    lines = ['   '.join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip()
             for row in rows]
    return '\n'.join(lines)


@click.command()
@logging_options
@cluster_options
@click.option('-l', '--selector', 'label_selector', type=str)
@click.option('--field-selector', type=str)
@click.option('--retry-interval', type=DURATION)
@click.option('--retry-timeout', type=DURATION)
@click.option('--attempt-timeout', type=DURATION)
@click.option('--backoff-factor', type=click.FloatRange(min=1.0))
@click.option('--backoff-limit', type=DURATION)
@click.option('-o', '--output', type=click.Choice(['text', 'json']), default='text')
@click.argument('resource')
def watch(
        scope: Scope,
        resource: str,
        label_selector: Optional[str],
        field_selector: Optional[str],
        retry_interval: Optional[float],
        retry_timeout: Optional[float],
        attempt_timeout: Optional[float],
        backoff_factor: Optional[float],
        backoff_limit: Optional[float],
        output: str,
) -> None:
    """ Watch the resource changes and print them as they happen. """
    settings = scope.settings
    _override(settings.watching,
              retry_interval=retry_interval, retry_timeout=retry_timeout,
              attempt_timeout=attempt_timeout, backoff_factor=backoff_factor,
              backoff_limit=backoff_limit)
    handlers = dispatching.HandlerSet(
        on_add=functools.partial(_echo_change, bodies.EventKind.ADDED, output),
        on_modify=functools.partial(_echo_change, bodies.EventKind.MODIFIED, output),
        on_delete=functools.partial(_echo_change, bodies.EventKind.DELETED, output),
    )

    async def activity(client: resources.ResourceClient, stopper: aiotasks.Future) -> None:
        selected = await _discover(client, resource)
        spec = watching.WatchSpec.from_settings(
            settings,
            resource=selected,
            namespace=scope.namespace_for(selected),
            handlers=handlers,
            label_selector=label_selector,
            field_selector=field_selector,
        )
        logger.info(f"Watching {selected} {spec.where}.")
        result = await watching.watch_resource(spec, client=client, stopper=stopper,
                                               settings=settings)
        logger.info(f"Stopped watching after {result.events} event(s) "
                    f"in {result.sessions} session(s), with {result.failures} failure(s).")

    scope.execute(activity)


@click.command()
@logging_options
@cluster_options
@click.option('--for', 'exprs', multiple=True,
              help="A condition: path, path=value, or condition=Type. Repeatable.")
@click.option('--interval', type=POSITIVE_DURATION)
@click.option('--timeout', type=DURATION)
@click.argument('resource')
@click.argument('name')
def wait(
        scope: Scope,
        resource: str,
        name: str,
        exprs: Collection[str],
        interval: Optional[float],
        timeout: Optional[float],
) -> None:
    """ Wait until the object satisfies the conditions (or just exists). """
    settings = scope.settings
    _override(settings.waiting, interval=interval, timeout=timeout)
    try:
        predicate = conditions.parse_conditions(exprs) or waiting.exists
    except conditions.ConditionParseError as e:
        raise click.BadParameter(str(e), param_hint='--for') from e

    async def activity(
            client: resources.ResourceClient,
            stopper: aiotasks.Future,
    ) -> waiting.WaitResult:
        selected = await _discover(client, resource)
        identity = _identify(scope, selected, name)
        spec = waiting.WaitSpec(
            identity=identity,
            predicate=predicate,
            interval=settings.waiting.interval,
            timeout=settings.waiting.timeout,
        )
        result = await waiting.wait_for_condition(spec, client=client, stopper=stopper,
                                                  settings=settings)
        if result.state is not waiting.PollerState.CANCELLED:
            result.raise_for_state()
            click.echo(f"{selected.plural}/{name} condition met")
        return result

    result = scope.execute(activity)
    if result.state is waiting.PollerState.CANCELLED:
        click.echo(f"The wait is cancelled after {result.polls} poll(s).", err=True)
        click.get_current_context().exit(EXIT_CANCELLED)


@click.command()
@logging_options
@cluster_options
@click.option('-o', '--output', type=click.Choice(['yaml', 'json']), default='yaml')
@click.argument('resource')
@click.argument('name')
def get(scope: Scope, resource: str, name: str, output: str) -> None:
    """ Print one object. """
    async def activity(client: resources.ResourceClient, stopper: aiotasks.Future) -> None:
        selected = await _discover(client, resource)
        body = await client.fetch(_identify(scope, selected, name))
        if output == 'json':
            click.echo(json.dumps(body, indent=2))
        else:
            click.echo(yaml.safe_dump(dict(body), default_flow_style=False).rstrip())

    scope.execute(activity)


@click.command(name='list')
@logging_options
@cluster_options
@click.option('-l', '--selector', 'label_selector', type=str)
@click.option('--field-selector', type=str)
@click.argument('resource')
def list_(
        scope: Scope,
        resource: str,
        label_selector: Optional[str],
        field_selector: Optional[str],
) -> None:
    """ List the objects in a table: namespace, name, age. """
    async def activity(client: resources.ResourceClient, stopper: aiotasks.Future) -> None:
        selected = await _discover(client, resource)
        items = await client.list(selected, scope.namespace_for(selected),
                                  label_selector=label_selector, field_selector=field_selector)
        if not items:
            click.echo("No resources found.", err=True)
            return
        rows: List[List[str]] = []
        for body in items:
            meta = body.get('metadata', {})
            age = format_age(meta.get('creationTimestamp'))
            if selected.namespaced:
                rows.append([meta.get('namespace', ''), meta.get('name', ''), age])
            else:
                rows.append([meta.get('name', ''), age])
        headers = ['NAMESPACE', 'NAME', 'AGE'] if selected.namespaced else ['NAME', 'AGE']
        click.echo(format_table(headers, sorted(rows)))

    scope.execute(activity)


@click.command()
@logging_options
@cluster_options
@click.argument('resource')
@click.argument('name')
def delete(scope: Scope, resource: str, name: str) -> None:
    """ Delete one object (without waiting for its disappearance). """
    async def activity(client: resources.ResourceClient, stopper: aiotasks.Future) -> None:
        selected = await _discover(client, resource)
        await client.delete(_identify(scope, selected, name))
        click.echo(f"{selected.plural}/{name} deleted")

    scope.execute(activity)


@click.command()
@logging_options
@cluster_options
@click.option('-f', '--filename', 'file', type=click.File('r'), required=True)
def apply(scope: Scope, file: TextIO) -> None:
    """ Create the objects from a YAML file, or replace them if they exist. """
    try:
        documents = [doc for doc in yaml.safe_load_all(file) if doc is not None]
    except yaml.YAMLError as e:
        raise click.BadParameter(f"Cannot parse the manifest: {e}", param_hint='-f') from e
    for doc in documents:
        if not isinstance(doc, dict) or not doc.get('apiVersion') or not doc.get('kind'):
            raise click.BadParameter("Every manifest must have apiVersion & kind.", param_hint='-f')
        if not doc.get('metadata', {}).get('name'):
            raise click.BadParameter("Every manifest must have metadata.name.", param_hint='-f')

    async def activity(client: resources.ResourceClient, stopper: aiotasks.Future) -> None:
        for doc in documents:
            selected = await client.discover_kind(doc['apiVersion'], doc['kind'])
            name = doc['metadata']['name']
            namespace = doc['metadata'].get('namespace') or scope.namespace_for(selected)
            try:
                await client.create(selected, doc, namespace=namespace)
            except errors.APIConflictError:
                identity = references.ResourceIdentity(selected, namespace, name)
                await client.replace(identity, doc)
                click.echo(f"{selected.plural}/{name} configured")
            else:
                click.echo(f"{selected.plural}/{name} created")

    scope.execute(activity)


@click.command()
@logging_options
@cluster_options
@click.option('-l', '--selector', 'label_selector', type=str)
@click.option('--interval', type=POSITIVE_DURATION, default='5s')
def pods(scope: Scope, label_selector: Optional[str], interval: float) -> None:
    """ Print the readiness of the pods periodically, until interrupted. """
    async def activity(client: resources.ResourceClient, stopper: aiotasks.Future) -> None:
        selected = await _discover(client, 'pods.v1')
        namespace = scope.namespace_for(selected)
        where = f'in {namespace!r}' if namespace is not None else 'cluster-wide'
        logger.info(f"Monitoring the pods' health {where}.")
        while not stopper.done():
            try:
                items = await client.list(selected, namespace, label_selector=label_selector)
            except (errors.APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Failed to list the pods: {e!r}")
            else:
                for body in items:
                    click.echo(f"Pod {bodies.get_name(body)}: "
                               f"{conditions.summarize_pod_status(body)}")
            await aiotime.sleep(interval, wakeup=stopper)

    scope.execute(activity)


def _identify(
        scope: Scope,
        resource: references.Resource,
        name: str,
) -> references.ResourceIdentity:
    namespace = scope.namespace_for(resource)
    if resource.namespaced and namespace is None:
        raise click.UsageError(f"A namespace is required for {resource}: use -n/--namespace.")
    return references.ResourceIdentity(resource, namespace, name)


# The explicit table of all commands: built once, passed into the entry point.
COMMANDS: Tuple[click.Command, ...] = (watch, wait, get, list_, delete, apply, pods)


def make_cli(commands: Iterable[click.Command] = COMMANDS) -> click.Group:
    """
    Build the CLI group from the commands, as a fresh object every time.
    """
    group = click.Group(
        name='kwatch',
        commands=list(commands),
        context_settings=dict(auto_envvar_prefix='KWATCH'),
        help="Watch & wait for the Kubernetes resources.",
    )
    version = click.version_option(version=versions.version or 'unknown', prog_name='kwatch')
    return version(group)


def main() -> None:
    cli = make_cli(COMMANDS)
    cli()
