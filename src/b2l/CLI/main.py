"""
Command Line Interface for B2L.
"""
import json
import os
import shlex
import click
from ..BUILDERS.image_builder import ImageBuilder
from ..CONVERTERS.to_dockerfile import DockerfileConverter
from ..CONVERTERS.to_systemd import SystemdConverter, unit_volumes
from ..MANAGERS.container_manager import ContainerManager
from ..MANAGERS.volume_manager import VolumeManager
from ..MODELS.orchestration_config import LaunchSettings
from ..MODELS.service_definition import VolumeMount
from ..PARSERS.config_parser import ConfigParser
from ..REGISTRY.base_images import BaseImageCatalog
from ..REGISTRY.image_store import ImageStore
from ..errors import B2LError


def _fail(ctx, error: B2LError):
    click.echo(f"Error: {error}")
    ctx.exit(error.exit_code)


def _pairs(values, option: str) -> dict:
    result = {}
    for value in values:
        if '=' not in value:
            raise click.BadParameter(f"expected KEY=VALUE, got '{value}'", param_hint=option)
        key, val = value.split('=', 1)
        result[key] = val
    return result


@click.group()
@click.option('--context', '-C', default='.', type=click.Path(file_okay=False),
              help='Build context directory')
@click.option('--config', 'config_file', default=None, help='Config file (default: b2l.yml in the context)')
@click.option('--home', default=None, help='State directory for images, containers and volumes')
@click.pass_context
def cli(ctx, context, config_file, home):
    """
    B2L - Build to Launch.

    Builds images from a build manifest and launches them as native processes.
    """
    ctx.ensure_object(dict)
    ctx.obj['context'] = os.path.abspath(context)
    try:
        config = ConfigParser.for_context(context).load(context, config_file)
    except B2LError as e:
        _fail(ctx, e)
    if home:
        config.home = os.path.abspath(home)
    ctx.obj['config'] = config


@cli.command()
@click.option('--tag', '-t', default=None, help='Image name (default: context directory name)')
@click.option('--file', '-f', 'manifest', default=None, help='Manifest file in the context')
@click.option('--no-cache', is_flag=True, help='Rebuild even if an identical image exists')
@click.option('--base-image', default=None, help='Override the base image')
@click.option('--package', 'packages', multiple=True, help='Override the system packages (repeatable)')
@click.option('--build-command', default=None, help='Override the release build command')
@click.option('--launch-config', default=None, help='Override the --config path of the default command')
@click.option('--launch-log', default=None, help='Override the --log path of the default command')
@click.pass_context
def build(ctx, tag, manifest, no_cache, base_image, packages, build_command, launch_config, launch_log):
    """Build an image from the context."""
    context = ctx.obj['context']
    config = ctx.obj['config']
    update = {}
    if base_image:
        update['base_image'] = base_image
    if packages:
        update['system_packages'] = list(packages)
    if build_command:
        try:
            update['build_command'] = shlex.split(build_command)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint='--build-command')
    if launch_config or launch_log:
        update['launch'] = LaunchSettings(config_path=launch_config, log_config_path=launch_log)
    config = config.model_copy(update=update)

    name = tag or os.path.basename(context)
    builder = ImageBuilder(config)
    try:
        image = builder.build(
            context,
            name,
            manifest=builder.load_manifest(context, manifest),
            use_cache=not no_cache,
            log_file=os.path.join(config.home, "logs", f"build-{name.replace('/', '-')}.log"),
        )
    except B2LError as e:
        _fail(ctx, e)
    click.echo(f"Image {image.name} built: {image.id}")


@cli.command()
@click.option('--file', '-f', 'manifest', default=None, help='Manifest file in the context')
@click.pass_context
def plan(ctx, manifest):
    """Show the build stages without running them."""
    builder = ImageBuilder(ctx.obj['config'])
    try:
        loaded = builder.load_manifest(ctx.obj['context'], manifest)
    except B2LError as e:
        _fail(ctx, e)
    for number, stage in enumerate(builder.plan(loaded), start=1):
        click.echo(f"{number}. {stage}")
    click.echo(f"Default command: {' '.join(loaded.default_command())}")


@cli.command()
@click.pass_context
def images(ctx):
    """List built images."""
    store = ImageStore(ctx.obj['config'].home)
    click.echo(f"{'NAME':25} {'ID':14} {'BASE':20} {'SIZE':>10}  CREATED")
    for image in store.list_images():
        size = store.format_size(image.size or 0)
        click.echo(f"{image.name:25} {image.id:14} {image.base_image:20} {size:>10}  {image.created}")


@cli.command()
@click.argument('image')
@click.pass_context
def inspect(ctx, image):
    """Show an image's metadata."""
    try:
        record = ImageStore(ctx.obj['config'].home).get(image)
    except B2LError as e:
        _fail(ctx, e)
    click.echo(json.dumps(record.model_dump(), indent=2))


@cli.command()
@click.argument('image')
@click.pass_context
def rmi(ctx, image):
    """Remove an image."""
    try:
        record = ImageStore(ctx.obj['config'].home).remove(image)
    except B2LError as e:
        _fail(ctx, e)
    click.echo(f"Removed {record.id}")


@cli.command(context_settings={'ignore_unknown_options': True, 'allow_interspersed_args': False})
@click.option('--detach', '-d', is_flag=True, help='Run in background')
@click.option('--name', default=None, help='Container name')
@click.option('--volume', '-v', 'volumes', multiple=True, help='Bind SOURCE:TARGET (repeatable)')
@click.option('--env', '-e', 'env', multiple=True, help='Set KEY=VALUE (repeatable)')
@click.option('--env-file', 'env_files', multiple=True, help='Read variables from a .env file')
@click.argument('image')
@click.argument('command', nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(ctx, detach, name, volumes, env, env_files, image, command):
    """Launch an image; COMMAND replaces its default command."""
    try:
        mounts = [VolumeMount.parse(v) for v in volumes]
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--volume')
    variables = _pairs(env, '--env')
    command = list(command)
    if command[:1] == ['--']:
        command = command[1:]

    manager = ContainerManager(ctx.obj['config'])
    try:
        container = manager.run(image,
                                command=command or None,
                                volumes=mounts,
                                env=variables,
                                env_files=list(env_files),
                                name=name,
                                detach=detach)
    except B2LError as e:
        _fail(ctx, e)

    if detach:
        click.echo(f"{container.name} started (pid {container.pid})")
        return
    code = container.exit_code or 0
    if code < 0:
        # killed by a signal
        code = 128 - code
    ctx.exit(code)


@cli.command()
@click.pass_context
def ps(ctx):
    """List containers and their state."""
    manager = ContainerManager(ctx.obj['config'])
    click.echo(f"{'NAME':25} {'ID':14} {'IMAGE':20} {'STATE':18} {'PID':>7} {'EXIT':>5}")
    for c in manager.list():
        pid = str(c.pid) if c.pid else '-'
        exit_code = str(c.exit_code) if c.exit_code is not None else '-'
        click.echo(f"{c.name:25} {c.id:14} {c.image_name:20} {c.state.value:18} {pid:>7} {exit_code:>5}")


@cli.command()
@click.option('--time', '-t', 'timeout', type=int, default=None, help='Seconds before SIGKILL')
@click.argument('container')
@click.pass_context
def stop(ctx, timeout, container):
    """Stop a running container."""
    try:
        stopped = ContainerManager(ctx.obj['config']).stop(container, timeout)
    except B2LError as e:
        _fail(ctx, e)
    click.echo(f"{stopped.name} {stopped.state.value}")


@cli.command()
@click.argument('container')
@click.pass_context
def rm(ctx, container):
    """Remove a stopped container."""
    try:
        removed = ContainerManager(ctx.obj['config']).remove(container)
    except B2LError as e:
        _fail(ctx, e)
    click.echo(f"Removed {removed.name}")


@cli.command()
@click.option('--follow', '-f', is_flag=True, help='Keep printing new output')
@click.argument('container')
@click.pass_context
def logs(ctx, follow, container):
    """Print the output of a detached container."""
    try:
        ContainerManager(ctx.obj['config']).logs(container, follow=follow)
    except B2LError as e:
        _fail(ctx, e)


@cli.group()
@click.pass_context
def base(ctx):
    """Manage base environments."""
    config = ctx.obj['config']
    try:
        ctx.obj['catalog'] = BaseImageCatalog(os.path.join(config.home, "base-images.json"),
                                              config.base_images)
    except B2LError as e:
        _fail(ctx, e)


@base.command('add')
@click.argument('reference')
@click.option('--root', default=None, type=click.Path(exists=True, file_okay=False),
              help='Toolchain prefix; its bin/ goes first on PATH')
@click.option('--env', '-e', 'env', multiple=True, help='Set KEY=VALUE for build stages')
@click.pass_context
def base_add(ctx, reference, root, env):
    """Register a base environment."""
    try:
        ctx.obj['catalog'].register(reference, root=root, env=_pairs(env, '--env'))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='REFERENCE')


@base.command('ls')
@click.pass_context
def base_ls(ctx):
    """List base environments."""
    click.echo(f"{'REFERENCE':30} ROOT")
    for entry in ctx.obj['catalog'].list():
        click.echo(f"{entry.reference:30} {entry.root or '-'}")


@base.command('rm')
@click.argument('reference')
@click.pass_context
def base_rm(ctx, reference):
    """Unregister a base environment."""
    if ctx.obj['catalog'].unregister(reference):
        click.echo(f"Removed {reference}")
    else:
        click.echo(f"Error: base image {reference} is not registered")
        ctx.exit(1)


@cli.group()
@click.pass_context
def volume(ctx):
    """Manage named volumes."""
    ctx.obj['volumes'] = VolumeManager(ctx.obj['config'].home)


@volume.command('ls')
@click.pass_context
def volume_ls(ctx):
    """List named volumes."""
    manager = ctx.obj['volumes']
    store = ImageStore(ctx.obj['config'].home)
    click.echo(f"{'NAME':30} {'SIZE':>10}")
    for vol in manager.list_volumes():
        click.echo(f"{vol.name:30} {store.format_size(manager.get_volume_size(vol.name)):>10}")


@volume.command('rm')
@click.option('--force', '-f', is_flag=True, help='Remove even if the volume holds data')
@click.argument('name')
@click.pass_context
def volume_rm(ctx, force, name):
    """Remove a named volume."""
    if ctx.obj['volumes'].remove_volume(name, force=force):
        click.echo(f"Removed {name}")
    else:
        click.echo(f"Error: volume {name} does not exist or is not empty (use --force)")
        ctx.exit(1)


@volume.command('prune')
@click.pass_context
def volume_prune(ctx):
    """Remove empty volumes no container or unit uses."""
    keep = [v.source for c in ContainerManager(ctx.obj['config']).list() for v in c.volumes]
    keep += unit_volumes(ctx.obj['config'].home)
    result = ctx.obj['volumes'].prune(keep=keep)
    click.echo(f"Removed {result['volumes_removed']} volume(s)")


@cli.command()
@click.option('--type', '-t', 'kind', type=click.Choice(['dockerfile', 'systemd']), default='dockerfile')
@click.option('--out', '-o', default='dist', help='Output directory')
@click.option('--file', '-f', 'manifest', default=None, help='Manifest file in the context')
@click.argument('image', required=False)
@click.pass_context
def convert(ctx, kind, out, manifest, image):
    """Export the effective manifest, or a systemd unit for IMAGE."""
    config = ctx.obj['config']
    try:
        if kind == 'dockerfile':
            loaded = ImageBuilder(config).load_manifest(ctx.obj['context'], manifest)
            DockerfileConverter(loaded).convert(out)
        else:
            if not image:
                raise click.UsageError("IMAGE is required for --type systemd")
            SystemdConverter(ImageStore(config.home).get(image), config.home).convert(out)
    except B2LError as e:
        _fail(ctx, e)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})

if __name__ == '__main__':
    main()
