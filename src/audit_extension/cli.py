"""Audit extension CLI.

Offline rendering of what the operator would install, for review and
debugging. Credentials are generated in memory and never persisted.

Usage:
    audit-extension render config.yaml --namespace shoot--proj--dev
    audit-extension render config.yaml -n shoot--proj--dev --set shoot
    audit-extension fluentbit config.yaml
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from .actuator import ClusterContext, RenderedSets, render_object_sets
from .backends import BACKEND_INCLUDE_PATTERN
from .config import ConfigurationError, ControllerConfig
from .credentials import InMemoryCredentialStore, SecretsManager
from .errors import AuditExtensionError
from .images import ImageVector
from .manifests import FLUENT_BIT_CONFIG_KEY, FLUENT_BIT_CONFIG_MAP_NAME
from .objects import serialize_objects

SETS = ("seed", "shoot", "all")
DEFAULT_NAMESPACE = "shoot--local--local"


def render_sets(config_path: Path, namespace: str) -> RenderedSets:
    """Render both object sets for a provider configuration file.

    Raises:
        click.ClickException: If configuration or rendering fails.
    """
    try:
        config = ControllerConfig.from_env()
        image_vector = (
            ImageVector.from_file(config.image_vector_path)
            if config.image_vector_path
            else ImageVector()
        )
        return asyncio.run(
            render_object_sets(
                config_path.read_bytes(),
                ClusterContext(namespace=namespace),
                config=config,
                secrets_manager=SecretsManager(InMemoryCredentialStore()),
                image_vector=image_vector,
            )
        )
    except OSError as e:
        raise click.ClickException(f"Failed to read {config_path}: {e}") from e
    except (ConfigurationError, AuditExtensionError) as e:
        raise click.ClickException(str(e)) from e


# =============================================================================
# CLI Groups
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="audit-extension")
def cli() -> None:
    """Audit extension CLI.

    Renders the objects the audit extension installs for a provider
    configuration, without touching a cluster.
    """
    pass


@cli.command()
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--namespace", "-n", default=DEFAULT_NAMESPACE, show_default=True, help="Seed namespace"
)
@click.option(
    "--set",
    "object_set",
    type=click.Choice(SETS),
    default="all",
    show_default=True,
    help="Object set to print",
)
def render(config_file: Path, namespace: str, object_set: str) -> None:
    """Print the seed and shoot object sets as YAML."""
    rendered = render_sets(config_file, namespace)

    selected = []
    if object_set in ("seed", "all"):
        selected.append(rendered.seed)
    if object_set in ("shoot", "all"):
        selected.append(rendered.shoot)

    documents = []
    for objects in selected:
        documents.extend(serialize_objects(objects).values())
    click.echo("---\n".join(documents), nl=False)


@cli.command()
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def fluentbit(config_file: Path) -> None:
    """Print the generated Fluent Bit configuration files."""
    rendered = render_sets(config_file, DEFAULT_NAMESPACE)
    config_map = rendered.seed.find("ConfigMap", FLUENT_BIT_CONFIG_MAP_NAME)
    files = config_map["data"] if config_map else {}

    # Main file first, then the backend files it includes
    ordered = [FLUENT_BIT_CONFIG_KEY, *sorted(k for k in files if k != FLUENT_BIT_CONFIG_KEY)]
    for name in ordered:
        if name not in files:
            continue
        click.secho(f"# {name}", fg="cyan")
        click.echo(files[name])
        click.echo()

    backends = [name for name in files if name != FLUENT_BIT_CONFIG_KEY]
    if not backends:
        click.secho(f"No backend enabled, nothing matches {BACKEND_INCLUDE_PATTERN}", fg="yellow")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
