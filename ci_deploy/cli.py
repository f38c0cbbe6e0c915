# cli.py
import json
import logging

import click
import yaml
from dotenv import load_dotenv
from kubernetes import client
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from ci_deploy.config import Settings, get_settings
from ci_deploy.errors import PipelineError
from ci_deploy.kube_types import ImageReference
from ci_deploy.pipeline import DeployPipeline
from ci_deploy.strategies import strategy_for


def _load_settings(**overrides) -> Settings:
    try:
        settings = get_settings()
    except ValidationError as e:
        raise click.ClickException(f"Invalid configuration:\n{e}")
    overrides = {key: value for key, value in overrides.items() if value is not None}
    return settings.model_copy(update=overrides) if overrides else settings


@click.group()
@click.option("--env-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Load environment variables from this file first")
@click.pass_context
def cli(ctx, env_file):
    """Build, publish and deploy the service to Kubernetes"""
    ctx.ensure_object(dict)
    if env_file:
        load_dotenv(env_file, override=True)
    get_settings.cache_clear()


@cli.command()
@click.option("--target", type=click.Choice(["eks", "doks"]), default=None, help="Cluster target")
@click.option("--strategy", type=click.Choice(["rolling", "create"]), default=None, help="Deployment strategy")
@click.option("--image-ref", default=None, help="Deploy this published image and skip build/publish")
@click.option("--skip-build", is_flag=True, help="Deploy the image already at PUBLISH_ADDRESS without rebuilding")
@click.option("--json", "as_json", is_flag=True, help="Print the pipeline result as JSON")
@click.pass_context
def run(ctx, target, strategy, image_ref, skip_build, as_json):
    """Run the pipeline: build, package, publish, authenticate, deploy"""
    settings = _load_settings(TARGET=target, STRATEGY=strategy)
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    if skip_build and image_ref is None:
        image_ref = settings.PUBLISH_ADDRESS

    pipeline = DeployPipeline(settings)
    result = pipeline.run(image_ref)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif result.image_ref is not None:
        click.echo(str(result.image_ref))

    if not result.ok:
        click.echo(f"Error deploying {settings.DEPLOYMENT_NAME}: {result.error}", err=True)
        ctx.exit(1)
    if not as_json:
        click.echo(f"{pipeline.strategy.verb} {settings.DEPLOYMENT_NAME} deployment")


@cli.command("show-config")
def show_config():
    """Show current configuration"""
    settings = _load_settings()
    print("Current Configuration:")
    for key, value in settings.masked().items():
        print(f"  {key}: {value}")


@cli.command()
@click.option("--target", type=click.Choice(["eks", "doks"]), default=None, help="Cluster target")
def status(target):
    """Show rollout status of the configured deployment"""
    settings = _load_settings(TARGET=target)
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    try:
        rollout = DeployPipeline(settings).status()
    except PipelineError as e:
        raise click.ClickException(str(e))
    except ApiException as e:
        raise click.ClickException(f"Kubernetes API error: {e.status} {e.reason}")

    click.echo(f"{rollout.namespace}/{rollout.deployment}: {rollout.status}")
    click.echo(f"  desired={rollout.desired_replicas} ready={rollout.ready_replicas} updated={rollout.updated_replicas}")
    for image in rollout.images:
        click.echo(f"  image: {image}")


@cli.command()
@click.option("--image-ref", required=True, help="Image reference to place in the manifest")
def manifest(image_ref):
    """Print the Deployment the create strategy would submit"""
    settings = _load_settings()
    try:
        reference = ImageReference.parse(image_ref)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--image-ref")

    strategy = strategy_for(settings, "create")
    body = strategy.build_deployment(reference, settings.K8S_NAMESPACE)
    click.echo(yaml.safe_dump(client.ApiClient().sanitize_for_serialization(body), sort_keys=False))


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
