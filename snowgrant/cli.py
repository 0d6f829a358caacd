import json
import logging
from typing import Optional

import click

from .config import load_config
from .connector import Connector
from .context import CallContext, background
from .exceptions import SnowgrantError
from .host import Resource, ResourceId
from .syncers import CredentialOptions

logger = logging.getLogger("snowgrant")

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _context(timeout: Optional[float]) -> CallContext:
    if timeout:
        return CallContext.with_timeout(timeout)
    return background()


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def _parse_resource_id(value: str) -> ResourceId:
    resource_type, sep, resource = value.partition(":")
    if not sep or not resource_type or not resource:
        raise click.BadParameter(f"expected TYPE:ID, got {value!r}")
    return ResourceId(resource_type, resource)


def _connector(obj: dict) -> Connector:
    config = load_config(obj.get("config_path"))
    return Connector(config)


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="YAML connection config")
@click.option("--log-level", default="WARNING", type=click.Choice(LOG_LEVELS, case_sensitive=False))
@click.option("--timeout", type=float, default=None, help="Overall deadline in seconds for each command")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: str, timeout: Optional[float]):
    """snowgrant - Snowflake users, roles and grants for identity governance."""
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["timeout"] = timeout


@cli.command()
@click.pass_obj
def validate(obj: dict):
    """Check that the credentials can list users."""
    with _connector(obj) as connector:
        try:
            connector.validate(_context(obj["timeout"]))
        except SnowgrantError as err:
            raise click.ClickException(str(err))
    click.echo("OK")


@cli.command("list")
@click.argument("resource_type")
@click.option("--parent", help="Parent resource as TYPE:ID, e.g. database:ANALYTICS")
@click.option("--page-token", default="", help="Resume from a page token")
@click.option("--all", "all_pages", is_flag=True, help="Follow page tokens until the listing is exhausted")
@click.pass_obj
def list_resources(obj: dict, resource_type: str, parent: Optional[str], page_token: str, all_pages: bool):
    """List resources of one type."""
    parent_id = _parse_resource_id(parent) if parent else None
    ctx = _context(obj["timeout"])
    with _connector(obj) as connector:
        try:
            syncer = connector.syncer(resource_type)
            resources = []
            token = page_token
            while True:
                page, token = syncer.list(ctx, parent_id, token)
                resources.extend(page)
                if not all_pages or not token:
                    break
        except SnowgrantError as err:
            raise click.ClickException(str(err))
    _echo_json({"resources": [r.to_dict() for r in resources], "next_page_token": token})


def _bare_resource(resource_id: ResourceId) -> Resource:
    return Resource(id=resource_id, display_name=resource_id.resource)


@cli.command()
@click.argument("resource_type")
@click.argument("resource")
@click.pass_obj
def entitlements(obj: dict, resource_type: str, resource: str):
    """List the entitlements offered by one resource."""
    with _connector(obj) as connector:
        try:
            syncer = connector.syncer(resource_type)
            result = syncer.entitlements(_context(obj["timeout"]), _bare_resource(ResourceId(resource_type, resource)))
        except SnowgrantError as err:
            raise click.ClickException(str(err))
    _echo_json({"entitlements": [e.to_dict() for e in result]})


@cli.command()
@click.argument("resource_type")
@click.argument("resource")
@click.option("--page-token", default="", help="Resume from a page token")
@click.pass_obj
def grants(obj: dict, resource_type: str, resource: str, page_token: str):
    """List the grants on one resource."""
    with _connector(obj) as connector:
        try:
            syncer = connector.syncer(resource_type)
            result, token = syncer.grants(
                _context(obj["timeout"]), _bare_resource(ResourceId(resource_type, resource)), page_token
            )
        except SnowgrantError as err:
            raise click.ClickException(str(err))
    _echo_json({"grants": [g.to_dict() for g in result], "next_page_token": token})


@cli.command("create-user")
@click.argument("name")
@click.option("--email", default=None)
@click.option("--login", default=None)
@click.option("--display-name", default=None)
@click.option("--random-password", is_flag=True, help="Generate a password and print it once")
@click.option("--force-password-change", is_flag=True, help="Require a password change at next login")
@click.pass_obj
def create_user(
    obj: dict,
    name: str,
    email: Optional[str],
    login: Optional[str],
    display_name: Optional[str],
    random_password: bool,
    force_password_change: bool,
):
    """Provision a user."""
    profile = {"name": name, "email": email, "login": login, "display_name": display_name}
    options = None
    if random_password:
        options = CredentialOptions(random_password=True, force_change_at_next_login=force_password_change)
    with _connector(obj) as connector:
        try:
            result = connector.syncer("user").create_account(_context(obj["timeout"]), profile, options)
        except SnowgrantError as err:
            raise click.ClickException(str(err))
    _echo_json({"resource": result.resource.to_dict(), "plaintext": result.plaintext})


@cli.command("delete-user")
@click.argument("name")
@click.pass_obj
def delete_user(obj: dict, name: str):
    """Delete a user if it exists."""
    with _connector(obj) as connector:
        try:
            connector.syncer("user").delete(_context(obj["timeout"]), ResourceId("user", name))
        except SnowgrantError as err:
            raise click.ClickException(str(err))
    click.echo(f"Deleted {name}")
