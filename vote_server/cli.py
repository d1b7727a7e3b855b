# vote_server/cli.py

import click

from vote_server.authentication.rbac import UserRole
from vote_server.errors import ConflictError


def ensure_admin(services, email, password):
    """Create the administrator account unless it already exists."""
    existing = services.credentials.find_by_email(email)
    if existing is not None:
        return existing, False
    user, _ = services.credentials.create({'email': email}, role=UserRole.ADMIN.value,
                                          password=password, actor='system')
    return user, True


def register_commands(app):
    @app.cli.command('create-admin')
    @click.argument('email')
    @click.password_option()
    def create_admin(email, password):
        """Create an administrator account."""
        from vote_server.services import get_services

        try:
            user, created = ensure_admin(get_services(), email, password)
        except ConflictError as e:
            raise click.ClickException(e.message)
        if not created:
            raise click.ClickException(f"User {email} already exists")
        click.echo(f"Administrator {user.email} created.")

    @app.cli.command('publish-due')
    def publish_due():
        """Run one scheduler pass: close expired elections and auto-publish results."""
        from vote_server.services import get_services

        summary = get_services().scheduler.tick()
        click.echo(f"closed={len(summary['closed'])} published={len(summary['published'])} "
                   f"failed={len(summary['failed'])}")
