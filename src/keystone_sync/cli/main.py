"""keystone-sync CLI - Main entrypoint.

Usage:
    keystone-sync apply identities.yaml
    keystone-sync plan identities.yaml --os-auth-url http://keystone:5000/v3
"""

from __future__ import annotations

from keystone_sync.cli.commands import app


def create_app() -> None:
    """CLI entrypoint."""
    app()


if __name__ == "__main__":
    create_app()
