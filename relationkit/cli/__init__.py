"""Command line interface for provisioning and inspecting RelationKit schemas.

Commands read ``relationkit.yaml`` from the directory given with ``--config-path``.
"""

from pathlib import Path

CONFIG_PATH: Path | None = None


def set_config_path(path: Path | None) -> Path:
    """Resolve ``path`` (the working directory when omitted) and make it the config location of every command."""
    global CONFIG_PATH
    CONFIG_PATH = (path or Path.cwd()).resolve()
    return CONFIG_PATH


def main() -> None:
    """Run the ``relationkit`` console script."""
    from relationkit.cli.app import app

    app()


__all__ = ["CONFIG_PATH", "main", "set_config_path"]
