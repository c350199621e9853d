"""Root CLI app - entry point and command registration."""

from pathlib import Path

import typer

from packdraft.config import get_settings
from packdraft.config.settings import configure_logging

app = typer.Typer(
    name="packdraft",
    help="Packdraft - prediction-market pack game: pools, resolution sweeps, prices, packs.",
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    config_dir: Path | None = typer.Option(
        None, "--config-dir", "-C", help="Config directory (default: ./config or package config)"
    ),
    profile: str | None = typer.Option(
        None, "--profile", "-p", help="Config profile (e.g. dev) to overlay on default.toml"
    ),
) -> None:
    """Configure logging and store options in context."""
    settings = get_settings(profile, config_dir)
    configure_logging(settings)
    ctx.obj = {"settings": settings, "config_dir": config_dir, "profile": profile}


# Subcommands registered from other modules
from packdraft.cli import api_cmd, packs, pools, prices, resolve  # noqa: E402

app.add_typer(pools.app, name="pools")
app.add_typer(resolve.app, name="resolve")
app.add_typer(prices.app, name="prices")
app.add_typer(packs.app, name="packs")
app.add_typer(api_cmd.app, name="api")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
