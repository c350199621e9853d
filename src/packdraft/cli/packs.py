"""Packs subcommand: show, reveal, list."""

from __future__ import annotations

import typer

from packdraft.clock import now_ms
from packdraft.errors import PackNotFoundError
from packdraft.packs.service import PackView, get_pack_view, list_pack_views, pack_view, reveal_next
from packdraft.storage.db import get_connection, init_schema

app = typer.Typer(help="Inspect and reveal packs")


def _echo_view(view: PackView) -> None:
    pack = view.pack
    typer.echo(f"Pack {pack.pack_id} ({pack.profile_id})  {view.status.value}: {view.status_message}")
    typer.echo(
        f"  resolved {view.resolved_count}/{len(pack.picks)}  revealed {view.revealed_count}  "
        f"points {view.total_points:.2f}  max {view.max_potential_points:.2f}"
    )
    for p in pack.sorted_picks():
        if p.reveal_animation_played:
            result = f"{'correct' if p.is_correct else 'wrong':7}  {p.points_awarded:6.2f}"
        elif p.is_resolved:
            result = "resolved (hidden)"
        else:
            result = "pending"
        typer.echo(f"  {p.position}. {p.event_id[:40]:40}  {p.picked_outcome:4} @ {p.probability_snapshot:.2f}  {result}")


@app.command("show")
def show(ctx: typer.Context, pack_id: str = typer.Argument(..., help="Pack ID")) -> None:
    """Show a pack's picks, resolution and reveal state."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        _echo_view(get_pack_view(conn, pack_id))
    except PackNotFoundError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    finally:
        conn.close()


@app.command("reveal")
def reveal(ctx: typer.Context, pack_id: str = typer.Argument(..., help="Pack ID")) -> None:
    """Reveal the next pick in position order."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        result = reveal_next(conn, pack_id, now_ms())
    except PackNotFoundError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    finally:
        conn.close()
    if not result.success:
        typer.echo(f"Nothing to reveal ({result.reason}).")
        raise typer.Exit(1)
    pick = result.pick
    typer.echo(
        f"Card {pick.position}: {'correct' if pick.is_correct else 'wrong'}  +{pick.points_awarded:.2f} pts"
    )
    if result.pack and result.pack.picks:
        _echo_view(pack_view(result.pack))


@app.command("list")
def list_cmd(ctx: typer.Context, profile_id: str = typer.Argument(..., help="Profile ID")) -> None:
    """List a profile's packs, newest first."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        views = list_pack_views(conn, profile_id)
    finally:
        conn.close()
    for v in views:
        typer.echo(f"  {v.pack.pack_id[:36]:36}  {v.status.value:11}  {v.total_points:7.2f}  {v.status_message}")
    typer.echo(f"Total: {len(views)} packs")
