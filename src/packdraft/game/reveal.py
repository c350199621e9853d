"""Sequential reveal: picks are revealed strictly by position, whatever order events settle in.

Only ``current_reveal_index`` is stored per pack. Per-pick state is a projection
of ``is_resolved`` and ``reveal_animation_played``:

    pending          not resolved
    resolved_queued  resolved, not revealed, not next in line
    ready            resolved, not revealed, position == current_reveal_index + 1
    revealed         terminal
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from packdraft.models import Pack, Pick


class PickState(str, Enum):
    PENDING = "pending"
    RESOLVED_QUEUED = "resolved_queued"
    READY = "ready"
    REVEALED = "revealed"


class PackDisplayStatus(str, Enum):
    DRAFTING = "drafting"
    WAITING = "waiting"
    HAS_REVEALS = "has_reveals"
    COMPLETED = "completed"


@dataclass
class RevealStatus:
    can_reveal_next: bool
    next_reveal_position: int | None
    next_pick: Pick | None
    pending_positions: list[int] = field(default_factory=list)
    queued_positions: list[int] = field(default_factory=list)
    is_fully_revealed: bool = False
    revealed_count: int = 0
    resolved_count: int = 0


def pick_state(pack: Pack, pick: Pick) -> PickState:
    if pick.reveal_animation_played:
        return PickState.REVEALED
    if not pick.is_resolved:
        return PickState.PENDING
    if pick.position == pack.current_reveal_index + 1:
        return PickState.READY
    return PickState.RESOLVED_QUEUED


def can_reveal(pack: Pack, position: int) -> bool:
    if position != pack.current_reveal_index + 1:
        return False
    pick = pack.pick_at(position)
    if pick is None:
        return False
    return pick.is_resolved and not pick.reveal_animation_played


def next_revealable_position(pack: Pack) -> int | None:
    position = pack.current_reveal_index + 1
    return position if can_reveal(pack, position) else None


def display_status(pack: Pack) -> PackDisplayStatus:
    if not pack.picks:
        return PackDisplayStatus.DRAFTING
    if all(p.reveal_animation_played for p in pack.picks):
        return PackDisplayStatus.COMPLETED
    if next_revealable_position(pack) is not None:
        return PackDisplayStatus.HAS_REVEALS
    return PackDisplayStatus.WAITING


def reveal_status(pack: Pack) -> RevealStatus:
    picks = pack.sorted_picks()
    revealed = [p for p in picks if p.reveal_animation_played]
    resolved = [p for p in picks if p.is_resolved]
    pending = [p.position for p in picks if not p.is_resolved]
    queued = [p.position for p in picks if pick_state(pack, p) is PickState.RESOLVED_QUEUED]
    fully_revealed = bool(picks) and len(revealed) == len(picks)
    next_position = None if fully_revealed else next_revealable_position(pack)
    return RevealStatus(
        can_reveal_next=next_position is not None,
        next_reveal_position=next_position,
        next_pick=pack.pick_at(next_position) if next_position is not None else None,
        pending_positions=pending,
        queued_positions=queued,
        is_fully_revealed=fully_revealed,
        revealed_count=len(revealed),
        resolved_count=len(resolved),
    )


def status_message(pack: Pack) -> str:
    status = reveal_status(pack)
    total = len(pack.picks)
    if not total:
        return "Drafting"
    if status.is_fully_revealed:
        correct = sum(1 for p in pack.picks if p.is_correct)
        return f"Pack complete! {correct}/{total} correct"
    if status.can_reveal_next:
        return f"Ready to reveal card {status.next_reveal_position}!"
    if status.pending_positions:
        return f"Waiting for event {min(status.pending_positions)} to resolve..."
    return f"{status.revealed_count}/{total} revealed"


def advance(pack: Pack, now_ms: int) -> tuple[Pack, Pick]:
    """Reveal the next pick. Returns updated copies; raises if nothing is revealable."""
    position = pack.current_reveal_index + 1
    if not can_reveal(pack, position):
        raise ValueError(f"position {position} is not revealable")
    revealed = pack.pick_at(position).model_copy(update={"reveal_animation_played": True})
    picks = [revealed if p.position == position else p for p in pack.picks]
    updated = pack.model_copy(
        update={"current_reveal_index": position, "last_reveal_at": now_ms, "picks": picks}
    )
    return updated, revealed
