"""Candidate selection policy.

Choosing among several images or devices is policy, not mechanism. The
helpers here parse numbered-menu answers and implement the default
"most recent file" heuristic; ``choose_candidate`` is the single seam the
source resolver calls, so an alternate policy can be passed in instead.
"""

import logging
import os
from collections.abc import Callable, Sequence
from pathlib import Path

from image_flasher.errors import FlasherError
from image_flasher.flash.ui import Ui

logger = logging.getLogger(__name__)


class InvalidSelectionError(FlasherError):
    """The answer to a numbered menu was not a valid choice."""

    def __init__(self, answer: str, count: int) -> None:
        super().__init__(
            f"Invalid selection: {answer!r}. Expected a number between 1 and {count}.",
            error_code="INVALID_SELECTION",
        )
        self.answer = answer
        self.count = count


def format_menu(labels: Sequence[str]) -> str:
    """Render labels as a 1-based numbered menu, one per line."""
    return "".join(f"{i}. {label}\n" for i, label in enumerate(labels, start=1))


def parse_selection(answer: str, count: int) -> int:
    """Parse a 1-based menu answer into a 0-based index.

    Args:
        answer: Raw text typed by the user.
        count: Number of entries in the menu.

    Returns:
        Index in ``[0, count - 1]``.

    Raises:
        InvalidSelectionError: Answer is not an integer or is out of range.
    """
    try:
        number = int(answer.strip())
    except ValueError:
        raise InvalidSelectionError(answer, count) from None

    index = number - 1
    if index < 0 or index >= count:
        raise InvalidSelectionError(answer, count)
    return index


def prompt_selection(ui: Ui, labels: Sequence[str], question: str) -> int:
    """Show a numbered menu and return the 0-based index the user picked.

    Raises:
        InvalidSelectionError: The answer is not a valid menu entry.
    """
    answer = ui.ask(format_menu(labels) + question)
    index = parse_selection(answer, len(labels))
    logger.debug("User selected entry %d of %d", index + 1, len(labels))
    return index


def most_recent(paths: Sequence[Path]) -> Path:
    """Return the path with the newest modification time.

    Ties keep the first path seen.

    Raises:
        ValueError: ``paths`` is empty.
        OSError: A path cannot be stat'ed.
    """
    if not paths:
        raise ValueError("most_recent() requires at least one path")

    chosen = paths[0]
    chosen_mtime = os.stat(chosen).st_mtime_ns
    for path in paths[1:]:
        mtime = os.stat(path).st_mtime_ns
        if mtime > chosen_mtime:
            chosen = path
            chosen_mtime = mtime
    return chosen


def choose_candidate(candidates: Sequence[Path], interactive: bool, ui: Ui) -> Path:
    """Default policy for picking one image among several candidates.

    Non-interactive runs take the most recently modified file; interactive
    runs ask the user.

    Raises:
        InvalidSelectionError: Interactive answer is not a valid entry.
    """
    if not interactive:
        return most_recent(candidates)

    index = prompt_selection(
        ui,
        [str(c) for c in candidates],
        "Which image should we use (type number)?",
    )
    return candidates[index]


CandidatePolicy = Callable[[Sequence[Path], bool, Ui], Path]


__all__ = [
    "CandidatePolicy",
    "InvalidSelectionError",
    "choose_candidate",
    "format_menu",
    "most_recent",
    "parse_selection",
    "prompt_selection",
]
