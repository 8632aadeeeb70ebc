"""
Interactive list selection backed by fzf.

Rows carry a stable key next to their display text. fzf is fed
``key<TAB>text`` and only shows the text, so the chosen key is read back
directly instead of being parsed out of the rendered line.
"""

import json
import logging
import os
import shlex
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from errors import SelectorUnavailableError
from views import PREVIEW_NOT_AVAILABLE, format_back_preview

logger = logging.getLogger(__name__)

BACK_KEY = "__back__"
BACK_TEXT = ".. (back)"
PREVIEW_SCRIPT = os.path.join(os.path.dirname(os.path.abspath(__file__)), "preview.py")


@dataclass
class Row:
    """A selectable line and the value it stands for."""

    key: str
    text: str
    value: Any = None


class OutcomeKind(Enum):
    CHOSEN = "chosen"
    BACK = "back"
    CANCELLED = "cancelled"


@dataclass
class SelectionOutcome:
    """Terminal result of one selection."""

    kind: OutcomeKind
    row: Optional[Row] = None

    @classmethod
    def chosen(cls, row: Row) -> "SelectionOutcome":
        return cls(OutcomeKind.CHOSEN, row)

    @classmethod
    def back(cls) -> "SelectionOutcome":
        return cls(OutcomeKind.BACK)

    @classmethod
    def cancelled(cls) -> "SelectionOutcome":
        return cls(OutcomeKind.CANCELLED)


def _single_line(text: str) -> str:
    return " ".join(str(text).replace("\t", " ").splitlines())


class FzfSelector:
    """Runs fzf over a list of rows with a preview pane."""

    def __init__(
        self,
        workdir: str,
        height: str = "80%",
        preview_window: str = "right:50%:wrap",
        fzf_binary: str = "fzf",
        runner: Callable = subprocess.run,
        has_terminal: Optional[Callable[[], bool]] = None,
        python: str = sys.executable,
    ):
        """
        Initialize the selector.

        Args:
            workdir: Scratch directory for preview snapshots
            height: fzf --height value
            preview_window: fzf --preview-window value
            fzf_binary: fzf executable
            runner: subprocess.run compatible callable
            has_terminal: Returns False when there is no interactive terminal
            python: Interpreter used by the preview command
        """
        self.workdir = workdir
        self.height = height
        self.preview_window = preview_window
        self.fzf_binary = fzf_binary
        self.runner = runner
        self.has_terminal = has_terminal or (lambda: sys.stdin.isatty())
        self.python = python

    def _write_previews(
        self,
        rows: List[Row],
        preview: Optional[Callable[[Row], str]],
        back_destination: str,
    ) -> str:
        snapshot: Dict[str, str] = {}
        for row in rows:
            if row.key == BACK_KEY:
                snapshot[row.key] = format_back_preview(back_destination)
                continue
            if preview is None:
                continue
            try:
                snapshot[row.key] = preview(row)
            except Exception as e:
                logger.debug(f"Preview failed for {row.key}: {e}")
                snapshot[row.key] = PREVIEW_NOT_AVAILABLE

        fd, path = tempfile.mkstemp(dir=self.workdir, prefix="preview_", suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(snapshot, f)
        return path

    def _command(self, prompt: str, header: str, snapshot: str) -> List[str]:
        preview_cmd = (
            f"{shlex.quote(self.python)} {shlex.quote(PREVIEW_SCRIPT)} "
            f"{shlex.quote(snapshot)} {{1}}"
        )
        cmd = [
            self.fzf_binary,
            f"--height={self.height}",
            f"--prompt={prompt}",
            "--border",
            "--delimiter=\t",
            "--with-nth=2..",
            f"--preview={preview_cmd}",
            f"--preview-window={self.preview_window}",
            "--bind=ctrl-/:toggle-preview",
        ]
        if header:
            cmd.append(f"--header={header}")
        return cmd

    def select(
        self,
        rows: List[Row],
        allow_back: bool = False,
        preview: Optional[Callable[[Row], str]] = None,
        prompt: str = "Select: ",
        header: str = "",
        back_destination: str = "the previous screen",
    ) -> SelectionOutcome:
        """
        Let the operator pick one row.

        Args:
            rows: Rows in display order; keys must be unique
            allow_back: Prepend a synthetic back row
            preview: Renders the preview text of a row; must not have side effects
            prompt: fzf prompt
            header: fzf header line
            back_destination: Where the back row leads, for its preview

        Returns:
            SelectionOutcome (CHOSEN with the row, BACK, or CANCELLED)

        Raises:
            SelectorUnavailableError: If fzf is not installed
        """
        if not rows:
            logger.warning("⚠ No items available for selection")
            return SelectionOutcome.cancelled()
        if not self.has_terminal():
            logger.warning("⚠ No interactive terminal available for selection")
            return SelectionOutcome.cancelled()

        entries = ([Row(BACK_KEY, BACK_TEXT)] if allow_back else []) + list(rows)
        snapshot = self._write_previews(entries, preview, back_destination)
        feed = "".join(f"{r.key}\t{_single_line(r.text)}\n" for r in entries)

        try:
            result = self.runner(
                self._command(prompt, header, snapshot),
                input=feed,
                stdout=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as e:
            raise SelectorUnavailableError(
                "fzf (fuzzy finder) not found. Install it with: brew install fzf"
            ) from e
        finally:
            if os.path.exists(snapshot):
                os.unlink(snapshot)

        if result.returncode != 0:
            logger.debug(f"fzf exited with {result.returncode}")
            return SelectionOutcome.cancelled()

        line = (result.stdout or "").splitlines()
        key = line[0].split("\t", 1)[0] if line else ""
        if key == BACK_KEY:
            return SelectionOutcome.back()

        chosen = next((r for r in rows if r.key == key), None)
        if chosen is None:
            return SelectionOutcome.cancelled()
        return SelectionOutcome.chosen(chosen)
