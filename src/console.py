"""
Operator prompts and progress spinner.
"""

import logging
import sys
from typing import Callable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


class Spinner:
    """Single-line spinner written to a terminal stream."""

    def __init__(self, message: str, stream=None):
        self.message = message
        self.stream = stream or sys.stderr
        self.position = 0

    def tick(self) -> None:
        frame = SPINNER_FRAMES[self.position % len(SPINNER_FRAMES)]
        self.position += 1
        self.stream.write(f"\r{frame} {self.message}")
        self.stream.flush()

    def clear(self) -> None:
        self.stream.write("\r" + " " * (len(self.message) + 2) + "\r")
        self.stream.flush()


class Console:
    """Numbered menus and yes/no questions on the terminal."""

    def __init__(self, input_fn: Callable[[str], str] = input):
        self.input_fn = input_fn

    def _ask(self, prompt: str) -> Optional[str]:
        try:
            return self.input_fn(prompt).strip()
        except EOFError:
            return None

    def choose(
        self, title: str, options: Sequence[Tuple[str, str]], default: str
    ) -> str:
        """
        Show a numbered menu and return the key of the chosen option.

        Empty input, closed input and invalid choices all select ``default``.

        Args:
            title: Question shown above the options
            options: (key, label) pairs in display order
            default: Key returned when no valid choice is made

        Returns:
            Option key
        """
        logger.info("")
        logger.info(title)
        for number, (_, label) in enumerate(options, start=1):
            logger.info(f"  {number}. {label}")

        answer = self._ask(f"Choose an option [1-{len(options)}]: ")
        if not answer:
            return default
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1][0]

        default_label = next((label for key, label in options if key == default), default)
        logger.warning(f"Invalid choice, continuing with: {default_label}")
        return default

    def confirm(self, question: str, default: bool = True) -> bool:
        """Ask a yes/no question; closed input answers with the default."""
        suffix = "[Y/n]" if default else "[y/N]"
        while True:
            answer = self._ask(f"{question} {suffix}: ")
            if answer is None or answer == "":
                return default
            if answer.lower() in ("y", "yes"):
                return True
            if answer.lower() in ("n", "no"):
                return False
            logger.warning("Please answer yes (y) or no (n)")

    def pause(self, message: str = "Press Enter to continue...") -> None:
        self._ask(message)

    @staticmethod
    def show(lines: List[str]) -> None:
        for line in lines:
            logger.info(line)
