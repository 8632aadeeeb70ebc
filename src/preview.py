"""
Preview pane command invoked by fzf: ``preview.py SNAPSHOT KEY``.

Prints the stored preview for KEY, or a placeholder when the snapshot or
the key is gone.
"""

import json
import sys
from typing import List, Optional

from views import PREVIEW_NOT_AVAILABLE


def render(snapshot_path: str, key: str) -> str:
    try:
        with open(snapshot_path, "r", encoding="utf-8") as f:
            snapshot = json.load(f)
    except (OSError, ValueError):
        return PREVIEW_NOT_AVAILABLE
    if not isinstance(snapshot, dict):
        return PREVIEW_NOT_AVAILABLE
    text = snapshot.get(key)
    return text if isinstance(text, str) else PREVIEW_NOT_AVAILABLE


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) < 2:
        print(PREVIEW_NOT_AVAILABLE)
        return 0
    print(render(args[0], args[1]))
    return 0


if __name__ == "__main__":
    sys.exit(main())
