"""Progress hints parsed from downloader output.

Output parsing is best-effort: a chunk that matches nothing yields an empty
signal and the job carries on. Nothing here depends on which tool produced
the text.
"""

import re
from dataclasses import dataclass
from typing import Optional

PERCENT_PATTERN = re.compile(r"(\d+(?:\.\d+)?)%")
DESTINATION_PATTERN = re.compile(r"\[download\] Destination: (.+)")


@dataclass(frozen=True)
class ProgressSignal:
    percent: Optional[float] = None
    filename: Optional[str] = None

    def __bool__(self) -> bool:
        return self.percent is not None or self.filename is not None


def parse_progress(chunk: str) -> ProgressSignal:
    """Extract a percentage and/or destination filename from one output chunk."""
    percent = None
    match = PERCENT_PATTERN.search(chunk)
    if match:
        percent = min(float(match.group(1)), 100.0)

    filename = None
    match = DESTINATION_PATTERN.search(chunk)
    if match:
        filename = _basename(match.group(1).strip()) or None

    return ProgressSignal(percent=percent, filename=filename)


def _basename(path: str) -> str:
    # Windows builds of the downloader announce backslash paths
    return path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
