from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .config import DEFAULT_DIAG_LOG


class DiagnosticsLog:
    """Plain-text, timestamped diagnostics file. Write failures are ignored."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path or DEFAULT_DIAG_LOG).expanduser()

    def write(self, message: str) -> None:
        line = f"[{datetime.now().strftime('%H:%M:%S.%f')[:-3]}] {message}\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line)
        except OSError:
            pass
