"""
Outline store - a single named text slot on disk.

The outline text is the system of record; the diagram is rebuilt from it.
The default slot is ~/.wbs-diagram/wbs-outline.txt (see ServiceSettings).
"""

import logging
from pathlib import Path
from typing import Optional

from wbs_core.settings import get_settings

logger = logging.getLogger(__name__)


class OutlineStore:
    """Reads and writes one UTF-8 text slot."""

    def __init__(self, directory: Optional[str | Path] = None, slot: Optional[str] = None):
        service = get_settings().service
        self.directory = Path(directory) if directory is not None else service.store_dir
        self.slot = slot or service.store_slot

    @property
    def path(self) -> Path:
        return self.directory / f"{self.slot}.txt"

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Optional[str]:
        """Stored text, or None if nothing has been saved yet."""
        if not self.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def save(self, text: str) -> Path:
        """Write the slot, creating the directory if needed."""
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.info("Saved outline to %s (%d chars)", path, len(text))
        return path

    def clear(self) -> bool:
        if not self.exists():
            return False
        self.path.unlink()
        return True
