"""Write export files to disk."""
import logging
from datetime import date
from pathlib import Path
from typing import Optional

import aiofiles

from mtm_listings.config import EXPORT_DIR
from mtm_listings.export.sixbit import export_filename

logger = logging.getLogger(__name__)


async def write_export(
    content: str,
    fmt: str,
    directory: Optional[Path] = None,
    today: Optional[date] = None,
) -> Path:
    """Write an already rendered export and return its path."""
    directory = Path(directory or EXPORT_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(fmt, today)
    async with aiofiles.open(path, "w", encoding="utf-8", newline="") as f:
        await f.write(content)
    logger.info(f"Wrote export to {path} ({len(content)} chars)")
    return path
