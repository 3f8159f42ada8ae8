"""
Local file storage for uploaded sources.

Files live under ``settings.upload_dir`` and are addressed by a storage key
(``sources/{source_id}/{timestamp}_{safe_name}``) saved on the source row.
"""

import logging
import os
import re
from datetime import datetime
from pathlib import Path

import aiofiles
import aiofiles.os

from app.core.config import get_settings

logger = logging.getLogger(__name__)


def sanitize_filename(filename: str) -> str:
    name = Path(filename).name
    name = re.sub(r"[^A-Za-z0-9._-]", "_", name)
    return name.strip("._") or "file"


class LocalStorage:
    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir).resolve()

    def build_key(self, source_id: int, filename: str, now: datetime | None = None) -> str:
        timestamp = int((now or datetime.utcnow()).timestamp() * 1000)
        return f"sources/{source_id}/{timestamp}_{sanitize_filename(filename)}"

    def path_for(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if not path.is_relative_to(self.base_dir):
            raise ValueError(f"Storage key escapes the upload directory: {key}")
        return path

    async def save(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
        logger.info("[Storage] Saved %s (%d bytes)", key, len(data))

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    async def delete(self, key: str) -> None:
        path = self.path_for(key)
        if path.exists():
            await aiofiles.os.remove(path)
            logger.info("[Storage] Deleted %s", key)


def get_storage() -> LocalStorage:
    return LocalStorage(get_settings().upload_dir)
