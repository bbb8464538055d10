"""Disk storage for uploaded listing images.

Each uploader owns a folder below ``UPLOAD_ROOT`` and a set of per-field rules
(allowed MIME types and maximum size). Stored files are exposed under
``PUBLIC_PREFIX`` by the static mount in ``main``.
"""

import logging
import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles
import aiofiles.os
from fastapi import HTTPException, Request
from starlette.datastructures import UploadFile

logger = logging.getLogger(__name__)

UPLOAD_ROOT = os.getenv("UPLOAD_DIR", "uploads")
PUBLIC_PREFIX = "/uploads"
MiB = 1024 * 1024
DEFAULT_MAX_SIZE = 20 * MiB
CHUNK_SIZE = MiB

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class FileRule:
    allowed_types: List[str] = field(default_factory=list)
    max_size: int = DEFAULT_MAX_SIZE


class Uploader:
    def __init__(self, folder_name: str, field_rules: Dict[str, FileRule]):
        self.folder_name = folder_name
        self.field_rules = field_rules

    @property
    def directory(self) -> Path:
        return Path(UPLOAD_ROOT) / self.folder_name

    def ensure_directory(self) -> Path:
        directory = self.directory
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def build_filename(self, original_name: Optional[str]) -> str:
        """``<base>_<nanosecond timestamp><ext>`` from the client's file name."""
        name = Path(original_name or "").name
        ext = Path(name).suffix
        base = name[: -len(ext)] if ext else name
        base = _UNSAFE_CHARS.sub("_", base).strip("_") or "file"
        ext = _UNSAFE_CHARS.sub("", ext)
        return f"{base}_{time.time_ns()}{ext}"

    def validate(self, field_name: str, upload: UploadFile) -> FileRule:
        rule = self.field_rules.get(field_name)
        if rule is None:
            raise HTTPException(status_code=400, detail="No rules defined for this field")
        if upload.content_type not in rule.allowed_types:
            raise HTTPException(status_code=400, detail=f"Invalid file type for {field_name}")
        return rule

    async def save(self, field_name: str, upload: UploadFile) -> str:
        """Validate and store one file, returning its public path."""
        rule = self.validate(field_name, upload)
        if upload.size is not None and upload.size > rule.max_size:
            raise HTTPException(status_code=413, detail=f"File too large for {field_name}")

        filename = self.build_filename(upload.filename)
        target = self.ensure_directory() / filename
        written = 0
        # "x" mode: a name collision raises instead of overwriting another upload
        async with aiofiles.open(target, "xb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > rule.max_size:
                    break
                await out.write(chunk)

        if written > rule.max_size:
            await self._unlink(target)
            raise HTTPException(status_code=413, detail=f"File too large for {field_name}")

        logger.info("Stored upload %s (%d bytes)", target, written)
        return f"{PUBLIC_PREFIX}/{self.folder_name}/{filename}"

    async def save_single(self, request: Request) -> Optional[str]:
        """Store the one file of a multipart request, if any.

        A file under any field without a rule is rejected, and so is more than
        one file per request.
        """
        form = await request.form()
        files = [(key, value) for key, value in form.multi_items() if isinstance(value, UploadFile)]
        # browsers send an empty part for an untouched file input
        files = [(key, value) for key, value in files if value.filename]
        if not files:
            return None
        if len(files) > 1:
            raise HTTPException(status_code=400, detail="Only one file may be uploaded")
        field_name, upload = files[0]
        return await self.save(field_name, upload)

    async def _unlink(self, target: Path) -> None:
        try:
            await aiofiles.os.remove(target)
        except FileNotFoundError:
            return
        logger.info("Removed upload %s", target)

    async def remove(self, public_path: Optional[str]) -> None:
        """Delete a previously stored file given its public path."""
        prefix = f"{PUBLIC_PREFIX}/{self.folder_name}/"
        if not public_path or not public_path.startswith(prefix):
            return
        await self._unlink(self.directory / Path(public_path[len(prefix):]).name)


book_uploader = Uploader("books", {
    "image": FileRule(
        allowed_types=["image/jpeg", "image/png", "image/webp", "image/jpg"],
        max_size=20 * MiB,
    ),
})
