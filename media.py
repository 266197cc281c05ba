"""
Uploaded image storage

Files are written to a local directory under a generated name and exposed
read-only at ``url_prefix`` by the app. Nothing about the upload is checked:
no MIME sniffing, no size limit.
"""
import os
import shutil
import time
import uuid
from typing import Iterable, List, Optional

from fastapi import UploadFile

from config import UPLOAD_DIR
from logger import get_logger

log = get_logger("media")

MAX_COMMENT_IMAGES = 10


class MediaIntake:
    def __init__(self, directory: str = UPLOAD_DIR, url_prefix: str = "/uploads"):
        self.directory = os.path.abspath(directory)
        self.url_prefix = url_prefix.rstrip("/")

    def prepare(self) -> None:
        """Create the upload directory; the app calls this on startup."""
        os.makedirs(self.directory, exist_ok=True)

    def _name_for(self, filename: Optional[str]) -> str:
        # only the extension of the client filename is kept
        _, ext = os.path.splitext(os.path.basename(filename or ""))
        return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext.lower()}"

    def save(self, upload: Optional[UploadFile]) -> Optional[str]:
        """Write one upload to disk and return its public path, or None if nothing was sent."""
        if upload is None or not upload.filename:
            return None
        name = self._name_for(upload.filename)
        with open(os.path.join(self.directory, name), "wb") as out:
            shutil.copyfileobj(upload.file, out)
        log.info(f"stored upload '{upload.filename}' as {name}")
        return f"{self.url_prefix}/{name}"

    def save_many(self, uploads: Optional[Iterable[UploadFile]]) -> List[str]:
        paths = []
        for upload in uploads or []:
            path = self.save(upload)
            if path:
                paths.append(path)
        return paths
