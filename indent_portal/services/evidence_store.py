from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path, PurePath

from indent_portal.errors import NotFoundError, ValidationError, AuthorizationError

logger = logging.getLogger(__name__)

SERVABLE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp'}
RECEIPTS_SUBDIR = 'receipts'
UPLOAD_URL_PREFIX = '/uploads'


@dataclass(frozen=True)
class EvidenceImage:
    filename: str
    content_type: str
    content: bytes
    image_type: str = 'general'
    description: str = ''


@dataclass(frozen=True)
class StoredImage:
    name: str
    image_type: str
    description: str

    @property
    def url(self) -> str:
        return f'{UPLOAD_URL_PREFIX}/{self.name}'


class EvidenceStore:
    """Flat-file storage for receipt photos."""

    def __init__(self, root_dir: str | Path, *, max_bytes: int, max_files: int) -> None:
        self.root = Path(root_dir)
        self.max_bytes = max_bytes
        self.max_files = max_files

    @property
    def receipts_dir(self) -> Path:
        return self.root / RECEIPTS_SUBDIR

    def validate(self, images: list[EvidenceImage]) -> None:
        if len(images) > self.max_files:
            raise ValidationError(f'Too many files. Maximum is {self.max_files} files.')
        for image in images:
            if not (image.content_type or '').lower().startswith('image/'):
                raise ValidationError('Only image files are allowed.')
            if len(image.content) > self.max_bytes:
                raise ValidationError(f'File too large. Maximum size is {self.max_bytes // (1024 * 1024)}MB.')

    def save_all(self, images: list[EvidenceImage]) -> list[StoredImage]:
        self.validate(images)
        self.receipts_dir.mkdir(parents=True, exist_ok=True)
        stored: list[StoredImage] = []
        try:
            for image in images:
                extension = PurePath(image.filename or '').suffix.lower()
                name = f'receipt-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{extension}'
                target = self.receipts_dir / name
                target.write_bytes(image.content)
                stored.append(StoredImage(name=name, image_type=image.image_type, description=image.description))
        except OSError:
            self.discard([item.name for item in stored])
            raise
        return stored

    def discard(self, names: list[str]) -> None:
        for name in names:
            target = self.receipts_dir / PurePath(name).name
            try:
                target.unlink(missing_ok=True)
            except OSError:
                logger.warning('Could not remove uploaded file %s', target)

    def resolve(self, filename: str) -> Path:
        if not filename or PurePath(filename).name != filename:
            raise NotFoundError('File not found')
        if PurePath(filename).suffix.lower() not in SERVABLE_EXTENSIONS:
            raise AuthorizationError('File type not allowed')
        candidate = self.receipts_dir / filename
        if candidate.is_file():
            return candidate
        raise NotFoundError('File not found')
