from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from mortuorio.core.errors import MissingField, NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredDocument:
    reference: str
    filename: str
    size: int


def storage_root() -> Path:
    configured = current_app.config.get("DOCUMENT_STORAGE_DIR")
    if configured:
        return Path(configured)
    return Path(current_app.instance_path) / "storage" / "mortuorio"


def store(expediente_id: int, document_type: str, filename: str, data: bytes) -> StoredDocument:
    if not filename:
        raise MissingField("Debes seleccionar un fichero")
    clean_name = secure_filename(filename) or f"{document_type.lower()}.bin"
    folder = storage_root() / "expedientes" / str(expediente_id) / document_type.lower()
    folder.mkdir(parents=True, exist_ok=True)
    absolute = folder / f"{uuid4().hex[:8]}-{clean_name}"
    absolute.write_bytes(data)
    reference = absolute.relative_to(storage_root()).as_posix()
    logger.info("Documento %s almacenado para expediente %s: %s", document_type, expediente_id, reference)
    return StoredDocument(reference=reference, filename=clean_name, size=len(data))


def store_upload(expediente_id: int, document_type: str, file_obj: FileStorage | None) -> StoredDocument:
    if not file_obj or not file_obj.filename:
        raise MissingField("Debes seleccionar un fichero")
    return store(expediente_id, document_type, file_obj.filename, file_obj.read())


def retrieve(reference: str) -> bytes:
    root = storage_root().resolve()
    absolute = (root / reference).resolve()
    if root not in absolute.parents or not absolute.is_file():
        raise NotFound("Documento no encontrado")
    return absolute.read_bytes()
