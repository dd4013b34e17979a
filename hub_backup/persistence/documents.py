"""
Whole-document persistence for the hub documents.

Documents are never edited in place: they are serialized in full to a
temporary file in the same directory and renamed over the original, so a
reader always sees either the old or the new complete document.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Type, TypeVar

from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)


def write_document_atomic(path: Path, document: BaseModel) -> None:
    """Atomically write *document* as pretty-printed JSON to *path*."""
    path = Path(path)
    payload = document.model_dump_json(indent=2)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            os.chmod(tmp_name, path.stat().st_mode & 0o7777)
        os.replace(tmp_name, path)
    except Exception:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_document(path: Path, model: Type[M]) -> M:
    """
    Read and validate a JSON document.

    Raises:
        OSError: If the file cannot be read
        json.JSONDecodeError: If the file is not JSON
        pydantic.ValidationError: If the JSON does not match the schema
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return model.model_validate(data)
