# backend/tests/test_storage.py
from __future__ import annotations

import pytest

from docgen.errors import StorageError
from docgen.services.storage import LocalArtifactStorage, artifact_key


def test_artifact_key_layout():
    assert artifact_key("lending", 12, "promissory_note", 3) == "lending/12/promissory_note-v3.docx"


def test_local_put_get_delete(tmp_path):
    store = LocalArtifactStorage(root=str(tmp_path))
    key = artifact_key("ma", 1, "nda", 1)

    store.put(key, b"PK\x03\x04", "application/octet-stream")
    assert store.get(key) == b"PK\x03\x04"
    assert (tmp_path / "ma" / "1" / "nda-v1.docx").exists()
    assert not (tmp_path / "ma" / "1" / "nda-v1.docx.tmp").exists()

    store.delete(key)
    store.delete(key)
    with pytest.raises(StorageError):
        store.get(key)


def test_keys_cannot_escape_root(tmp_path):
    store = LocalArtifactStorage(root=str(tmp_path / "artifacts"))
    with pytest.raises(StorageError):
        store.put("../outside.docx", b"x", "application/octet-stream")
