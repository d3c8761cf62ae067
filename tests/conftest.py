import hashlib
import json
import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from edgeindex.updater.service import ReleaseUpdater
from edgeindex.utils.config import UpdaterConfig


@dataclass
class ReleaseFiles:
    source_dir: Path
    manifest: Path
    signature: Path
    public_key: Path


def make_index_db(path: Path, rows=("alpha", "beta"), wal: bool = False) -> bytes:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        if wal:
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("CREATE TABLE fts (body TEXT)")
        conn.executemany("INSERT INTO fts (body) VALUES (?)", [(r,) for r in rows])
        conn.commit()
    finally:
        conn.close()
    return path.read_bytes()


def sign(private_key, data: bytes) -> bytes:
    return private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())


@pytest.fixture(scope="session")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def public_key_path(tmp_path, signing_key):
    path = tmp_path / "signing_key_public.pem"
    path.write_bytes(
        signing_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return path


@pytest.fixture
def base_dir(tmp_path):
    return tmp_path / "indexes"


@pytest.fixture
def updater(base_dir):
    return ReleaseUpdater(UpdaterConfig(base_dir=str(base_dir)))


@pytest.fixture
def make_release(tmp_path, signing_key, public_key_path):
    """Write a signed release into ``tmp_path/incoming/<version>``.

    ``declared`` overrides the sha256 written into the manifest per path.
    """

    def _make(version, previous_version=None, extra_files=None, declared=None, with_index=True, key=None):
        source_dir = tmp_path / "incoming" / version
        source_dir.mkdir(parents=True, exist_ok=True)
        contents = {}
        if with_index:
            contents["fts.sqlite"] = make_index_db(source_dir / "fts.sqlite", rows=(version, "beta"))
        for rel_path, data in (extra_files or {}).items():
            target = source_dir / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            contents[rel_path] = data

        files = []
        for rel_path, data in contents.items():
            digest = hashlib.sha256(data).hexdigest()
            files.append({
                "path": rel_path,
                "sha256": (declared or {}).get(rel_path, digest),
                "bytes": len(data),
                "action": "add",
            })
        manifest = {"version": version, "update_type": "full", "files": files}
        if previous_version:
            manifest["previous_version"] = previous_version

        manifest_path = source_dir / "manifest.json"
        raw = json.dumps(manifest, indent=2).encode("utf-8")
        manifest_path.write_bytes(raw)
        signature_path = source_dir / "manifest.json.sig"
        signature_path.write_bytes(sign(key or signing_key, raw))
        return ReleaseFiles(source_dir, manifest_path, signature_path, public_key_path)

    return _make


def snapshot_tree(root: Path, ignore=(".update.lock",)) -> dict:
    """Relative path -> file bytes or symlink target, for before/after comparisons."""
    state = {}
    if not root.exists():
        return state
    for dirpath, dirnames, filenames in os.walk(root):
        for name in sorted(dirnames + filenames):
            if name in ignore:
                continue
            path = Path(dirpath) / name
            rel = path.relative_to(root).as_posix()
            if path.is_symlink():
                state[rel] = ("link", os.readlink(path))
            elif path.is_file():
                state[rel] = ("file", path.read_bytes())
            else:
                state[rel] = ("dir", None)
    return state


@pytest.fixture
def snapshot():
    return snapshot_tree
