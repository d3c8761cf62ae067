import os
import shutil

from edgeindex.updater import retention
from edgeindex.updater.retention import list_releases, prune_releases


def _make_releases(root, names):
    """Create releases with strictly increasing mtimes in the given order."""
    for i, name in enumerate(names):
        path = root / name
        path.mkdir(parents=True)
        (path / "fts.sqlite").write_bytes(name.encode())
        os.utime(path, ns=(1_000_000_000 * (i + 1), 1_000_000_000 * (i + 1)))


def test_list_releases_newest_first_by_mtime(tmp_path):
    _make_releases(tmp_path, ["b", "a", "c"])
    assert [p.name for p in list_releases(tmp_path)] == ["c", "a", "b"]


def test_list_releases_by_embedded_version(tmp_path):
    _make_releases(tmp_path, ["1.10.0", "1.9.0", "nightly", "1.2.0"])
    assert [p.name for p in list_releases(tmp_path, order="version")] == ["1.10.0", "1.9.0", "1.2.0", "nightly"]


def test_prune_keeps_newest(tmp_path):
    _make_releases(tmp_path, ["v1", "v2", "v3", "v4", "v5"])

    result = prune_releases(tmp_path, keep=3)

    assert sorted(result.removed) == ["v1", "v2"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["v3", "v4", "v5"]


def test_prune_never_removes_protected_releases(tmp_path):
    _make_releases(tmp_path, ["v1", "v2", "v3", "v4", "v5"])

    result = prune_releases(tmp_path, keep=3, protected=[tmp_path / "v1", tmp_path / "v5"])

    remaining = sorted(p.name for p in tmp_path.iterdir())
    assert remaining == ["v1", "v4", "v5"]
    assert sorted(result.kept) == remaining
    assert sorted(result.removed) == ["v2", "v3"]


def test_prune_keeps_all_protected_even_above_window(tmp_path):
    _make_releases(tmp_path, ["v1", "v2", "v3"])

    prune_releases(tmp_path, keep=1, protected=[tmp_path / "v1", tmp_path / "v2"])

    assert sorted(p.name for p in tmp_path.iterdir()) == ["v1", "v2"]


def test_prune_logs_and_skips_failures(tmp_path, monkeypatch):
    _make_releases(tmp_path, ["v1", "v2", "v3", "v4", "v5"])
    real_rmtree = shutil.rmtree

    def flaky_rmtree(path, *args, **kwargs):
        if os.path.basename(path) == "v1":
            raise PermissionError("busy")
        return real_rmtree(path, *args, **kwargs)

    monkeypatch.setattr(retention.shutil, "rmtree", flaky_rmtree)

    result = prune_releases(tmp_path, keep=3)

    assert result.removed == ["v2"]
    assert set(result.failed) == {"v1"}
    assert (tmp_path / "v1").exists()


def test_prune_ignores_missing_directory(tmp_path):
    result = prune_releases(tmp_path / "absent", keep=3)
    assert result.removed == [] and result.kept == []
