import logging
import os

import pytest

from edgeindex import main as cli
from edgeindex.core.errors import StagedArtifactInvalid
from edgeindex.updater import service as service_module
from edgeindex.updater.lock import UpdateLock


@pytest.fixture(autouse=True)
def _isolated_logging(tmp_path, monkeypatch):
    monkeypatch.setenv("EDGEINDEX_LOG_DIR", str(tmp_path / "logs"))
    for name in ("EDGEINDEX_BASE_DIR", "EDGEINDEX_RETENTION_COUNT", "EDGEINDEX_HASH_WORKERS"):
        monkeypatch.delenv(name, raising=False)
    yield
    logging.getLogger().handlers.clear()


def _update_args(base_dir, release, *extra):
    return [
        "--base-dir", str(base_dir),
        "update", str(release.manifest), str(release.signature), str(release.public_key),
        *extra,
    ]


def test_update_exits_zero_and_promotes(base_dir, make_release, capsys):
    assert cli.main(_update_args(base_dir, make_release("v2"))) == cli.EXIT_OK
    assert os.readlink(base_dir / "current") == "releases/v2"
    assert "v2" in capsys.readouterr().out


def test_hash_mismatch_exits_one(base_dir, make_release, capsys):
    cli.main(_update_args(base_dir, make_release("v1")))
    release = make_release("v2", declared={"fts.sqlite": "f" * 64})

    assert cli.main(_update_args(base_dir, release)) == cli.EXIT_HARD_FAILURE

    assert "HashMismatch" in capsys.readouterr().err
    assert not (base_dir / "releases" / "v2").exists()
    assert os.readlink(base_dir / "current") == "releases/v1"


def test_post_swap_failure_exits_two(base_dir, make_release, monkeypatch):
    calls = []
    real_smoke = service_module.smoke_check

    def smoke(db_path, query):
        calls.append(db_path)
        if len(calls) > 1:
            raise StagedArtifactInvalid("broken after swap")
        return real_smoke(db_path, query)

    monkeypatch.setattr(service_module, "smoke_check", smoke)

    assert cli.main(_update_args(base_dir, make_release("v1"))) == cli.EXIT_POST_SWAP_FAILURE
    assert os.readlink(base_dir / "current") == "releases/v1"


def test_lock_contention_exit_code(base_dir, make_release):
    release = make_release("v1")
    with UpdateLock(base_dir):
        assert cli.main(_update_args(base_dir, release)) == cli.EXIT_LOCKED
    assert not (base_dir / "releases" / "v1").exists()


def test_keep_flag_overrides_retention(base_dir, make_release):
    for version in ("v1", "v2", "v3"):
        assert cli.main(_update_args(base_dir, make_release(version), "--keep", "2")) == cli.EXIT_OK
    assert sorted(p.name for p in (base_dir / "releases").iterdir()) == ["v2", "v3"]


def test_invalid_keep_is_rejected(base_dir, make_release):
    assert cli.main(_update_args(base_dir, make_release("v1"), "--keep", "0")) == cli.EXIT_HARD_FAILURE
    assert not (base_dir / "releases").exists()


def test_status_command(base_dir, make_release, capsys):
    cli.main(_update_args(base_dir, make_release("v1")))
    cli.main(_update_args(base_dir, make_release("v2")))
    capsys.readouterr()

    assert cli.main(["--base-dir", str(base_dir), "status"]) == cli.EXIT_OK

    out = capsys.readouterr().out
    assert "Active: v2" in out
    assert "Rollback available: v1" in out


def test_mistyped_config_file_exits_one(tmp_path, base_dir, capsys):
    config_path = tmp_path / "edgeindex.json"
    config_path.write_text('{"smoke_query": 5}', encoding="utf-8")

    assert cli.main(["--config", str(config_path), "--base-dir", str(base_dir), "status"]) == cli.EXIT_HARD_FAILURE
    assert "smoke_query" in capsys.readouterr().err
