import os
import re

import pytest

from sqlitepool.db import Config, open_db
from sqlitepool.mig8 import generate_file, main


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("MIG_DIR", raising=False)
    monkeypatch.delenv("DB_PATH", raising=False)


def test_generate_file(tmp_path):
    file_name = "add_users_table"
    sep = "_"

    path = generate_file(tmp_path, file_name, sep)
    assert os.path.isfile(path)
    base = os.path.basename(path)
    assert base.endswith(sep + file_name + ".sql")
    assert re.fullmatch(r"\d{14}_add_users_table\.sql", base)

    nested = tmp_path / "nested"
    path2 = generate_file(nested, file_name, sep)
    assert nested.is_dir()
    assert os.path.isfile(path2)
    assert os.path.dirname(path2) == str(nested)


def test_generate_file_is_empty_and_uses_separator(tmp_path):
    path = generate_file(str(tmp_path), "init", "-")
    assert os.path.getsize(path) == 0
    assert re.fullmatch(r"\d{14}-init\.sql", os.path.basename(path))


def test_main_requires_db(tmp_path, capsys):
    code = main(["-dir", str(tmp_path)])
    assert code == 1
    assert "DB_PATH not provided" in capsys.readouterr().out


def test_main_requires_dir(tmp_path, capsys):
    code = main(["-db", str(tmp_path / "app.db")])
    assert code == 1
    assert "MIG_DIR not provided" in capsys.readouterr().out


def test_main_warns_about_missing_env(tmp_path, capsys):
    main([])
    out = capsys.readouterr().out
    assert "MIG_DIR not found in environment" in out
    assert "DB_PATH not found in environment" in out


def test_main_generates_file(tmp_path, capsys):
    mig_dir = tmp_path / "migs"
    code = main(["-db", str(tmp_path / "app.db"), "-dir", str(mig_dir), "-file", "init"])
    assert code == 0
    files = os.listdir(mig_dir)
    assert len(files) == 1
    assert files[0].endswith("_init.sql")
    assert "Migration file generated" in capsys.readouterr().out


def test_main_uses_environment(tmp_path, monkeypatch):
    mig_dir = tmp_path / "envmigs"
    monkeypatch.setenv("MIG_DIR", str(mig_dir))
    monkeypatch.setenv("DB_PATH", str(tmp_path / "env.db"))
    code = main(["-file", "create_posts"])
    assert code == 0
    assert [f for f in os.listdir(mig_dir) if f.endswith("_create_posts.sql")]


def test_main_runs_and_lists_migrations(tmp_path, capsys):
    mig_dir = tmp_path / "migs"
    mig_dir.mkdir()
    name = "20230101000000_init.sql"
    (mig_dir / name).write_text("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT);")
    db_path = str(tmp_path / "app.db")

    assert main(["-db", db_path, "-dir", str(mig_dir), "-run"]) == 0
    assert "Migrations ran successfully" in capsys.readouterr().out

    with open_db(Config(db_path=db_path)) as client:
        assert client.list_migrations() == [name]

    assert main(["-db", db_path, "-dir", str(mig_dir), "-list"]) == 0
    out = capsys.readouterr().out
    assert "Migrations listed successfully" in out
    assert name in out


def test_main_run_fails_on_invalid_file(tmp_path, capsys):
    mig_dir = tmp_path / "migs"
    mig_dir.mkdir()
    (mig_dir / "abc_init.sql").write_text("SELECT 1;")
    code = main(["-db", str(tmp_path / "app.db"), "-dir", str(mig_dir), "-run"])
    assert code == 1
    out = capsys.readouterr().out
    assert "Failed to run migrations" in out
    assert "migration file name prefix is not a number" in out


def test_main_file_with_run_does_not_generate(tmp_path):
    mig_dir = tmp_path / "migs"
    mig_dir.mkdir()
    code = main(
        ["-db", str(tmp_path / "app.db"), "-dir", str(mig_dir), "-file", "x", "-run"]
    )
    assert code == 0
    assert os.listdir(mig_dir) == []