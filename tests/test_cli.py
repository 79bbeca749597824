"""
tests/test_cli.py -- Tests for the main.py administration commands.

The password prompt is fed through a patched getpass.getpass.
"""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

import main
from auth.store import UserStore
from tours.store import TourStore


@pytest.fixture()
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setattr(main, "get_settings", lambda: SimpleNamespace(database_url=url, bcrypt_rounds=4))
    return url


@pytest.fixture()
def typed_password(monkeypatch):
    """Answer every getpass prompt with the given password."""

    def answer(password):
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": password)

    return answer


def _tour(name, **extra):
    return {
        "name": name,
        "duration": 5,
        "maxGroupSize": 25,
        "difficulty": "easy",
        "price": 397,
        "summary": "A walk in the woods",
        "imageCover": "tour-1-cover.jpg",
        **extra,
    }


def test_create_admin(db_url, typed_password, capsys):
    typed_password("pass1234")
    assert main.main(["create-admin", "Root Admin", "Root@Example.com"]) == 0
    store = UserStore(db_url)
    try:
        admin = store.get_by_email("root@example.com")
        assert admin.role == "admin"
    finally:
        store.close()
    assert "Created admin" in capsys.readouterr().out


def test_create_admin_has_no_password_flag(db_url, typed_password):
    typed_password("pass1234")
    with pytest.raises(SystemExit):
        main.main(["create-admin", "Root", "root@example.com", "--password", "pass1234"])


def test_create_admin_rejects_short_password(db_url, typed_password):
    typed_password("short")
    assert main.main(["create-admin", "Root", "root@example.com"]) == 1


def test_create_admin_rejects_bad_email(db_url, typed_password, capsys):
    typed_password("pass1234")
    assert main.main(["create-admin", "Root", "not-an-email"]) == 1
    assert "Please provide a valid email!" in capsys.readouterr().err


def test_create_admin_duplicate(db_url, typed_password):
    typed_password("pass1234")
    assert main.main(["create-admin", "Root", "root@example.com"]) == 0
    assert main.main(["create-admin", "Root", "root@example.com"]) == 1


def test_import_and_delete_tours(db_url, tmp_path, capsys):
    data = tmp_path / "tours.json"
    data.write_text(json.dumps([_tour("The Forest Hiker"), _tour("Tiny"), _tour("The Sea Explorer", difficulty="medium")]))

    assert main.main(["import-tours", str(data)]) == 1
    assert "Imported 2 of 3 tour(s)." in capsys.readouterr().out

    store = TourStore(db_url)
    try:
        assert sorted(t.name for t in store.list_tours()) == ["The Forest Hiker", "The Sea Explorer"]
    finally:
        store.close()

    assert main.main(["delete-tours"]) == 1
    assert main.main(["delete-tours", "--yes"]) == 0
    store = TourStore(db_url)
    try:
        assert store.list_tours() == []
    finally:
        store.close()


def test_import_skips_bad_start_location(db_url, tmp_path, capsys):
    data = tmp_path / "tours.json"
    bad = _tour("The Lost Explorer", startLocation={"type": "Point", "coordinates": ["east", "north"]})
    data.write_text(json.dumps([bad]))
    assert main.main(["import-tours", str(data)]) == 1
    assert "Start location must be a GeoJSON point" in capsys.readouterr().out


def test_import_missing_file(db_url, tmp_path):
    assert main.main(["import-tours", str(tmp_path / "absent.json")]) == 1
