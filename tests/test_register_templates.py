from pathlib import Path

from attendance_backend.errors import StorageUnavailable
from attendance_backend.register_templates import main, parse_filename, register_from_directory

from conftest import make_print, png_of


def test_parse_filename():
    assert parse_filename(Path("emp001_john_doe.png")) == ("emp001", "John Doe")
    assert parse_filename(Path("emp001.png")) is None


def test_register_from_directory(tmp_path, db_manager):
    (tmp_path / "emp001_john_doe.png").write_bytes(png_of(make_print(1)))
    (tmp_path / "emp002_jane.png").write_bytes(png_of(make_print(2)))
    (tmp_path / "noname.png").write_bytes(png_of(make_print(3)))
    (tmp_path / "emp003_broken.png").write_bytes(b"not a png")

    assert register_from_directory(tmp_path, db_manager) == (2, 1)
    assert [p["person_name"] for p in db_manager.list_enrolled()] == ["John Doe", "Jane"]


def test_main_seeds_database(tmp_path):
    images = tmp_path / "images"
    images.mkdir()
    (images / "emp001_john_doe.png").write_bytes(png_of(make_print(1)))
    db_path = tmp_path / "seeded.db"

    assert main(["--dir", str(images), "--db", str(db_path)]) == 0
    assert db_path.exists()
    assert main(["--dir", str(tmp_path / "missing"), "--db", str(db_path)]) == 1


def test_storage_errors_do_not_stop_the_run(tmp_path, db_manager, monkeypatch):
    (tmp_path / "emp001_john_doe.png").write_bytes(png_of(make_print(1)))
    (tmp_path / "emp002_jane.png").write_bytes(png_of(make_print(2)))
    store = db_manager.add_template

    def flaky_store(person_id, image, person_name=None):
        if person_id == "emp001":
            raise StorageUnavailable("database is locked")
        return store(person_id, image, person_name=person_name)

    monkeypatch.setattr(db_manager, "add_template", flaky_store)

    assert register_from_directory(tmp_path, db_manager) == (1, 1)
    assert [p["person_id"] for p in db_manager.list_enrolled()] == ["emp002"]
