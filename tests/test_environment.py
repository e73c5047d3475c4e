import random
import string

import pytest

from app_lifecycle.env_store import parse_env, render_env
from app_lifecycle.errors import AppNotFound, ConfigOutdated, MissingField


def _alnum(n: int) -> str:
    return "".join(random.choices(string.ascii_letters + string.digits, k=n))


def test_parse_env_rules():
    text = "A=1\n\nB=x=y\nnot a pair\nA=2\r\nEMPTY=\n"
    assert parse_env(text) == {"A": "2", "B": "x=y", "EMPTY": ""}


def test_render_env_one_line_per_key():
    assert render_env({"A": "1", "B": "two"}) == "A=1\nB=two\n"


def test_get_environment(manager, make_app):
    app = make_app(installed=True)
    assert manager.get_environment(app["id"]).get("TEST_FIELD") == "test"


def test_get_environment_without_file_is_empty(manager, make_app):
    app = make_app()
    assert manager.get_environment(app["id"]) == {}


def test_validate_environment_passes(manager, make_app):
    app = make_app(installed=True)
    manager.validate_environment(app["id"])


def test_validate_environment_missing_required(manager, make_app, paths):
    app = make_app(installed=True)
    paths.env_file(app["id"]).write_text("APP_PORT=test\n")

    with pytest.raises(ConfigOutdated, match="New info needed. App config needs to be updated") as e:
        manager.validate_environment(app["id"])
    assert e.value.missing == ["TEST_FIELD"]


def test_validate_environment_empty_value_counts_as_missing(manager, make_app, paths):
    app = make_app(installed=True)
    paths.env_file(app["id"]).write_text("TEST_FIELD=\n")

    with pytest.raises(ConfigOutdated):
        manager.validate_environment(app["id"])


def test_generate_environment(manager, make_app, paths):
    app = make_app(installed=True)
    value = _alnum(10)

    manager.generate_environment(app["id"], {"TEST_FIELD": value})

    assert manager.get_environment(app["id"])["TEST_FIELD"] == value
    assert f"TEST_FIELD={value}\n" in paths.env_file(app["id"]).read_text()


def test_generate_creates_file_for_new_app(manager, make_app, paths):
    app = make_app()
    manager.generate_environment(app["id"], {"TEST_FIELD": "abc"})
    assert paths.env_file(app["id"]).read_text() == "TEST_FIELD=abc\n"


def test_random_field_is_generated(manager, make_app):
    app = make_app(installed=True, random_field=True)

    manager.generate_environment(app["id"], {"TEST_FIELD": "test"})

    value = manager.get_environment(app["id"])["RANDOM_FIELD"]
    assert len(value) == 32
    assert value.isalnum()


def test_random_field_is_stable_across_calls(manager, make_app):
    app = make_app(installed=True, random_field=True)

    first = manager.generate_environment(app["id"], {"TEST_FIELD": "test"})["RANDOM_FIELD"]
    second = manager.generate_environment(app["id"], {"TEST_FIELD": "other"})["RANDOM_FIELD"]

    assert first == second


def test_random_field_is_not_regenerated(manager, make_app, paths):
    app = make_app(installed=True, random_field=True)
    existing = _alnum(32)
    paths.env_file(app["id"]).write_text(f"RANDOM_FIELD={existing}")

    manager.generate_environment(app["id"], {"TEST_FIELD": "test"})

    assert manager.get_environment(app["id"])["RANDOM_FIELD"] == existing


def test_persisted_random_field_wins_over_user_value(manager, make_app, paths):
    app = make_app(installed=True, random_field=True)
    paths.env_file(app["id"]).write_text("RANDOM_FIELD=seed1234\n")

    env = manager.generate_environment(app["id"], {"TEST_FIELD": "test", "RANDOM_FIELD": "override"})

    assert env["RANDOM_FIELD"] == "seed1234"


def test_random_field_uses_min_length(manager, make_app, paths):
    app = make_app(random_field=True)
    path = paths.catalog_manifest(app["id"])
    path.write_text(path.read_text().replace('"type": "random"', '"type": "random", "min": 12'))

    env = manager.generate_environment(app["id"], {"TEST_FIELD": "x"})

    assert len(env["RANDOM_FIELD"]) == 12


def test_missing_required_field(manager, make_app):
    app = make_app(installed=True)

    with pytest.raises(MissingField, match="Variable TEST_FIELD is required") as e:
        manager.generate_environment(app["id"], {})
    assert e.value.key == "TEST_FIELD"
    assert e.value.label == "Test field"


def test_missing_field_leaves_file_untouched(manager, make_app, paths):
    app = make_app(installed=True)
    before = paths.env_file(app["id"]).read_text()

    with pytest.raises(MissingField):
        manager.generate_environment(app["id"], {"TEST_FIELD": ""})
    assert paths.env_file(app["id"]).read_text() == before


def test_generate_rejects_multiline_values(manager, make_app, paths):
    app = make_app(installed=True)
    before = paths.env_file(app["id"]).read_text()

    with pytest.raises(ValueError):
        manager.generate_environment(app["id"], {"TEST_FIELD": "x\nOTHER=y"})
    with pytest.raises(ValueError):
        manager.generate_environment(app["id"], {"TEST_FIELD": "x", "BAD=KEY": "y"})
    assert paths.env_file(app["id"]).read_text() == before


def test_generate_unknown_app(manager):
    with pytest.raises(AppNotFound, match="App not-existing-app not found"):
        manager.generate_environment("not-existing-app", {"TEST_FIELD": "test"})


def test_generate_replaces_file(manager, make_app, paths):
    app = make_app(installed=True, random_field=True)
    paths.env_file(app["id"]).write_text("STALE=1\nTEST_FIELD=old\nTEST_FIELD=older\nRANDOM_FIELD=keep\n")

    manager.generate_environment(app["id"], {"TEST_FIELD": "new", "EXTRA": "yes"})

    assert manager.get_environment(app["id"]) == {"RANDOM_FIELD": "keep", "TEST_FIELD": "new", "EXTRA": "yes"}
    lines = paths.env_file(app["id"]).read_text().splitlines()
    assert len(lines) == 3


def test_remove_environment(manager, make_app, paths):
    app = make_app(installed=True)
    assert manager.environment.remove_environment(app["id"]) is True
    assert not paths.env_file(app["id"]).exists()
    assert manager.environment.remove_environment(app["id"]) is False
