from __future__ import annotations

import pytest

from docstore.webapi import __main__ as runner

pytestmark = pytest.mark.webapi


def test_environment_for_translates_root_and_auth(tmp_path):
    args = runner.build_parser().parse_args(["--root", str(tmp_path), "--no-auth"])

    assert runner.environment_for(args) == {
        "DOCSTORE_DIR": str(tmp_path.resolve()),
        "DOCSTORE_AUTH_ENABLED": "false",
    }
    assert runner.environment_for(runner.build_parser().parse_args([])) == {}


def test_main_launches_the_app_factory(monkeypatch, tmp_path):
    captured = {}
    monkeypatch.setenv("DOCSTORE_DIR", "unused")
    monkeypatch.setenv("DOCSTORE_AUTH_ENABLED", "false")
    monkeypatch.setattr(runner.uvicorn, "run", lambda app, **kwargs: captured.update(app=app, **kwargs))

    runner.main(["--port", "9001", "--root", str(tmp_path), "--auth"])

    assert captured["app"] == "docstore.webapi.application:create_app"
    assert captured["factory"] is True
    assert captured["port"] == 9001
    assert runner.os.environ["DOCSTORE_AUTH_ENABLED"] == "true"
    assert runner.os.environ["DOCSTORE_DIR"] == str(tmp_path.resolve())
