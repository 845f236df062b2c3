"""Shared test fixtures."""

import pytest

CELLAR_ENV_VARS = [
    "CELLAR_BREW_PATH",
    "CELLAR_CACHE_DIR",
    "CELLAR_CACHE_MAX_AGE",
    "CELLAR_CONFIG",
    "CELLAR_DEBUG",
]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep the developer's own cellar config and cache out of tests."""
    for var in CELLAR_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))


@pytest.fixture
def brew_env(monkeypatch, tmp_path):
    """Point the CLI at a fake brew path and a temp cache directory."""
    cache_dir = tmp_path / "cache"
    monkeypatch.setenv("CELLAR_BREW_PATH", "brew")
    monkeypatch.setenv("CELLAR_CACHE_DIR", str(cache_dir))
    return cache_dir


@pytest.fixture
def mock_process(monkeypatch):
    """Mock process.run and process.run_streaming for tests.

    Queue Results (or exceptions) on ``responses`` for run(); put chunks (or an
    exception to end the stream) on ``chunks`` for run_streaming().
    """
    from cellar import process

    calls = []
    responses = []
    chunks = []

    async def fake_run(args, env=None, cwd=None, **kwargs):
        calls.append(("run", args))
        if responses:
            response = responses.pop(0)
            if isinstance(response, BaseException):
                raise response
            return response
        return process.Result(returncode=0, stdout="", stderr="")

    async def fake_run_streaming(args, env=None, cwd=None, **kwargs):
        calls.append(("run_streaming", args))
        for chunk in chunks:
            if isinstance(chunk, BaseException):
                raise chunk
            yield chunk

    monkeypatch.setattr(process, "run", fake_run)
    monkeypatch.setattr(process, "run_streaming", fake_run_streaming)

    return type("MockProcess", (), {"calls": calls, "responses": responses, "chunks": chunks})()
