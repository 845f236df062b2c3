"""Tests for cli.py: Click CLI commands."""

import json

from click.testing import CliRunner

from cellar.cli import main
from cellar.errors import NonZeroExit, NotFound
from cellar.process import Result

FORMULAE = {
    "formulae": [
        {"name": "wget", "installed": [{"version": "1.24.5"}], "outdated": False},
        {"name": "git", "installed": [{"version": "2.44.0"}], "outdated": True},
    ]
}
CASKS = {"casks": [{"token": "firefox", "installed": "125.0", "outdated": False}]}
SERVICES = [
    {"name": "redis", "status": "started"},
    {"name": "postgresql@16", "status": "none"},
]


def _ok(stdout: str = "", stderr: str = "") -> Result:
    return Result(returncode=0, stdout=stdout, stderr=stderr)


def test_version():
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "cellar" in result.output


def test_help():
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ["status", "list", "search", "install", "start", "stop", "health", "cleanup"]:
        assert command in result.output


def test_list_formulae(brew_env, mock_process):
    mock_process.responses.append(_ok(json.dumps(FORMULAE)))
    result = CliRunner().invoke(main, ["list", "--formulae"])
    assert result.exit_code == 0
    assert "wget" in result.output
    assert "1.24.5" in result.output
    assert "(outdated)" in result.output
    assert "2 formulae installed" in result.output
    assert mock_process.calls == [("run", ["brew", "info", "--json=v2", "--installed", "--formula"])]


def test_list_uses_cache_on_second_run(brew_env, mock_process):
    mock_process.responses.append(_ok(json.dumps(FORMULAE)))
    runner = CliRunner()
    runner.invoke(main, ["list", "--formulae"])
    result = runner.invoke(main, ["list", "--formulae"])
    assert result.exit_code == 0
    assert "wget" in result.output
    assert len(mock_process.calls) == 1


def test_list_refresh_bypasses_cache(brew_env, mock_process):
    mock_process.responses.extend([_ok(json.dumps(FORMULAE)), _ok(json.dumps(FORMULAE))])
    runner = CliRunner()
    runner.invoke(main, ["list", "--formulae"])
    runner.invoke(main, ["list", "--formulae", "--refresh"])
    assert len(mock_process.calls) == 2


def test_list_all(brew_env, mock_process):
    mock_process.responses.extend([_ok(json.dumps(FORMULAE)), _ok(json.dumps(CASKS))])
    result = CliRunner().invoke(main, ["list"])
    assert result.exit_code == 0
    assert "firefox" in result.output
    assert "3 packages installed" in result.output


def test_status(brew_env, mock_process):
    mock_process.responses.extend(
        [_ok(json.dumps(FORMULAE)), _ok(json.dumps(CASKS)), _ok(json.dumps(SERVICES))]
    )
    result = CliRunner().invoke(main, ["status"])
    assert result.exit_code == 0
    assert "Formulae:  2" in result.output
    assert "Casks:     1" in result.output
    assert "1 outdated package" in result.output
    assert "↑ git 2.44.0" in result.output
    assert "Services (1/2 running)" in result.output


def test_search(brew_env, mock_process):
    mock_process.responses.extend([_ok("wget\nwget2\n"), _ok("")])
    result = CliRunner().invoke(main, ["search", "wget"])
    assert result.exit_code == 0
    assert "wget2" in result.output
    assert "2 results found" in result.output


def test_search_no_results(brew_env, mock_process):
    result = CliRunner().invoke(main, ["search", "zzz"])
    assert result.exit_code == 0
    assert 'No results found for "zzz"' in result.output


def test_start(brew_env, mock_process):
    result = CliRunner().invoke(main, ["start", "redis"])
    assert result.exit_code == 0
    assert "Starting redis..." in result.output
    assert "redis started" in result.output
    assert mock_process.calls == [("run", ["brew", "services", "start", "redis"])]


def test_stop_failure(brew_env, mock_process):
    mock_process.responses.append(Result(returncode=1, stdout="", stderr="Error: Service `redis` is not started."))
    result = CliRunner().invoke(main, ["stop", "redis"])
    assert result.exit_code == 1
    assert "is not started" in result.output


def test_brew_not_found(brew_env, mock_process):
    mock_process.responses.append(NotFound("brew"))
    result = CliRunner().invoke(main, ["restart", "redis"])
    assert result.exit_code == 1
    assert "Homebrew not found" in result.output
    assert "CELLAR_BREW_PATH" in result.output


def test_install_streams_output(brew_env, mock_process):
    mock_process.chunks.extend(["==> Fetching wget\n", "==> Pouring wget\n"])
    result = CliRunner().invoke(main, ["install", "wget"])
    assert result.exit_code == 0
    assert "==> Fetching wget\n==> Pouring wget\n" in result.output
    assert "wget installed" in result.output
    assert mock_process.calls == [("run_streaming", ["brew", "install", "wget"])]


def test_install_cask(brew_env, mock_process):
    CliRunner().invoke(main, ["install", "--cask", "firefox"])
    assert mock_process.calls == [("run_streaming", ["brew", "install", "--cask", "firefox"])]


def test_install_failure(brew_env, mock_process):
    mock_process.chunks.extend(["==> Fetching nope\n", NonZeroExit(1, "Error: No available formula")])
    result = CliRunner().invoke(main, ["install", "nope"])
    assert result.exit_code == 1
    assert "No available formula" in result.output
    assert "nope installed" not in result.output


def test_uninstall(brew_env, mock_process):
    result = CliRunner().invoke(main, ["uninstall", "wget"])
    assert result.exit_code == 0
    assert "wget uninstalled" in result.output
    assert mock_process.calls == [("run", ["brew", "uninstall", "wget"])]


def test_upgrade_one(brew_env, mock_process):
    mock_process.chunks.append("==> Upgrading git\n")
    result = CliRunner().invoke(main, ["upgrade", "git"])
    assert result.exit_code == 0
    assert "==> Upgrading git" in result.output
    assert "Upgrade complete" in result.output
    assert mock_process.calls == [("run_streaming", ["brew", "upgrade", "git"])]


def test_install_marks_package_list_stale(brew_env, mock_process):
    mock_process.responses.extend([_ok(json.dumps(FORMULAE)), _ok(json.dumps(FORMULAE))])
    runner = CliRunner()
    runner.invoke(main, ["list", "--formulae"])
    runner.invoke(main, ["install", "wget"])
    result = runner.invoke(main, ["list", "--formulae"])
    assert result.exit_code == 0
    assert [call[0] for call in mock_process.calls] == ["run", "run_streaming", "run"]


def test_upgrade_all(brew_env, mock_process):
    result = CliRunner().invoke(main, ["upgrade"])
    assert result.exit_code == 0
    assert mock_process.calls == [("run_streaming", ["brew", "upgrade"])]


def test_health_ready(brew_env, mock_process):
    mock_process.responses.append(_ok("Your system is ready to brew.\n"))
    result = CliRunner().invoke(main, ["health"])
    assert result.exit_code == 0
    assert "Your system is ready to brew." in result.output


def test_health_with_findings(brew_env, mock_process):
    mock_process.responses.append(
        Result(returncode=1, stdout="", stderr="Warning: Some installed kegs have no formulae.\n")
    )
    result = CliRunner().invoke(main, ["health"])
    assert result.exit_code == 0
    assert "Warning: Some installed kegs have no formulae." in result.output


def test_cleanup_dry_run(brew_env, mock_process):
    mock_process.responses.append(_ok("Would remove: /cache/wget--1.21.tar.gz\n"))
    result = CliRunner().invoke(main, ["cleanup", "--dry-run"])
    assert result.exit_code == 0
    assert "Would remove" in result.output
    assert mock_process.calls == [("run", ["brew", "cleanup", "-n"])]


def test_cleanup_aggressive(brew_env, mock_process):
    result = CliRunner().invoke(main, ["cleanup", "--aggressive"])
    assert result.exit_code == 0
    assert mock_process.calls == [("run_streaming", ["brew", "cleanup", "--prune=all", "-s"])]


def test_deps_tree(brew_env, mock_process):
    mock_process.responses.append(_ok("curl\n└── openssl@3\n"))
    result = CliRunner().invoke(main, ["deps", "curl"])
    assert result.exit_code == 0
    assert "└── openssl@3" in result.output
    assert mock_process.calls == [("run", ["brew", "deps", "--tree", "curl"])]


def test_deps_uses(brew_env, mock_process):
    mock_process.responses.append(_ok("curl\ngit\n"))
    result = CliRunner().invoke(main, ["deps", "openssl@3", "--uses"])
    assert result.exit_code == 0
    assert "curl\ngit\n" in result.output
    assert mock_process.calls == [("run", ["brew", "uses", "--installed", "openssl@3"])]


def test_cache_clear(brew_env, mock_process):
    mock_process.responses.append(_ok(json.dumps(FORMULAE)))
    runner = CliRunner()
    runner.invoke(main, ["list", "--formulae"])
    result = runner.invoke(main, ["cache", "clear"])
    assert result.exit_code == 0
    assert "Removed 1 cache file" in result.output
    assert list(brew_env.iterdir()) == []


def test_bad_config(monkeypatch, mock_process):
    monkeypatch.setenv("CELLAR_CACHE_MAX_AGE", "soon")
    result = CliRunner().invoke(main, ["services"])
    assert result.exit_code == 1
    assert "number of seconds" in result.output
