"""Click entry point for all commands."""

import asyncio
import sys

import click

from cellar import __version__, config, log
from cellar import brew as brew_mod
from cellar.cache import Cache
from cellar.errors import BrewError, NotFound


@click.group()
@click.version_option(version=__version__, prog_name="cellar")
def main():
    """Homebrew packages and services from the terminal."""


def _brew() -> brew_mod.Brew:
    try:
        settings = config.load_settings()
    except config.ConfigError as e:
        log.error(str(e))
        sys.exit(1)
    return brew_mod.from_settings(settings)


def _fail(e: BrewError):
    log.error(e.message)
    if isinstance(e, NotFound):
        log.error("Set CELLAR_BREW_PATH (or brew_path in the config file) to your brew binary.")
    sys.exit(1)


def _perform(brew: brew_mod.Brew, name: str, /, **kwargs):
    try:
        return asyncio.run(brew.perform(name, **kwargs))
    except BrewError as e:
        _fail(e)


def _perform_all(brew: brew_mod.Brew, names: list[str], force_refresh: bool = False) -> list:
    """Run several read operations concurrently, one brew process each."""

    async def _all():
        return await asyncio.gather(
            *(brew.perform(name, force_refresh=force_refresh) for name in names)
        )

    try:
        return asyncio.run(_all())
    except BrewError as e:
        _fail(e)


def _relay(brew: brew_mod.Brew, name: str, /, **params) -> None:
    """Echo a streaming operation's output as it arrives."""

    async def _run():
        async for chunk in brew.stream(name, **params):
            click.echo(chunk, nl=False)

    try:
        asyncio.run(_run())
    except BrewError as e:
        _fail(e)
    except KeyboardInterrupt:
        log.error("Interrupted")
        sys.exit(130)


def _formula_version(formula: dict) -> str:
    installed = formula.get("installed") or []
    if installed:
        return installed[-1].get("version", "?")
    return (formula.get("versions") or {}).get("stable", "?")


def _outdated_mark(item: dict) -> str:
    return " " + click.style("(outdated)", fg="yellow") if item.get("outdated") else ""


def _print_formulae(formulae: list[dict]) -> None:
    if not formulae:
        return
    log.header("Formulae")
    for f in sorted(formulae, key=lambda f: f.get("name", "")):
        version = click.style(_formula_version(f), dim=True)
        log.info(f"  {f.get('name', '?')} {version}{_outdated_mark(f)}")


def _print_casks(casks: list[dict]) -> None:
    if not casks:
        return
    log.header("Casks")
    for c in sorted(casks, key=lambda c: c.get("token", "")):
        version = click.style(str(c.get("installed") or c.get("version", "?")), dim=True)
        log.info(f"  {c.get('token', '?')} {version}{_outdated_mark(c)}")


def _print_services(services: list[dict]) -> None:
    running = [s for s in services if s.get("status") == "started"]
    stopped = [s for s in services if s.get("status") != "started"]
    log.info(f"Services ({len(running)}/{len(services)} running)")
    for svc in running:
        log.info("  " + click.style("●", fg="green") + f" {svc.get('name', '?')}")
    for svc in stopped:
        log.info("  " + click.style(f"○ {svc.get('name', '?')}", dim=True))


@main.command()
@click.option("--refresh", is_flag=True, help="Ignore cached results")
def status(refresh):
    """Summary of installed packages and services."""
    brew = _brew()
    formulae, casks, services = _perform_all(
        brew, ["list-formulae", "list-casks", "list-services"], force_refresh=refresh
    )

    log.header("Cellar Status")
    log.info(f"Formulae:  {len(formulae)}")
    log.info(f"Casks:     {len(casks)}")
    log.info(f"Total:     {len(formulae) + len(casks)}")
    log.info("")

    outdated_formulae = [f for f in formulae if f.get("outdated")]
    outdated_casks = [c for c in casks if c.get("outdated")]
    count = len(outdated_formulae) + len(outdated_casks)
    if count:
        log.warning(f"{count} outdated package{'' if count == 1 else 's'}")
        for f in outdated_formulae:
            log.step(f"↑ {f.get('name', '?')} {_formula_version(f)}")
        for c in outdated_casks:
            log.step(f"↑ {c.get('token', '?')}")
    else:
        log.success("All packages up to date")
    log.info("")

    _print_services(services)


@main.command(name="list")
@click.option("--formulae", "only", flag_value="formulae", help="Only formulae")
@click.option("--casks", "only", flag_value="casks", help="Only casks")
@click.option("--refresh", is_flag=True, help="Ignore cached results")
def list_cmd(only, refresh):
    """List installed packages."""
    brew = _brew()
    if only == "formulae":
        formulae = _perform(brew, "list-formulae", force_refresh=refresh)
        _print_formulae(formulae)
        log.info(f"{len(formulae)} formulae installed")
    elif only == "casks":
        casks = _perform(brew, "list-casks", force_refresh=refresh)
        _print_casks(casks)
        log.info(f"{len(casks)} casks installed")
    else:
        formulae, casks = _perform_all(brew, ["list-formulae", "list-casks"], force_refresh=refresh)
        _print_formulae(formulae)
        _print_casks(casks)
        log.info(f"{len(formulae) + len(casks)} packages installed")


@main.command()
@click.argument("query")
def search(query):
    """Search formulae and casks."""
    brew = _brew()

    async def _both():
        return await asyncio.gather(
            brew.perform("search-formulae", query=query),
            brew.perform("search-casks", query=query),
        )

    try:
        formulae, casks = asyncio.run(_both())
    except BrewError as e:
        _fail(e)

    if not formulae and not casks:
        log.warning(f'No results found for "{query}"')
        return
    for title, names in (("Formulae", formulae), ("Casks", casks)):
        if names:
            log.header(title)
            for name in names:
                log.info(f"  {name}")
    total = len(formulae) + len(casks)
    log.info(f"{total} result{'' if total == 1 else 's'} found")


@main.command()
@click.option("--refresh", is_flag=True, help="Ignore cached results")
def outdated(refresh):
    """Packages with newer versions available."""
    items = _perform(_brew(), "outdated", force_refresh=refresh)
    if not items:
        log.success("All packages up to date")
        return
    for item in items:
        current = ", ".join(item.get("installed_versions") or []) or "?"
        log.info(f"  {item.get('name', '?')} {current} → {item.get('current_version', '?')}")


@main.command()
@click.argument("name")
@click.option("--cask", is_flag=True, help="Install a cask")
def install(name, cask):
    """Install a formula or cask."""
    _relay(_brew(), "install-cask" if cask else "install", name=name)
    log.success(f"{name} installed")


@main.command()
@click.argument("name")
def uninstall(name):
    """Uninstall a package."""
    _perform(_brew(), "uninstall", name=name)
    log.success(f"{name} uninstalled")


@main.command()
@click.argument("name", required=False)
def upgrade(name):
    """Upgrade one package, or everything outdated."""
    if name:
        _relay(_brew(), "upgrade", name=name)
    else:
        _relay(_brew(), "upgrade-all")
    log.success("Upgrade complete")


def _service_action(operation: str, name: str, verb: str, done: str) -> None:
    log.info(f"{verb} {name}...")
    _perform(_brew(), operation, name=name)
    log.success(f"{name} {done}")


@main.command()
@click.argument("service")
def start(service):
    """Start a Homebrew service."""
    _service_action("start-service", service, "Starting", "started")


@main.command()
@click.argument("service")
def stop(service):
    """Stop a Homebrew service."""
    _service_action("stop-service", service, "Stopping", "stopped")


@main.command()
@click.argument("service")
def restart(service):
    """Restart a Homebrew service."""
    _service_action("restart-service", service, "Restarting", "restarted")


@main.command()
@click.option("--refresh", is_flag=True, help="Ignore cached results")
def services(refresh):
    """List Homebrew services."""
    _print_services(_perform(_brew(), "list-services", force_refresh=refresh))


@main.command()
def health():
    """Run brew doctor and show results."""
    log.header("Homebrew Health Check")
    output = _perform(_brew(), "doctor")
    if "Your system is ready to brew" in output:
        log.success("Your system is ready to brew.")
        return
    for line in output.splitlines():
        if line.startswith(("Warning:", "Error:")):
            click.echo(click.style(line, fg="yellow"))
        else:
            click.echo(line)


@main.command()
@click.option("--dry-run", is_flag=True, help="Show what would be removed")
@click.option("--aggressive", is_flag=True, help="Prune all cached downloads")
def cleanup(dry_run, aggressive):
    """Remove old versions and cached downloads."""
    brew = _brew()
    if dry_run:
        click.echo(_perform(brew, "cleanup-dry-run"), nl=False)
        return
    log.header("Homebrew Cleanup")
    _relay(brew, "cleanup-aggressive" if aggressive else "cleanup")
    log.success("Cleanup complete")


@main.command()
@click.argument("name")
@click.option("--uses", "reverse", is_flag=True, help="Installed packages that depend on NAME")
def deps(name, reverse):
    """Show the dependency tree of a package."""
    brew = _brew()
    if reverse:
        for dependent in _perform(brew, "uses", name=name):
            click.echo(dependent)
    else:
        click.echo(_perform(brew, "deps", name=name), nl=False)


@main.group()
def cache():
    """Manage cached brew results."""


@cache.command(name="clear")
def cache_clear():
    """Delete every cached result."""
    try:
        settings = config.load_settings()
    except config.ConfigError as e:
        log.error(str(e))
        sys.exit(1)
    removed = Cache(settings.cache_dir).clear()
    log.success(f"Removed {removed} cache file{'' if removed == 1 else 's'}")


if __name__ == "__main__":
    main()
