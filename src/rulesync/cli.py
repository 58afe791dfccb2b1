"""CLI application entry point."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape
from rich.table import Table

from rulesync.config.defaults import CONFIG_FILENAME
from rulesync.config.loader import load_config
from rulesync.core.lockfile import LOCKFILE_NAME, read_lockfile
from rulesync.core.skill import CuratedSkill
from rulesync.core.source import SourceParseError, parse_source
from rulesync.core.sync import SyncOptions, resolve_and_fetch_sources
from rulesync.utils.output import console, logger

app = typer.Typer(
    name="rulesync",
    help="Install skills from remote repositories into .rulesync/skills",
    no_args_is_help=True,
)


# Template for init command
TEMPLATE_CONFIG = """{
  "$schema": "https://raw.githubusercontent.com/dyoshikawa/rulesync/refs/heads/main/config-schema.json",

  // Remote repositories to install skills from. Each source is one of:
  //   "owner/repo", "owner/repo@ref", "owner/repo:path/to/skills",
  //   "https://github.com/owner/repo/tree/<ref>/<path>"
  "sources": [
    // Install every skill under skills/ on the default branch
    // { "source": "anthropics/skills" },

    // Install selected skills from a pinned tag
    // { "source": "acme/skills@v1", "skills": ["writer", "reviewer"] },
  ],

  // Maximum simultaneous requests to GitHub
  "concurrency": 10,
}
"""


def get_config_path(config: Optional[Path], base_dir: Path) -> Optional[Path]:
    """Resolve config path according to precedence order.

    1. --config <path> flag (explicit)
    2. <base-dir>/rulesync.jsonc (project config)

    Args:
        config: Config path from --config flag
        base_dir: Project root

    Returns:
        Resolved config path or None if no config exists
    """
    if config:
        return config

    project_config = base_dir / CONFIG_FILENAME
    if project_config.exists():
        return project_config

    return None


def _short(value: Optional[str], length: int) -> str:
    if not value:
        return "-"
    return value[:length]


@app.command()
def install(
    update: bool = typer.Option(
        False,
        "--update",
        help="Re-resolve every ref instead of reusing the lockfile",
    ),
    frozen: bool = typer.Option(
        False,
        "--frozen",
        help="Fail if the lockfile or installed skills are out of date (for CI)",
    ),
    token: Optional[str] = typer.Option(
        None,
        "--token",
        help="GitHub token (default: GITHUB_TOKEN or GH_TOKEN)",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file (overrides default search)",
    ),
    base_dir: Path = typer.Option(
        Path("."),
        "--base-dir",
        help="Project root containing .rulesync and rulesync.lock",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
    silent: bool = typer.Option(False, "--silent", "-s", help="Only show errors"),
):
    """Install skills from the sources declared in rulesync.jsonc.

    Fetched skills are written to .rulesync/skills/.curated and pinned in
    rulesync.lock.
    """
    logger.configure(verbose=verbose, silent=silent)

    try:
        base_dir = base_dir.resolve()
        cfg = load_config(get_config_path(config, base_dir), base_dir=base_dir)

        if not cfg.sources:
            logger.warn("No sources defined in configuration. Nothing to install.")
            return

        options = SyncOptions(
            update_sources=update,
            frozen=frozen,
            token=token,
            concurrency=cfg.concurrency,
        )
        result = asyncio.run(resolve_and_fetch_sources(cfg.sources, base_dir, options))

        if result.fetched_skill_count > 0:
            logger.success(
                f"Installed {result.fetched_skill_count} skill(s) from "
                f"{result.sources_processed} source(s)."
            )
        else:
            logger.success(
                f"All skills up to date ({result.sources_processed} source(s) checked)."
            )

    except typer.Exit:
        raise
    except Exception as e:
        logger.error(str(e))
        raise typer.Exit(1)


@app.command()
def init(
    path: Optional[Path] = typer.Argument(
        None,
        help=f"Path where config should be created (default: ./{CONFIG_FILENAME})",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite existing config file",
    ),
):
    """Create a rulesync.jsonc template."""
    try:
        if path is None:
            path = Path.cwd() / CONFIG_FILENAME

        if path.exists() and not force:
            logger.error(f"Config file already exists: {path}")
            logger.info("Use --force to overwrite")
            raise typer.Exit(1)

        path.write_text(TEMPLATE_CONFIG, encoding="utf-8")

        logger.success(f"Created config file: {path}")
        logger.info("Add sources, then run 'rulesync install'")

    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Failed to create config: {e}")
        raise typer.Exit(1)


@app.command("list")
def list_skills(
    base_dir: Path = typer.Option(
        Path("."),
        "--base-dir",
        help="Project root containing rulesync.lock",
    ),
):
    """List installed skills recorded in rulesync.lock."""
    try:
        base_dir = base_dir.resolve()
        if not (base_dir / LOCKFILE_NAME).exists():
            logger.info("No skills installed")
            logger.info("Run 'rulesync install' to fetch skills from configured sources")
            return

        lock = read_lockfile(base_dir)
        if not lock.sources:
            logger.info("No skills installed")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Skill", style="green")
        table.add_column("Source")
        table.add_column("Ref")
        table.add_column("Commit")
        table.add_column("Integrity")
        table.add_column("Status")
        table.add_column("Description")

        for key, entry in lock.sources.items():
            for name, skill in entry.skills.items():
                curated = CuratedSkill.load(base_dir, name)
                status = "[green]installed[/green]" if curated.exists else "[red]missing[/red]"
                table.add_row(
                    escape(name),
                    escape(key),
                    escape(entry.requested_ref or "(default)"),
                    _short(entry.resolved_ref, 7),
                    _short(skill.integrity, 19),
                    status,
                    escape(curated.description or ""),
                )

        console.print(table)

    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        raise typer.Exit(1)


@app.command()
def validate(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """Validate configuration and every source reference."""
    try:
        base_dir = Path.cwd()
        config_path = get_config_path(config, base_dir)
        if not config_path:
            logger.error("No configuration file found")
            logger.info("Run 'rulesync init' to create a config file")
            raise typer.Exit(1)

        logger.info(f"Validating config: {config_path}")
        cfg = load_config(config_path, base_dir=base_dir)

        errors = 0
        console.print()
        console.print(f"[bold]Sources:[/bold] {len(cfg.sources)}")
        for entry in cfg.sources:
            try:
                ref = parse_source(entry.source)
            except SourceParseError as e:
                logger.error(str(e))
                errors += 1
                continue
            skills = ", ".join(entry.effective_skills)
            details = (
                f"(provider={ref.provider.value}, ref={ref.ref or 'default'}, "
                f"path={ref.skills_path}, skills={skills})"
            )
            console.print(
                f"  • {escape(ref.lock_key)} [dim]{escape(details)}[/dim]",
                soft_wrap=True,
            )
        console.print()

        if errors:
            logger.error(f"{errors} invalid source(s)")
            raise typer.Exit(1)

        logger.success("Configuration is valid")

    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
