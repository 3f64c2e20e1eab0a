"""Invoke tasks for syncing, testing and linting Reelkeeper through uv."""

from __future__ import annotations

import shlex
import shutil
from collections.abc import Sequence
from pathlib import Path

from invoke import Collection, Context, task

PROJECT_ROOT = Path(__file__).parent
DIST_DIR = PROJECT_ROOT / "dist"
SOURCE_PATHS = ("src", "tests", "tasks.py")


def _uv(ctx: Context, *args: str, echo: bool = True) -> None:
    """Run ``uv`` with ``args`` from the project root."""
    with ctx.cd(str(PROJECT_ROOT)):
        ctx.run(shlex.join(("uv", *args)), echo=echo, pty=True)


@task(help={"dev": "Install the dev extra as well (default on)."})
def sync(ctx: Context, dev: bool = True) -> None:
    """Create or refresh the virtual environment."""
    _uv(ctx, "sync", *(("--extra", "dev") if dev else ()))


@task(help={"clean": "Delete dist/ before building."})
def build(ctx: Context, clean: bool = False) -> None:
    """Build the sdist and wheel into ``dist/``."""
    if clean:
        shutil.rmtree(DIST_DIR, ignore_errors=True)
    _uv(ctx, "build")


@task(
    help={
        "k": "Only run tests matching this pytest -k expression.",
        "path": "Test file or directory (tests/ by default).",
        "options": "Extra pytest flags, passed through unchanged.",
    }
)
def tests(ctx: Context, k: str = "", path: str = "tests", options: str = "") -> None:
    """Run pytest through uv.

    Args:
        ctx: Invoke execution context.
        k: Selection expression forwarded as ``-k``.
        path: What pytest should collect.
        options: Additional pytest arguments, split shell-style.
    """
    selection: list[str] = ["-k", k] if k else []
    _uv(ctx, "run", "pytest", *selection, *shlex.split(options), path)


@task(
    help={
        "fix": "Let ruff rewrite fixable problems.",
        "check_format": "Run ruff format --check before linting.",
    }
)
def lint(ctx: Context, fix: bool = False, check_format: bool = False) -> None:
    """Lint the sources with ruff."""
    if check_format:
        _uv(ctx, "run", "ruff", "format", "--check", *SOURCE_PATHS)
    _uv(ctx, "run", "ruff", "check", *SOURCE_PATHS, *(("--fix",) if fix else ()))


@task
def mypy(ctx: Context) -> None:
    """Type-check ``src/``."""
    _uv(ctx, "run", "mypy", "src")


@task(help={"source": "Media directory to preview (nothing is moved)."})
def preview(ctx: Context, source: str) -> None:
    """Dry-run the organizer over SOURCE and print the plan."""
    _uv(ctx, "run", "reelkeeper", "org", source, "--dry-run")


@task
def ci(ctx: Context) -> None:
    """Format check, lint, type-check, then test."""
    ctx.invoke(lint, check_format=True)
    ctx.invoke(mypy)
    ctx.invoke(tests)


namespace = Collection(sync, build, tests, lint, mypy, preview, ci)
