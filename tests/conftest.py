"""Shared fixtures."""

import asyncio
import shutil
import subprocess

import pytest


def run_git(cwd, *args) -> str:
    proc = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return proc.stdout.strip()


@pytest.fixture
def git_project(tmp_path):
    """A git repository on ``main`` with one commit."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    root = tmp_path / "project"
    root.mkdir()
    run_git(root, "init")
    run_git(root, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(root, "config", "user.email", "dev@example.com")
    run_git(root, "config", "user.name", "Dev")
    run_git(root, "config", "commit.gpgsign", "false")
    (root / "index.js").write_text("console.log('v1');\n")
    run_git(root, "add", "-A")
    run_git(root, "commit", "-m", "initial")
    return root


@pytest.fixture
def git(git_project):
    """``git(*args)`` runs git in the project and returns stdout."""
    return lambda *args: run_git(git_project, *args)


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> None:
    """Poll ``predicate`` until it is truthy or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def until():
    return wait_until
