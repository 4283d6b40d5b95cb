"""Shared fixtures: a real bare store, branch configs and scripted drivers."""
import os
import stat
from pathlib import Path
from typing import Callable, Union

import pytest

from sysgit.config.tree import ConfigTree
from sysgit.drivers.base import Action, DriverContext, DriverResult
from sysgit.store.refs import RefStore

Response = Union[DriverResult, Callable[[DriverContext], DriverResult]]


class ScriptedRunner:
    """Stand-in for DriverRunner answering from a table.

    Responses are keyed by (action, branch); the branch ``*`` matches any.
    Every context received is recorded in ``calls``.
    """

    def __init__(self):
        self.responses: dict[tuple[Action, str], Response] = {}
        self.calls: list[DriverContext] = []

    def on(self, action: Action, branch: str, response: Response) -> None:
        self.responses[(action, branch)] = response

    def run(self, context: DriverContext) -> DriverResult:
        self.calls.append(context)
        response = self.responses.get(
            (context.action, context.branch),
            self.responses.get((context.action, "*")),
        )
        if response is None:
            return DriverResult(exit_code=0)
        if callable(response):
            return response(context)
        return response

    def branches(self, action: Action) -> list[str]:
        return [c.branch for c in self.calls if c.action == action]


def make_commit(store: RefStore, message: str, parent: str = None) -> str:
    """Create a commit with an empty tree directly in the store."""
    tree = store._run_git("mktree", input="").stdout.strip()
    args = ["commit-tree", tree, "-m", message]
    if parent:
        args += ["-p", parent]
    return store._run_git(*args).stdout.strip()


def write_config(config_dir: Path, prefix: str, text: str) -> Path:
    """Write ``<config_dir>/<prefix>.config``."""
    path = config_dir / f"{prefix}.config"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def write_driver(directory: Path, name: str, body: str) -> Path:
    """Write an executable /bin/sh driver script."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def store(tmp_path):
    """An initialized bare store."""
    refs = RefStore(tmp_path / "repo.git")
    refs.init()
    return refs


@pytest.fixture
def config_dir(tmp_path):
    path = tmp_path / "config"
    path.mkdir()
    return path


@pytest.fixture
def tree(config_dir, store):
    return ConfigTree(config_dir, store)


@pytest.fixture
def runner():
    return ScriptedRunner()


@pytest.fixture
def base_env():
    """Minimal environment for real driver processes."""
    return {"PATH": os.environ.get("PATH", "/usr/bin:/bin")}
