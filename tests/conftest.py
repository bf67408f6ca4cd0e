"""Shared fixtures for transfer tests.

FakeBuilder stands in for docker buildx: it keeps an in-memory cache store
(cache target -> files) and executes the copy commands of the dancefiles it
is given against that store.
"""

import asyncio
import logging
import os
import re
from collections.abc import Iterator
from pathlib import Path

import pytest

from cache_dance.errors import BuilderExecutionError
from cache_dance.transfer.dancefile import SOURCE_CONTEXT, build_context_name
from cache_dance.types import OutputStrategy

EXTRACT_SINGLE = re.compile(r"cp -p -R (\S+)/\. /var/dance-cache/ ")
EXTRACT_BATCH = re.compile(r"cp -p -R (\S+)/\. /cache-store/([^/\s]+)/ ")
INJECT_SINGLE = re.compile(r"cp -p -R /var/dance-cache/\. (\S+)")
INJECT_BATCH = re.compile(r"cp -p -R /var/dance-cache/([^/\s]+)/\. (\S+)")


def read_tree(root: Path) -> dict[str, bytes]:
    """Return relative path -> content for every file below root."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def write_tree(root: Path, files: dict[str, bytes]) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)


class FakeBuilder:
    """In-memory stand-in for a builder strategy."""

    name = OutputStrategy.LOCAL

    def __init__(
        self,
        store: dict[str, dict[str, bytes]] | None = None,
        fail_targets: set[str] | None = None,
        fail_all: bool = False,
        produce_output: bool = True,
        delay: float = 0.0,
    ) -> None:
        self.store = store if store is not None else {}
        self.fail_targets = fail_targets or set()
        self.fail_all = fail_all
        self.produce_output = produce_output
        self.delay = delay
        self.builds: list[dict] = []
        self.cleaned: list[str] = []

    async def build(
        self,
        definition,
        context_dir,
        job,
        output_dir=None,
        build_contexts=None,
        log=None,
    ):
        assert (context_dir / "buildstamp").is_file()
        self.builds.append(
            {
                "definition": definition,
                "context_dir": context_dir,
                "job_id": job.job_id,
                "output_dir": output_dir,
                "build_contexts": dict(build_contexts or {}),
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        targets = {m.group(1) for m in EXTRACT_SINGLE.finditer(definition)}
        targets |= {m.group(1) for m in EXTRACT_BATCH.finditer(definition)}
        targets |= {m.group(1) for m in INJECT_SINGLE.finditer(definition)}
        targets |= {m.group(2) for m in INJECT_BATCH.finditer(definition)}
        if self.fail_all or targets & self.fail_targets:
            raise BuilderExecutionError(
                "docker buildx build exited with code 1", exit_code=1
            )

        if output_dir is None:
            self._inject(definition, build_contexts or {})
        elif self.produce_output:
            self._extract(definition, output_dir)

    def _extract(self, definition: str, output_dir: Path) -> None:
        cache_root = output_dir / "cache"
        cache_root.mkdir(parents=True, exist_ok=True)
        for m in EXTRACT_SINGLE.finditer(definition):
            write_tree(cache_root, self.store.get(m.group(1), {}))
        for m in EXTRACT_BATCH.finditer(definition):
            dest = cache_root / m.group(2)
            dest.mkdir(parents=True, exist_ok=True)
            write_tree(dest, self.store.get(m.group(1), {}))

    def _inject(self, definition: str, contexts: dict[str, str]) -> None:
        for m in INJECT_SINGLE.finditer(definition):
            files = read_tree(Path(contexts[SOURCE_CONTEXT]))
            self.store.setdefault(m.group(1), {}).update(files)
        for m in INJECT_BATCH.finditer(definition):
            files = read_tree(Path(contexts[build_context_name(m.group(1))]))
            self.store.setdefault(m.group(2), {}).update(files)

    async def cleanup(self, job, log=None):
        self.cleaned.append(job.job_id)


@pytest.fixture
def fake_builder() -> FakeBuilder:
    """A fake builder with an empty cache store."""
    return FakeBuilder()


@pytest.fixture
def scratch_root(tmp_path: Path) -> Path:
    """Scratch root inside the test's temporary directory."""
    return tmp_path / "scratch"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep the runner's own environment out of settings and log output."""
    for name in list(os.environ):
        if name.startswith("CACHE_DANCE_"):
            monkeypatch.delenv(name)
    for name in ("GITHUB_ACTIONS", "GITHUB_STATE", "STATE_POST"):
        monkeypatch.delenv(name, raising=False)
    yield
    package_logger = logging.getLogger("cache_dance")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
