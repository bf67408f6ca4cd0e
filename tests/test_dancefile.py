"""Tests for transfer/dancefile.py module."""

import os

import pytest

from cache_dance.errors import ConfigError
from cache_dance.transfer.dancefile import (
    SOURCE_CONTEXT,
    batch_inject_contexts,
    build_context_name,
    inject_contexts,
    render_batch_extract_definition,
    render_batch_inject_definition,
    render_extract_definition,
    render_inject_definition,
)
from cache_dance.transfer.models import CacheMount

IMAGE = "ghcr.io/containerd/busybox:latest"


@pytest.fixture
def apt_mount() -> CacheMount:
    return CacheMount(source="cache/apt", target="/var/cache/apt", sharing="locked")


@pytest.fixture
def npm_mount() -> CacheMount:
    return CacheMount(
        source="cache/npm", target="/home/node/.npm", id="npm", uid=1000, gid=1000
    )


class TestRenderExtractDefinition:
    """Tests for render_extract_definition function."""

    def test_structure(self, apt_mount):
        """Should copy the cache out in one stage and export it from scratch."""
        text = render_extract_definition(IMAGE, apt_mount)
        lines = text.splitlines()

        assert lines[0] == f"FROM {IMAGE} AS dance-extract"
        assert lines[1] == "COPY buildstamp buildstamp"
        assert "FROM scratch" in lines
        assert lines[-1] == "COPY --from=dance-extract /var/dance-cache /cache"

    def test_run_step(self, apt_mount):
        """Should mount the cache and ignore copy failures."""
        text = render_extract_definition(IMAGE, apt_mount)

        assert (
            "RUN --mount=type=cache,id=/var/cache/apt,target=/var/cache/apt,"
            "sharing=locked" in text
        )
        assert "mkdir -p /var/dance-cache/" in text
        assert "cp -p -R /var/cache/apt/. /var/dance-cache/ || true" in text

    def test_buildstamp_before_run(self, apt_mount):
        """Should copy the buildstamp before the RUN step."""
        text = render_extract_definition(IMAGE, apt_mount)
        assert text.index("COPY buildstamp") < text.index("RUN ")

    def test_deterministic(self, apt_mount):
        """Should render identical text for identical input."""
        assert render_extract_definition(IMAGE, apt_mount) == render_extract_definition(
            IMAGE, apt_mount
        )


class TestRenderBatchExtractDefinition:
    """Tests for render_batch_extract_definition function."""

    def test_one_directory_per_mount(self, apt_mount, npm_mount):
        """Should stage every mount into its own directory."""
        text = render_batch_extract_definition(IMAGE, [apt_mount, npm_mount])

        assert text.count("--mount=type=cache") == 2
        assert "mkdir -p /cache-store /cache-store/var-cache-apt /cache-store/npm" in text
        assert "(cp -p -R /var/cache/apt/. /cache-store/var-cache-apt/ || true)" in text
        assert "(cp -p -R /home/node/.npm/. /cache-store/npm/ || true)" in text
        assert text.rstrip().endswith("COPY --from=dance-extract /cache-store /cache")

    def test_colliding_keys(self):
        """Should refuse mounts staging into the same directory."""
        mounts = [
            CacheMount(source="a", target="/a", id="x"),
            CacheMount(source="b", target="/b", id="X"),
        ]
        with pytest.raises(ConfigError):
            render_batch_extract_definition(IMAGE, mounts)


class TestRenderInjectDefinition:
    """Tests for render_inject_definition function."""

    def test_binds_source_context(self, apt_mount):
        """Should bind the named source context next to the cache mount."""
        text = render_inject_definition(IMAGE, apt_mount)

        assert text.startswith(f"FROM {IMAGE}\nCOPY buildstamp buildstamp\n")
        assert f"--mount=type=bind,from={SOURCE_CONTEXT},target=/var/dance-cache" in text
        assert "cp -p -R /var/dance-cache/. /var/cache/apt || true" in text
        assert "chown" not in text
        assert "FROM scratch" not in text

    def test_restores_ownership(self, npm_mount):
        """Should chown the target when uid or gid is configured."""
        text = render_inject_definition(IMAGE, npm_mount)
        assert (
            "cp -p -R /var/dance-cache/. /home/node/.npm "
            "&& chown -R 1000:1000 /home/node/.npm || true"
        ) in text

    def test_inject_contexts(self, apt_mount):
        """Should point the named context at the absolute source directory."""
        assert inject_contexts(apt_mount) == {
            SOURCE_CONTEXT: os.path.abspath("cache/apt")
        }


class TestRenderBatchInjectDefinition:
    """Tests for render_batch_inject_definition function."""

    def test_one_context_per_mount(self, apt_mount, npm_mount):
        """Should bind each mount's own named context."""
        text = render_batch_inject_definition(IMAGE, [apt_mount, npm_mount])

        assert text.count("--mount=type=cache") == 2
        assert (
            "--mount=type=bind,from=dance-var-cache-apt,"
            "target=/var/dance-cache/var-cache-apt"
        ) in text
        assert "--mount=type=bind,from=dance-npm,target=/var/dance-cache/npm" in text
        assert "(cp -p -R /var/dance-cache/var-cache-apt/. /var/cache/apt || true)" in text
        assert (
            "(cp -p -R /var/dance-cache/npm/. /home/node/.npm "
            "&& chown -R 1000:1000 /home/node/.npm || true)"
        ) in text

    def test_batch_inject_contexts(self, apt_mount, npm_mount):
        """Should map each context name to its source directory."""
        assert batch_inject_contexts([apt_mount, npm_mount]) == {
            build_context_name("var-cache-apt"): os.path.abspath("cache/apt"),
            build_context_name("npm"): os.path.abspath("cache/npm"),
        }

    def test_context_name(self):
        assert build_context_name("pip") == "dance-pip"
