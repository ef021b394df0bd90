"""Tests for CommandRunner against a real shell."""

import asyncio
import os
import time

import pytest

from deployer.errors import CommandFailed, CommandTimeout, DeploymentCancelled
from deployer.runner import CommandRunner


@pytest.fixture
def runner():
    return CommandRunner(default_timeout=30, npm_cache_dir="/tmp/npm_cache_test")  # noqa: S108


class TestBuildEnv:
    def test_overlay_wins_over_ambient(self, runner, tmp_path, monkeypatch):
        monkeypatch.setenv("NODE_ENV", "development")
        env = runner.build_env(tmp_path, {"NODE_ENV": "production"})
        assert env["NODE_ENV"] == "production"

    def test_node_bin_is_first_on_path(self, runner, tmp_path):
        env = runner.build_env(tmp_path)
        first = env["PATH"].split(os.pathsep)[0]
        assert first == str(tmp_path / "node_modules" / ".bin")

    def test_npm_cache_defaults_but_can_be_overridden(self, runner, tmp_path, monkeypatch):
        monkeypatch.delenv("npm_config_cache", raising=False)
        assert runner.build_env(tmp_path)["npm_config_cache"] == "/tmp/npm_cache_test"  # noqa: S108
        assert runner.build_env(tmp_path, {"npm_config_cache": "/cache"})["npm_config_cache"] == "/cache"


class TestExecute:
    @pytest.mark.asyncio
    async def test_captures_stdout_and_stderr(self, runner, tmp_path):
        result = await runner.execute("echo out; echo err >&2", cwd=tmp_path)
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"

    @pytest.mark.asyncio
    async def test_runs_in_cwd_with_env_overlay(self, runner, tmp_path):
        result = await runner.execute('pwd; echo "$GREETING"', cwd=tmp_path, env={"GREETING": "hello"})
        lines = result.stdout.splitlines()
        assert os.path.realpath(lines[0]) == os.path.realpath(tmp_path)
        assert lines[1] == "hello"

    @pytest.mark.asyncio
    async def test_streams_output_to_observer(self, runner, tmp_path):
        seen = []
        await runner.execute(
            "echo one; echo two >&2",
            cwd=tmp_path,
            on_output=lambda stream, text: seen.append((stream, text)),
        )
        assert ("stdout", "one\n") in seen
        assert ("stderr", "two\n") in seen

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_with_stderr(self, runner, tmp_path):
        with pytest.raises(CommandFailed) as exc_info:
            await runner.execute("echo broken build >&2; exit 3", cwd=tmp_path)
        assert exc_info.value.exit_code == 3
        assert exc_info.value.stderr == "broken build\n"
        assert "broken build" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, runner, tmp_path):
        start = time.monotonic()
        with pytest.raises(CommandTimeout) as exc_info:
            await runner.execute("echo started; sleep 30", cwd=tmp_path, timeout=0.5)
        assert time.monotonic() - start < 10
        assert exc_info.value.stdout == "started\n"
        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_kills_grandchildren(self, runner, tmp_path):
        marker = tmp_path / "survivor"
        with pytest.raises(CommandTimeout):
            await runner.execute(f"(sleep 1.5; touch {marker}) & wait", cwd=tmp_path, timeout=0.3)
        await asyncio.sleep(2)
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_cancel_event_terminates_command(self, runner, tmp_path):
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.2, cancel.set)
        start = time.monotonic()
        with pytest.raises(DeploymentCancelled):
            await runner.execute("sleep 30", cwd=tmp_path, cancel_event=cancel)
        assert time.monotonic() - start < 10

    @pytest.mark.asyncio
    async def test_already_cancelled_never_starts(self, runner, tmp_path):
        cancel = asyncio.Event()
        cancel.set()
        marker = tmp_path / "ran"
        with pytest.raises(DeploymentCancelled):
            await runner.execute(f"touch {marker}", cwd=tmp_path, cancel_event=cancel)
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_redacts_output_and_errors(self, runner, tmp_path):
        seen = []
        with pytest.raises(CommandFailed) as exc_info:
            await runner.execute(
                "echo token=s3cr3t; echo 'https://s3cr3t@github.com/a/b.git' >&2; exit 1",
                cwd=tmp_path,
                on_output=lambda _stream, text: seen.append(text),
                redact=lambda text: text.replace("s3cr3t", "***"),
            )
        assert "s3cr3t" not in "".join(seen)
        assert "s3cr3t" not in str(exc_info.value)
        assert "s3cr3t" not in exc_info.value.stdout

    @pytest.mark.asyncio
    async def test_url_credentials_scrubbed_without_redactor(self, runner, tmp_path):
        result = await runner.execute("echo https://abc123@example.com/repo.git", cwd=tmp_path)
        assert result.stdout == "https://***@example.com/repo.git\n"

    @pytest.mark.asyncio
    async def test_secret_split_across_reads_is_redacted(self, runner, tmp_path):
        seen = []
        result = await runner.execute(
            "printf 'progress https://s3cr'; sleep 0.2; printf '3t@github.com/a/b.git\\n'; printf 'tail s3c'",
            cwd=tmp_path,
            on_output=lambda _stream, text: seen.append(text),
            redact=lambda text: text.replace("s3cr3t", "***"),
        )
        streamed = "".join(seen)
        assert "s3cr" not in streamed
        assert "https://***@github.com/a/b.git\n" in streamed
        assert streamed.endswith("tail s3c")
        assert result.stdout == streamed

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_replaced(self, runner, tmp_path):
        result = await runner.execute(r"printf 'ok\377\n'", cwd=tmp_path)
        assert result.stdout.startswith("ok")
