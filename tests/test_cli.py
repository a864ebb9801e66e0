"""Tests for the relforge CLI."""

from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from relforge import __version__
from relforge.cli import main
from relforge.errors import CompileFailedError


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path):
    """Keep the user's own config.yaml out of the tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("RELFORGE_HOME", str(home))
    return home


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def release_file(tmp_path):
    release_dir = tmp_path / "release"
    (release_dir / "packages").mkdir(parents=True)
    (release_dir / "compiled").mkdir()
    (release_dir / "packages" / "base.tgz").write_bytes(b"base source")
    (release_dir / "packages" / "web.tgz").write_bytes(b"web source")
    (release_dir / "compiled" / "ruby.tgz").write_bytes(b"ruby binary")

    path = release_dir / "release.yml"
    with open(path, "w") as f:
        yaml.dump({
            "name": "app",
            "version": "1.0",
            "packages": [
                {"name": "web", "version": "1.0", "archive_path": "packages/web.tgz",
                 "fingerprint": "bbb", "dependencies": ["base"]},
                {"name": "base", "version": "1.0", "archive_path": "packages/base.tgz",
                 "fingerprint": "aaa"},
            ],
            "compiled_packages": [
                {"name": "ruby", "version": "2.1", "archive_path": "compiled/ruby.tgz"},
            ],
        }, f)
    return path


@pytest.fixture
def config_file(isolated_home, tmp_path):
    def _write(**extra):
        data = {
            "repos_dir": str(tmp_path / "state" / "repos"),
            "blobstore_dir": str(tmp_path / "state" / "blobs"),
            "logging": {"level": "WARNING"},
        }
        data.update(extra)
        path = isolated_home / "config.yaml"
        with open(path, "w") as f:
            yaml.dump(data, f)
        return path
    return _write


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


class TestOrder:
    """Tests for `relforge order`."""

    def test_prints_dependency_first_order(self, runner, release_file):
        result = runner.invoke(main, ["order", str(release_file)])

        assert result.exit_code == 0
        assert result.output == "1. base/1.0\n2. web/1.0 (after base)\n"

    def test_cycle_is_rejected(self, runner, tmp_path):
        path = tmp_path / "cycle.yml"
        with open(path, "w") as f:
            yaml.dump({"name": "app", "version": "1", "packages": [
                {"name": "a", "version": "1", "dependencies": ["b"]},
                {"name": "b", "version": "1", "dependencies": ["a"]},
            ]}, f)

        result = runner.invoke(main, ["order", str(path)])

        assert result.exit_code == 1
        assert "cycle" in result.output

    def test_non_mapping_release(self, runner, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("- just\n- a list\n")

        result = runner.invoke(main, ["order", str(path)])

        assert result.exit_code == 1
        assert "must contain a mapping" in result.output


class TestApplyPrecompiled:
    """Tests for `relforge apply-precompiled`."""

    def test_requires_config(self, runner, release_file):
        result = runner.invoke(main, ["apply-precompiled", str(release_file)])

        assert result.exit_code == 1
        assert "Config not loaded" in result.output

    def test_records_precompiled_packages(self, runner, config_file, release_file):
        config_file()

        result = runner.invoke(main, ["apply-precompiled", str(release_file)])
        assert result.exit_code == 0
        assert "✓ Applied 1 precompiled packages of app/1.0" in result.output

        result = runner.invoke(main, ["records"])
        assert result.exit_code == 0
        assert result.output.startswith("ruby/2.1  ")


class TestCompile:
    """Tests for `relforge compile`."""

    def test_requires_agent_factory(self, runner, config_file, release_file):
        config_file()

        result = runner.invoke(main, ["compile", str(release_file)])

        assert result.exit_code == 1
        assert "No agent configured" in result.output

    def test_compiles_through_configured_agent(self, runner, config_file, release_file, agent):
        config_file(agent={"factory": "mypkg.agent:create_client"})

        with patch("relforge.cli.load_agent_factory", return_value=lambda: agent) as load:
            result = runner.invoke(main, ["compile", str(release_file)])

        assert result.exit_code == 0, result.output
        load.assert_called_once_with("mypkg.agent:create_client")
        assert agent.compiled_names == ["base", "web"]
        assert "Started compiling release app/1.0 > Package base/1.0" in result.output
        assert "✓ app/1.0 compiled" in result.output

        result = runner.invoke(main, ["records"])
        lines = result.output.splitlines()
        assert len(lines) == 3
        assert any(line.startswith("web/1.0/bbb  compiled-web  ") for line in lines)

        result = runner.invoke(main, ["records", "--source"])
        assert [line.split()[0] for line in result.output.splitlines()] == ["base/1.0/aaa", "web/1.0/bbb"]

    def test_json_event_log(self, runner, config_file, release_file, agent):
        config_file(agent={"factory": "mypkg.agent:create_client"}, event_log={"device_type": "json"})

        with patch("relforge.cli.load_agent_factory", return_value=lambda: agent):
            result = runner.invoke(main, ["compile", "--no-apply-precompiled", str(release_file)])

        assert result.exit_code == 0, result.output
        assert '"state": "started"' in result.output

    def test_second_compile_hits_cache(self, runner, config_file, release_file, agent):
        config_file(agent={"factory": "mypkg.agent:create_client"})

        with patch("relforge.cli.load_agent_factory", return_value=lambda: agent):
            runner.invoke(main, ["compile", str(release_file)])
            result = runner.invoke(main, ["compile", str(release_file)])

        assert result.exit_code == 0
        assert agent.compiled_names == ["base", "web"]

    def test_agent_failure_exits_nonzero(self, runner, config_file, release_file, agent):
        config_file(agent={"factory": "mypkg.agent:create_client"})
        agent.fail["web"] = CompileFailedError("make: *** [all] Error 2")

        with patch("relforge.cli.load_agent_factory", return_value=lambda: agent):
            result = runner.invoke(main, ["compile", str(release_file)])

        assert result.exit_code == 1
        assert "✗ app/1.0 failed: Compiling package web" in result.output


class TestRecords:
    """Tests for `relforge records`."""

    def test_empty(self, runner, config_file):
        config_file()

        result = runner.invoke(main, ["records"])

        assert result.exit_code == 0
        assert result.output == "No records\n"

    def test_filter_by_package_name(self, runner, config_file, release_file, agent):
        config_file(agent={"factory": "mypkg.agent:create_client"})
        with patch("relforge.cli.load_agent_factory", return_value=lambda: agent):
            runner.invoke(main, ["compile", str(release_file)])

        result = runner.invoke(main, ["records", "--name", "web"])

        assert result.exit_code == 0
        assert result.output.startswith("web/1.0/bbb  compiled-web  ")
        assert len(result.output.splitlines()) == 1

    def test_filter_without_matches(self, runner, config_file, release_file):
        config_file()
        runner.invoke(main, ["apply-precompiled", str(release_file)])

        result = runner.invoke(main, ["records", "--name", "web"])

        assert result.output == "No records\n"
