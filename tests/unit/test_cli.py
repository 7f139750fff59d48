"""
CLI smoke tests for the commands that need no network.
"""

from typer.testing import CliRunner

from services.repowalk.cache import ResponseCache
from services.repowalk.cli import app


runner = CliRunner()


def write_config(tmp_path, body: str):
    path = tmp_path / "walk_config.yaml"
    path.write_text(body)
    return path


class TestValidateConfig:
    """Test the validate-config command."""

    def test_valid(self, tmp_path):
        path = write_config(tmp_path, "walk:\n  policy: overwrite\n")
        result = runner.invoke(app, ["validate-config", "--config", str(path)])
        assert result.exit_code == 0
        assert "valid" in result.stdout

    def test_invalid(self, tmp_path):
        path = write_config(tmp_path, "walk:\n  policy: yolo\n")
        result = runner.invoke(app, ["validate-config", "--config", str(path)])
        assert result.exit_code == 1
        assert "yolo" in result.stdout

    def test_missing_explicit_file(self, tmp_path):
        result = runner.invoke(app, ["validate-config", "--config", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1


class TestCacheCommands:
    """Test cache-stats and cache-clear."""

    def test_stats_and_clear(self, tmp_path):
        cache_dir = tmp_path / "responses"
        cache = ResponseCache(cache_dir)
        cache.put("https://api.github.com/repos/octo/demo", b"{}")
        cache.put("https://api.github.com/users/octo/repos", b"[]")
        path = write_config(tmp_path, f"cache:\n  path: {cache_dir}\n")

        result = runner.invoke(app, ["cache-stats", "--config", str(path)])
        assert result.exit_code == 0
        assert "Entries" in result.stdout

        result = runner.invoke(app, [
            "cache-clear", "--config", str(path),
            "--url", "https://api.github.com/repos/octo/demo",
        ])
        assert result.exit_code == 0
        assert cache.stats()["entries"] == 1

        result = runner.invoke(app, ["cache-clear", "--config", str(path), "--force"])
        assert result.exit_code == 0
        assert cache.stats()["entries"] == 0
