"""
Tests for repository identity detection.
"""

import pytest

from dev_timr.repo import RepoInfo, get_origin_url, get_repo_info, parse_git_url


class TestParseGitUrl:
    """Tests for remote URL parsing."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/octo-org/hello-world.git",
            "https://github.com/octo-org/hello-world",
            "git@github.com:octo-org/hello-world.git",
            "git@github.com:octo-org/hello-world",
            "https://user@github.com/octo-org/hello-world.git\n",
        ],
    )
    def test_supported_formats(self, url):
        assert parse_git_url(url) == RepoInfo("octo-org", "hello-world")

    @pytest.mark.parametrize("url", [None, "", "/local/path/repo", "file:///tmp/repo"])
    def test_unsupported(self, url):
        assert parse_git_url(url) is None

    def test_full_name(self):
        assert RepoInfo("a", "b").full_name == "a/b"
        assert RepoInfo.from_full_name("a/b") == RepoInfo("a", "b")
        assert RepoInfo.from_full_name("nope") is None


class TestOriginLookup:
    """Tests for reading the origin remote."""

    @pytest.mark.asyncio
    async def test_reads_git_config_directly(self, tmp_path):
        """Without a usable git binary result, .git/config is parsed."""
        git_dir = tmp_path / ".git"
        git_dir.mkdir()
        (git_dir / "config").write_text(
            "[core]\n\tbare = false\n"
            '[remote "upstream"]\n\turl = https://github.com/someone/else.git\n'
            '[remote "origin"]\n\turl = git@github.com:octo-org/hello-world.git\n'
            "\tfetch = +refs/heads/*:refs/remotes/origin/*\n"
        )

        assert await get_origin_url(tmp_path) == "git@github.com:octo-org/hello-world.git"
        assert await get_repo_info(tmp_path) == RepoInfo("octo-org", "hello-world")

    @pytest.mark.asyncio
    async def test_not_a_repository(self, tmp_path):
        assert await get_repo_info(tmp_path) is None
