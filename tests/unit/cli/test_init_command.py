"""Unit tests for cli.init_command.InitCommand module."""

import os

import pytest

from src.cli.errors import InitError
from src.cli.init_command import InitCommand
from src.sync.config import SettingsLoader


class TestParseGistReference:
    """Test cases for InitCommand.parse_gist_reference() method."""

    @pytest.mark.parametrize("reference,expected", [
        ("aa5a315d61ae9438b18d", "aa5a315d61ae9438b18d"),
        ("  aa5a315d61ae9438b18d  ", "aa5a315d61ae9438b18d"),
        ("https://gist.github.com/octocat/aa5a315d61ae9438b18d", "aa5a315d61ae9438b18d"),
        ("https://gist.github.com/aa5a315d61ae9438b18d", "aa5a315d61ae9438b18d"),
        ("https://gist.github.com/octocat/aa5a315d61ae9438b18d/", "aa5a315d61ae9438b18d"),
        ("https://gist.github.com/octocat/aa5a315d61ae9438b18d/0b1c2d3e", "aa5a315d61ae9438b18d"),
    ])
    def test_accepts_ids_and_urls(self, reference, expected):
        """Gist ids and gist URLs resolve to the id."""
        assert InitCommand().parse_gist_reference(reference) == expected

    @pytest.mark.parametrize("reference", ["", "   "])
    def test_empty_reference_raises(self, reference):
        with pytest.raises(InitError, match="cannot be empty"):
            InitCommand().parse_gist_reference(reference)

    def test_non_url_raises(self):
        """A value that is neither an id nor an http(s) URL is rejected."""
        with pytest.raises(InitError, match="Invalid gist reference"):
            InitCommand().parse_gist_reference("ftp://gist.github.com/abc")

    def test_url_without_id_raises(self):
        with pytest.raises(InitError, match="Could not find a gist id"):
            InitCommand().parse_gist_reference("https://gist.github.com/octocat/not-an-id/x/y")


class TestRun:
    """Test cases for InitCommand.run() method."""

    def test_writes_default_settings(self, tmp_path):
        """Without options the defaults are written."""
        # Arrange
        config_path = str(tmp_path / ".bookmarkdown" / "config.yaml")
        init = InitCommand(config_path=config_path)

        # Act
        settings = init.run()

        # Assert
        assert os.path.exists(config_path)
        assert SettingsLoader.load(config_path) == settings
        assert settings.document_id is None
        assert settings.filename == "bookmarks.md"

    def test_writes_gist_filename_and_visibility(self, tmp_path):
        config_path = str(tmp_path / "config.yaml")

        settings = InitCommand(config_path=config_path).run(
            gist="https://gist.github.com/octocat/aa5a315d61ae9438b18d",
            filename=" links.md ",
            public=True,
        )

        loaded = SettingsLoader.load(config_path)
        assert loaded == settings
        assert loaded.document_id == "aa5a315d61ae9438b18d"
        assert loaded.filename == "links.md"
        assert loaded.is_public is True

    def test_existing_settings_require_force(self, tmp_path):
        config_path = str(tmp_path / "config.yaml")
        InitCommand(config_path=config_path).run()

        with pytest.raises(InitError, match="use --force"):
            InitCommand(config_path=config_path).run(filename="other.md")

        InitCommand(config_path=config_path).run(filename="other.md", force=True)
        assert SettingsLoader.load(config_path).filename == "other.md"

    def test_empty_filename_rejected(self, tmp_path):
        with pytest.raises(InitError, match="Filename cannot be empty"):
            InitCommand(config_path=str(tmp_path / "config.yaml")).run(filename="  ")

    def test_unwritable_location_raises_init_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")

        with pytest.raises(InitError, match="Failed to write settings"):
            InitCommand(config_path=str(blocker / "config.yaml")).run()

    def test_default_config_path(self):
        assert InitCommand().config_path == SettingsLoader.default_path()
