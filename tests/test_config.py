"""Tests for settings loading."""

import pytest
import yaml
from pydantic import ValidationError

from tasknest.config import Settings, load_settings
from tasknest.recovery import CorruptionError


class TestSettings:
    """Test default values and validation."""

    def test_defaults(self):
        settings = Settings()
        assert settings.search_threshold == 0.3
        assert settings.dedup_threshold == 0.5
        assert settings.auto_merge_threshold == 0.8
        assert settings.primary_weight == 0.7
        assert settings.use_fuzzy

    def test_fuzzy_threshold(self):
        """Test the fuzzy pass threshold is offset and capped."""
        settings = Settings()
        assert settings.fuzzy_threshold(0.5) == pytest.approx(0.7)
        assert settings.fuzzy_threshold(0.3) == pytest.approx(0.5)
        assert settings.fuzzy_threshold(0.7) == 0.8
        assert settings.fuzzy_threshold(1.0) == 0.8

    def test_range_validation(self):
        with pytest.raises(ValidationError):
            Settings(dedup_threshold=1.5)
        with pytest.raises(ValidationError):
            Settings(primary_weight=-0.1)

    def test_paths(self, tmp_path):
        settings = Settings(data_dir=tmp_path)
        assert settings.tasks_file == tmp_path / "tasks.yml"
        assert settings.config_file == tmp_path / "config.yml"
        assert "data_dir" not in settings.to_file_dict()


class TestLoadSettings:
    """Test reading config.yml and environment overrides."""

    def test_without_config_file(self, tmp_path):
        settings = load_settings(tmp_path, environ={})
        assert settings == Settings(data_dir=tmp_path)

    def test_config_file(self, tmp_path):
        (tmp_path / "config.yml").write_text(yaml.safe_dump({"dedup_threshold": 0.6, "use_fuzzy": False}))
        settings = load_settings(tmp_path, environ={})
        assert settings.dedup_threshold == 0.6
        assert not settings.use_fuzzy

    def test_environment_wins(self, tmp_path):
        (tmp_path / "config.yml").write_text(yaml.safe_dump({"dedup_threshold": 0.6}))
        settings = load_settings(tmp_path, environ={"TASKNEST_DEDUP_THRESHOLD": "0.4",
                                                    "TASKNEST_USE_FUZZY": "false"})
        assert settings.dedup_threshold == 0.4
        assert not settings.use_fuzzy

    def test_data_dir_from_environment(self, tmp_path):
        settings = load_settings(environ={"TASKNEST_DATA_DIR": str(tmp_path)})
        assert settings.tasks_file == tmp_path / "tasks.yml"

    @pytest.mark.parametrize("content", ["dedup_threshold: [", "- a\n- b\n", "dedup_threshold: 7\n"])
    def test_invalid_config(self, tmp_path, content):
        (tmp_path / "config.yml").write_text(content)
        with pytest.raises(CorruptionError):
            load_settings(tmp_path, environ={})
