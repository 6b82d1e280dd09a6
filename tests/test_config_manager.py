"""
Tests for YAML configuration loading.
"""

import pytest
import yaml

from config_manager import DEFAULT_CONFIG, get_section, load_config
from exceptions import ConfigError


def test_missing_file_returns_defaults(tmp_path):
    config = load_config(tmp_path / "absent.yaml")

    assert config == DEFAULT_CONFIG
    assert config is not DEFAULT_CONFIG


def test_values_merged_over_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"alerts": {"timezone": "Europe/Berlin"}, "email": {"smtp_port": 25}}))

    config = load_config(path)

    assert config["alerts"]["timezone"] == "Europe/Berlin"
    assert config["alerts"]["delay_seconds"] == 1.0
    assert config["email"]["smtp_port"] == 25
    assert config["email"]["smtp_host"] == "localhost"


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("alerts: [unclosed")

    with pytest.raises(ConfigError):
        load_config(path)


def test_non_mapping_root_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigError):
        load_config(path)


def test_get_section_fills_defaults():
    section = get_section({"reports": {"default_format": "pdf"}}, "reports")

    assert section == {"temp_dir": "data/tmp", "default_format": "pdf"}
    assert get_section(None, "alerts")["timezone"] == "UTC"
