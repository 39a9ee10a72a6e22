import json

import pytest

from sentryguard.utils.config import Config, ConfigStore, load_config


def test_missing_file_yields_defaults(tmp_path):
    assert load_config(tmp_path / "absent.json") == Config()


def test_load_merges_over_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"sensitivity": 55, "location_name": "warehouse", "extra": 1}))
    cfg = load_config(path)
    assert cfg.sensitivity == 55
    assert cfg.location_name == "warehouse"
    assert cfg.heartbeat_interval_minutes == 0
    assert cfg.threshold == 45


@pytest.mark.parametrize("content", ["{not json", json.dumps({"sensitivity": 95}), json.dumps([1])])
def test_invalid_files_raise(tmp_path, content):
    path = tmp_path / "config.json"
    path.write_text(content)
    with pytest.raises(ValueError):
        load_config(path)


def test_store_update_is_all_or_nothing():
    store = ConfigStore(Config(sensitivity=70))
    with pytest.raises(ValueError):
        store.update(sensitivity=40, heartbeat_interval_minutes=99)
    assert store.current == Config(sensitivity=70)
    store.update(sensitivity=40, heartbeat_interval_minutes=10)
    assert (store.current.sensitivity, store.current.heartbeat_interval_minutes) == (40, 10)
