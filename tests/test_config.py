"""Tests for the layered config loader and ReconcilerSettings."""

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from infra.config import (
    ReconcilerSettings,
    _env_overrides,
    deep_merge,
    get_config_value,
    load_config,
)


def _clean_env():
    return {k: v for k, v in os.environ.items() if not k.startswith("PS_")}


class TestDeepMerge(unittest.TestCase):

    def test_nested_merge(self):
        base = {"a": {"x": 1, "y": 2}, "b": 3}
        result = deep_merge(base, {"a": {"y": 99, "z": 100}})
        self.assertEqual(result, {"a": {"x": 1, "y": 99, "z": 100}, "b": 3})

    def test_overlay_replaces_list(self):
        self.assertEqual(deep_merge({"a": [1, 2, 3]}, {"a": [4]}), {"a": [4]})

    def test_immutability(self):
        base = {"a": {"x": 1}}
        overlay = {"a": {"y": 2}}
        deep_merge(base, overlay)
        self.assertEqual(base, {"a": {"x": 1}})
        self.assertEqual(overlay, {"a": {"y": 2}})


class TestEnvOverrides(unittest.TestCase):

    def test_sections_and_types(self):
        overrides = _env_overrides({
            "PS_RECONCILER__MAX_RETRIES": "7",
            "PS_RECONCILER__JITTER": "0.5",
            "PS_LOGGING__LEVEL": "DEBUG",
            "HOME": "/root",
        })
        self.assertEqual(overrides, {
            "reconciler": {"max_retries": 7, "jitter": 0.5},
            "logging": {"level": "DEBUG"},
        })

    def test_loader_vars_skipped(self):
        self.assertEqual(_env_overrides({"PS_ENV": "prod", "PS_CONFIG_DIR": "/tmp"}), {})

    def test_section_replaces_scalar(self):
        overrides = _env_overrides({"PS_RECONCILER": "5", "PS_RECONCILER__MAX_RETRIES": "1"})
        self.assertEqual(overrides["reconciler"], {"max_retries": 1})


class TestLoadConfig(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.base = os.path.join(self.tmpdir, "policy_status.yaml")
        self._write(self.base, {"reconciler": {"max_concurrent_reconciles": 4, "max_retries": 2}})

    def _write(self, path, data):
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f)

    def test_base_file(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            cfg = load_config(base_path=self.base)
        self.assertEqual(cfg, {"reconciler": {"max_concurrent_reconciles": 4, "max_retries": 2}})

    def test_missing_base_file_is_ok(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            cfg = load_config(base_path=os.path.join(self.tmpdir, "nope.yaml"))
        self.assertEqual(cfg, {})

    def test_overlay_then_env(self):
        config_dir = os.path.join(self.tmpdir, "overlays")
        self._write(os.path.join(config_dir, "prod.yaml"),
                    {"reconciler": {"max_retries": 9, "backoff_max": 5.0}})
        env = _clean_env()
        env["PS_RECONCILER__BACKOFF_MAX"] = "1.5"
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config(base_path=self.base, env="prod", config_dir=config_dir)
        self.assertEqual(cfg["reconciler"]["max_concurrent_reconciles"], 4)
        self.assertEqual(cfg["reconciler"]["max_retries"], 9)
        self.assertEqual(cfg["reconciler"]["backoff_max"], 1.5)

    def test_overlay_beside_base_from_env(self):
        self._write(os.path.join(self.tmpdir, "config", "staging.yaml"), {"logging": {"level": "DEBUG"}})
        env = _clean_env()
        env["PS_ENV"] = "staging"
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config(base_path=self.base)
        self.assertEqual(cfg["logging"], {"level": "DEBUG"})

    def test_only_yaml_extension_is_read(self):
        self._write(os.path.join(self.tmpdir, "config", "prod.yml"), {"reconciler": {"max_retries": 9}})
        with patch.dict(os.environ, _clean_env(), clear=True):
            cfg = load_config(base_path=self.base, env="prod")
        self.assertEqual(cfg["reconciler"]["max_retries"], 2)

    def test_no_loader_stamps(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            cfg = load_config(base_path=self.base, env="prod")
        self.assertFalse([k for k in cfg if k.startswith("_")])

    def test_non_mapping_file_rejected(self):
        with open(self.base, "w") as f:
            f.write("- 1\n- 2\n")
        with patch.dict(os.environ, _clean_env(), clear=True):
            with self.assertRaises(ValueError):
                load_config(base_path=self.base)

    def test_broken_overlay_raises(self):
        path = os.path.join(self.tmpdir, "config", "prod.yaml")
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write("reconciler: [unclosed\n")
        with patch.dict(os.environ, _clean_env(), clear=True):
            with self.assertRaises(yaml.YAMLError):
                load_config(base_path=self.base, env="prod")

    def test_env_vars_can_be_disabled(self):
        env = _clean_env()
        env["PS_RECONCILER__MAX_RETRIES"] = "11"
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config(base_path=self.base, include_env_vars=False)
        self.assertEqual(cfg["reconciler"]["max_retries"], 2)

    def test_get_config_value(self):
        cfg = {"a": {"b": 1}}
        self.assertEqual(get_config_value("a.b", cfg), 1)
        self.assertEqual(get_config_value("a.b.c", cfg, "dflt"), "dflt")


class TestReconcilerSettings(unittest.TestCase):

    def test_defaults(self):
        s = ReconcilerSettings.from_config({})
        self.assertEqual(s, ReconcilerSettings())
        self.assertEqual(s.max_concurrent_reconciles, 10)

    def test_from_config(self):
        s = ReconcilerSettings.from_config({
            "reconciler": {"max_concurrent_reconciles": "3", "backoff_base": 0.01},
            "logging": {"level": "DEBUG"},
        })
        self.assertEqual(s.max_concurrent_reconciles, 3)
        self.assertEqual(s.backoff_base, 0.01)
        self.assertEqual(s.log_level, "DEBUG")

    def test_rejects_bad_values(self):
        for section in ({"max_concurrent_reconciles": 0}, {"max_retries": -1},
                        {"max_retries": "many"}):
            with self.assertRaises(ValueError, msg=section):
                ReconcilerSettings.from_config({"reconciler": section})

    def test_rejects_scalar_section(self):
        with self.assertRaises(ValueError):
            ReconcilerSettings.from_config({"reconciler": 5})

    def test_shipped_config_file_loads(self):
        path = os.path.join(_project_root, "policy_status.yaml")
        with patch.dict(os.environ, _clean_env(), clear=True):
            s = ReconcilerSettings.from_config(load_config(base_path=path))
        self.assertEqual(s, ReconcilerSettings())


if __name__ == "__main__":
    unittest.main()
