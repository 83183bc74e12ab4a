import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from resumable_deployer.config import AppConfig, apply_env_overrides, load_config
from resumable_deployer.errors import ConfigurationError

DEFAULT_CONFIG = Path(__file__).resolve().parents[1] / "config" / "default_config.json"


class ConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        env = patch.dict(os.environ, {}, clear=False)
        env.start()
        self.addCleanup(env.stop)
        for name in list(os.environ):
            if name.startswith("RESUMABLE_DEPLOYER_"):
                del os.environ[name]

    def write_config(self, payload) -> str:
        path = Path(self._tmp.name) / "config.json"
        path.write_text(json.dumps(payload) if not isinstance(payload, str) else payload, encoding="utf-8")
        return str(path)

    def test_loads_default_config(self) -> None:
        config = load_config(str(DEFAULT_CONFIG))
        self.assertIsInstance(config, AppConfig)
        self.assertEqual(config.invoker.max_retries, 3)
        self.assertEqual(config.deployment.network, "testnet")
        self.assertTrue(config.verification.enabled)

    def test_loads_custom_config(self) -> None:
        path = self.write_config(
            {
                "invoker": {"endpoint": "https://backend.example", "_comment": "ignored"},
                "deployment": {"skip_steps": [2, 4], "min_balance": 1.5, "seed": {"oracle": "0xfeed"}},
            }
        )
        config = load_config(path)
        self.assertEqual(config.invoker.endpoint, "https://backend.example")
        self.assertEqual(config.invoker.timeout, 30)
        self.assertEqual(config.deployment.skip_steps, [2, 4])
        self.assertEqual(config.deployment.min_balance, 1.5)
        self.assertEqual(config.deployment.seed, {"oracle": "0xfeed"})

    def test_unknown_field_is_a_configuration_error(self) -> None:
        path = self.write_config({"deployment": {"max_gas": 1}})
        with self.assertRaises(ConfigurationError):
            load_config(path)

    def test_invalid_json_is_a_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            load_config(self.write_config("{"))
        with self.assertRaises(ConfigurationError):
            load_config(self.write_config({"invoker": ["x"]}))

    def test_step_lists_accept_cli_syntax(self) -> None:
        config = AppConfig.from_dict(
            {"deployment": {"skip_steps": "1,2", "only_steps": "2-4"}}
        )
        self.assertEqual(config.deployment.skip_steps, [1, 2])
        self.assertEqual(config.deployment.only_steps, [2, 3, 4])

        config = AppConfig.from_dict({"deployment": {"skip_steps": [3, 1], "only_steps": None}})
        self.assertEqual(config.deployment.skip_steps, [1, 3])
        self.assertIsNone(config.deployment.only_steps)

    def test_malformed_step_lists_are_configuration_errors(self) -> None:
        for value in ("1,x", ["1", "2"], [1.5], 3, {"1": True}, [True]):
            with self.assertRaises(ConfigurationError, msg=repr(value)):
                AppConfig.from_dict({"deployment": {"skip_steps": value}})
        with self.assertRaises(ConfigurationError):
            load_config(self.write_config({"deployment": {"only_steps": "a-b"}}))

    def test_env_overrides(self) -> None:
        path = self.write_config({"invoker": {"endpoint": "https://file.example"}})
        os.environ.update(
            {
                "RESUMABLE_DEPLOYER_INVOKER_ENDPOINT": "https://env.example",
                "RESUMABLE_DEPLOYER_API_KEY": "secret-key",
                "RESUMABLE_DEPLOYER_LEDGER_PATH": "/tmp/ledger.json",
                "RESUMABLE_DEPLOYER_NETWORK": "apothem",
                "RESUMABLE_DEPLOYER_SKIP_STEPS": "1,3-4",
            }
        )
        config = load_config(path)
        self.assertEqual(config.invoker.endpoint, "https://env.example")
        self.assertEqual(config.invoker.api_key, "secret-key")
        self.assertEqual(config.deployment.ledger_path, "/tmp/ledger.json")
        self.assertEqual(config.deployment.network, "apothem")
        self.assertEqual(config.deployment.skip_steps, [1, 3, 4])

    def test_api_key_in_file_wins_over_env(self) -> None:
        os.environ["RESUMABLE_DEPLOYER_API_KEY"] = "from-env"
        config = apply_env_overrides(AppConfig.from_dict({"invoker": {"api_key": "from-file"}}))
        self.assertEqual(config.invoker.api_key, "from-file")

    def test_missing_config_file(self) -> None:
        missing = str(Path(self._tmp.name) / "nope.json")
        with patch("resumable_deployer.config._DEFAULT_CONFIG_PATH", Path(self._tmp.name) / "default.json"):
            with self.assertRaises(FileNotFoundError):
                load_config(missing)


if __name__ == "__main__":
    unittest.main()
