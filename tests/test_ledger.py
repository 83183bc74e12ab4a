import json
import tempfile
import unittest
from pathlib import Path

from resumable_deployer.errors import (
    ConfigurationError,
    DependencyMissingError,
    LedgerConflictError,
    PersistenceError,
)
from resumable_deployer.orchestrator import (
    DeploymentLedger,
    LedgerStore,
    StepResult,
    is_placeholder,
)


class PlaceholderTests(unittest.TestCase):
    def test_empty_and_zero_identifiers_are_placeholders(self) -> None:
        for value in (None, "", "   ", "0", "0x", "0x" + "0" * 40, "0X0000"):
            self.assertTrue(is_placeholder(value), value)

    def test_real_identifiers_are_not_placeholders(self) -> None:
        for value in ("0x84e2D47A110DC9db2f74Ab6510B4Bf1044e018ba", "lib-1", "10", "0x01"):
            self.assertFalse(is_placeholder(value), value)


class DeploymentLedgerTests(unittest.TestCase):
    def test_is_applied_uses_placeholder_convention(self) -> None:
        ledger = DeploymentLedger()
        ledger.set("a", StepResult("a", "0x" + "0" * 40))
        ledger.set("b", StepResult("b", "0xabc"))

        self.assertTrue(ledger.has("a"))
        self.assertFalse(ledger.is_applied("a"))
        self.assertTrue(ledger.is_applied("b"))
        self.assertFalse(ledger.is_applied("missing"))

    def test_set_refuses_to_overwrite_applied_identifier(self) -> None:
        ledger = DeploymentLedger()
        ledger.set("pool", StepResult("pool", "0x1"))

        with self.assertRaises(LedgerConflictError):
            ledger.set("pool", StepResult("pool", "0x2"))
        self.assertEqual(ledger.get("pool").identifier, "0x1")

        # 同一标识符允许重新写入（刷新元数据）
        ledger.set("pool", StepResult("pool", "0x1", {"tx": "abc"}))
        self.assertEqual(ledger.get("pool").metadata, {"tx": "abc"})

    def test_placeholder_entry_can_be_replaced(self) -> None:
        ledger = DeploymentLedger()
        ledger.set("pool", StepResult("pool", ""))
        ledger.set("pool", StepResult("pool", "0x2"))
        self.assertEqual(ledger.get("pool").identifier, "0x2")

    def test_clear_forces_reapplication(self) -> None:
        ledger = DeploymentLedger()
        ledger.set("pool", StepResult("pool", "0x1"))
        removed = ledger.clear("pool")

        self.assertEqual(removed.identifier, "0x1")
        self.assertFalse(ledger.has("pool"))
        ledger.set("pool", StepResult("pool", "0x2"))
        self.assertEqual(ledger.identifier("pool"), "0x2")

    def test_require_raises_for_missing_or_placeholder(self) -> None:
        ledger = DeploymentLedger()
        ledger.set("zero", StepResult("zero", "0x0"))

        with self.assertRaises(DependencyMissingError) as ctx:
            ledger.require("zero")
        self.assertEqual(ctx.exception.resource_key, "zero")
        with self.assertRaises(DependencyMissingError):
            ledger.require("absent")

    def test_set_rejects_mismatched_key(self) -> None:
        ledger = DeploymentLedger()
        with self.assertRaises(ConfigurationError):
            ledger.set("a", StepResult("b", "0x1"))

    def test_seed_marks_source(self) -> None:
        ledger = DeploymentLedger()
        self.assertTrue(ledger.seed("oracle", "0xfeed"))
        self.assertFalse(ledger.seed("oracle", "0xfeed"))
        self.assertEqual(ledger.get("oracle").metadata["source"], "seed")
        with self.assertRaises(LedgerConflictError):
            ledger.seed("oracle", "0xother")

    def test_metadata_values_are_strings(self) -> None:
        result = StepResult("a", "0x1", {"block": 12, "ok": True})
        self.assertEqual(result.metadata, {"block": "12", "ok": "True"})


class LedgerStoreTests(unittest.TestCase):
    def test_missing_file_loads_empty_ledger(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = LedgerStore(Path(tmp) / "ledger.json")
            ledger = store.load()
            self.assertEqual(len(ledger), 0)
            self.assertFalse(store.exists())

    def test_missing_file_is_fatal_when_resuming(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = LedgerStore(Path(tmp) / "ledger.json")
            with self.assertRaises(ConfigurationError):
                store.load(require_existing=True)

    def test_corrupt_file_is_fatal(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ledger.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(ConfigurationError):
                LedgerStore(path).load()

    def test_wrong_shape_is_fatal(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ledger.json"
            path.write_text(json.dumps({"version": 1, "entries": ["pool"]}), encoding="utf-8")
            with self.assertRaises(ConfigurationError):
                LedgerStore(path).load()

            path.write_text(json.dumps({"version": 99}), encoding="utf-8")
            with self.assertRaises(ConfigurationError):
                LedgerStore(path).load()

    def test_persist_then_load_preserves_entries_and_skips(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "state" / "ledger.json"
            store = LedgerStore(path)
            ledger = DeploymentLedger(skipped={3}, network="apothem")
            ledger.set("libraries.pool_logic", StepResult("libraries.pool_logic", "0xabc", {"tx": "0x1"}))
            store.persist(ledger)

            reloaded = LedgerStore(path).load(require_existing=True)
            self.assertEqual(reloaded.identifier("libraries.pool_logic"), "0xabc")
            self.assertEqual(reloaded.get("libraries.pool_logic").metadata, {"tx": "0x1"})
            self.assertEqual(reloaded.skipped, {3})
            self.assertEqual(reloaded.network, "apothem")
            self.assertFalse(path.with_name("ledger.json.tmp").exists())

            data = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(data["version"], 1)
            self.assertIn("recorded_at", data["entries"]["libraries.pool_logic"])

    def test_failed_persist_raises_and_keeps_previous_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ledger.json"
            store = LedgerStore(path)
            ledger = DeploymentLedger()
            ledger.set("a", StepResult("a", "0x1"))
            store.persist(ledger)

            # 让临时文件路径变成目录，模拟写入失败
            blocker = path.with_name("ledger.json.tmp")
            blocker.mkdir()
            ledger.set("b", StepResult("b", "0x2"))
            with self.assertRaises(PersistenceError):
                store.persist(ledger)

            reloaded = store.load()
            self.assertTrue(reloaded.is_applied("a"))
            self.assertFalse(reloaded.has("b"))


if __name__ == "__main__":
    unittest.main()
