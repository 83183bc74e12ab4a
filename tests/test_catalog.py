import unittest

from resumable_deployer.errors import ConfigurationError
from resumable_deployer.orchestrator import Step, StepCatalog, StepResult


def noop(key):
    return lambda ledger, ctx: StepResult(key, "0x1")


def step(name, key, depends_on=()):
    return Step(name=name, resource_key=key, action=noop(key), depends_on=frozenset(depends_on))


class StepCatalogTests(unittest.TestCase):
    def test_declared_order_is_kept_when_valid(self) -> None:
        catalog = StepCatalog(
            [
                step("DeployTestUSDT", "tokens.usdt"),
                step("DeployPoolLogic", "libraries.pool_logic"),
                step("DeployPool", "pool", {"libraries.pool_logic"}),
            ]
        )
        self.assertEqual([s.name for s in catalog], ["DeployTestUSDT", "DeployPoolLogic", "DeployPool"])
        self.assertEqual([s.index for s in catalog], [1, 2, 3])

    def test_dependencies_reorder_stably(self) -> None:
        with self.assertLogs("resumable_deployer.orchestrator.catalog", level="WARNING"):
            catalog = StepCatalog(
                [
                    step("DeployPool", "pool", {"lib.a", "lib.b"}),
                    step("DeployLibraryA", "lib.a"),
                    step("Unrelated", "other"),
                    step("DeployLibraryB", "lib.b", {"lib.a"}),
                ]
            )
        self.assertEqual(
            [s.name for s in catalog],
            ["DeployLibraryA", "Unrelated", "DeployLibraryB", "DeployPool"],
        )
        self.assertEqual(catalog.by_key("pool").index, 4)

    def test_lookup_helpers(self) -> None:
        catalog = StepCatalog(
            [step("A", "lib.a"), step("B", "lib.b", {"lib.a"}), step("C", "pool", {"lib.a"})]
        )
        self.assertEqual(catalog.by_index(2).name, "B")
        self.assertEqual(catalog.producer_of("lib.a").name, "A")
        self.assertIsNone(catalog.producer_of("missing"))
        self.assertEqual([s.name for s in catalog.dependents_of("lib.a")], ["B", "C"])
        with self.assertRaises(KeyError):
            catalog.by_index(0)

    def test_duplicate_names_and_keys_are_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            StepCatalog([step("A", "lib.a"), step("A", "lib.b")])
        with self.assertRaises(ConfigurationError):
            StepCatalog([step("A", "lib.a"), step("B", "lib.a")])

    def test_unknown_dependency_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            StepCatalog([step("A", "lib.a", {"oracle"})])

    def test_external_keys_satisfy_dependencies(self) -> None:
        catalog = StepCatalog([step("A", "lib.a", {"oracle"})], external_keys=["oracle"])
        self.assertEqual(len(catalog), 1)
        self.assertEqual(catalog.to_dict()["external_keys"], ["oracle"])

    def test_cycles_and_self_dependencies_are_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            StepCatalog([step("A", "lib.a", {"lib.b"}), step("B", "lib.b", {"lib.a"})])
        with self.assertRaises(ConfigurationError):
            StepCatalog([step("A", "lib.a", {"lib.a"})])


if __name__ == "__main__":
    unittest.main()
