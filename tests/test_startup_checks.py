from __future__ import annotations

import unittest

import main
from chain_fakes import ConfigPatchMixin


class HeightsChain:
    def __init__(self, heights: dict[str, int]) -> None:
        self.heights = heights

    def provider_heights(self) -> dict[str, int]:
        return dict(self.heights)


class StartupCheckTests(ConfigPatchMixin, unittest.TestCase):
    def test_skew_needs_two_providers(self) -> None:
        self.assertEqual(main.provider_height_skew({}), 0)
        self.assertEqual(main.provider_height_skew({"a": 10}), 0)
        self.assertEqual(main.provider_height_skew({"a": 10, "b": 14}), 4)

    def test_large_skew_is_warned(self) -> None:
        self.patch_cfg(RPC_HEIGHT_SKEW_WARN_BLOCKS=2)
        with self.assertLogs("main", level="WARNING") as logs:
            skew = main.check_provider_skew(HeightsChain({"rpc": 100, "ws": 104}))
        self.assertEqual(skew, 4)
        self.assertIn("RPC_SKEW", "\n".join(logs.output))

    def test_small_skew_is_info_only(self) -> None:
        self.patch_cfg(RPC_HEIGHT_SKEW_WARN_BLOCKS=2)
        with self.assertLogs("main", level="INFO") as logs:
            main.check_provider_skew(HeightsChain({"rpc": 100, "ws": 102}))
        self.assertTrue(all("RPC_SKEW" not in line for line in logs.output))

    def test_settings_summary_lists_exit_knobs(self) -> None:
        keys = [key for key, _ in main.settings_summary()]
        for key in ("take_profit_bps", "hard_stop_bps", "max_replacements", "gas_bump_bps"):
            self.assertIn(key, keys)


if __name__ == "__main__":
    unittest.main()
