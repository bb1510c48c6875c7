from __future__ import annotations

import unittest

from chain_fakes import CURVE, CURVE_B, TOKEN, TOKEN_B, ConfigPatchMixin, FakeChain
from trading.execution import ExecutionProtocol
from trading.graduation import GraduationWatcher
from trading.inflight import InFlightGuard
from trading.models import ACTION_GRADUATE


class GraduationWatcherTests(ConfigPatchMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.patch_execution_defaults()
        self.chain = FakeChain()
        self.guard = InFlightGuard()
        self.watcher = GraduationWatcher(self.chain, self.guard, ExecutionProtocol(self.chain))
        self.watcher.track(CURVE, TOKEN)

    def test_track_dedupes_by_curve(self) -> None:
        self.assertFalse(self.watcher.track(f" {CURVE} ", TOKEN))
        self.assertTrue(self.watcher.track(CURVE_B, TOKEN_B))
        self.assertEqual(len(self.watcher.pending()), 2)

    async def test_boolean_flag_wins_over_progress(self) -> None:
        self.chain.graduatable[CURVE] = True
        self.chain.progress[CURVE] = 10
        self.assertEqual(await self.watcher.eligibility(CURVE), (True, 10_000))

    async def test_progress_fallback_when_flag_missing(self) -> None:
        self.chain.progress[CURVE] = 10_000
        eligible, progress = await self.watcher.eligibility(CURVE)
        self.assertTrue(eligible)
        self.assertEqual(progress, 10_000)

        self.chain.progress[CURVE] = 9_999
        eligible, _ = await self.watcher.eligibility(CURVE)
        self.assertFalse(eligible)

    async def test_no_signals_means_not_eligible(self) -> None:
        self.assertEqual(await self.watcher.eligibility(CURVE), (False, 0))

    async def test_eligible_curve_is_graduated_and_untracked(self) -> None:
        self.chain.graduatable[CURVE] = True
        await self.watcher.run_pass()

        self.assertEqual(self.chain.sent_actions(), [ACTION_GRADUATE])
        self.assertEqual(self.watcher.pending(), [])
        self.assertFalse(self.guard.is_held(TOKEN))

    async def test_already_graduated_curve_is_marked_without_tx(self) -> None:
        self.chain.graduated[CURVE] = True
        self.chain.graduatable[CURVE] = True
        await self.watcher.run_pass()
        self.assertEqual(self.chain.sends, [])
        self.assertEqual(self.watcher.pending(), [])

    async def test_guarded_asset_is_skipped(self) -> None:
        self.chain.graduatable[CURVE] = True
        self.guard.try_acquire(TOKEN)
        await self.watcher.run_pass()
        self.assertEqual(self.chain.sends, [])
        self.assertEqual(len(self.watcher.pending()), 1)

    async def test_lost_race_keeps_curve_pending(self) -> None:
        self.chain.graduatable[CURVE] = True
        self.chain.reject_actions = {ACTION_GRADUATE}
        await self.watcher.run_pass()
        self.assertEqual(len(self.watcher.pending()), 1)
        self.assertFalse(self.guard.is_held(TOKEN))


if __name__ == "__main__":
    unittest.main()
