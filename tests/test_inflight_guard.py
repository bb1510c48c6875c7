from __future__ import annotations

import unittest

from trading.inflight import InFlightGuard

TOKEN = "0xaaaaaaaaaa1111111111111111111111111111bb"


class InFlightGuardTests(unittest.TestCase):
    def test_second_acquire_is_refused_until_release(self) -> None:
        guard = InFlightGuard()
        self.assertTrue(guard.try_acquire(TOKEN))
        self.assertFalse(guard.try_acquire("0x" + TOKEN[2:].upper()))
        guard.release(TOKEN)
        self.assertTrue(guard.try_acquire(TOKEN))

    def test_context_releases_on_exception(self) -> None:
        guard = InFlightGuard()
        with self.assertRaises(RuntimeError):
            with guard.acquired(TOKEN) as got:
                self.assertTrue(got)
                raise RuntimeError("boom")
        self.assertFalse(guard.is_held(TOKEN))

    def test_context_does_not_release_a_key_it_did_not_take(self) -> None:
        guard = InFlightGuard()
        guard.try_acquire(TOKEN)
        with guard.acquired(TOKEN) as got:
            self.assertFalse(got)
        self.assertTrue(guard.is_held(TOKEN))

    def test_clear(self) -> None:
        guard = InFlightGuard()
        guard.try_acquire(TOKEN)
        guard.clear()
        self.assertFalse(guard.is_held(TOKEN))


if __name__ == "__main__":
    unittest.main()
