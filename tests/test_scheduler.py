from __future__ import annotations

import asyncio
import unittest

from support import FAST_CONFIG, FakeCompiler, marker

from diagramlive.compiler import Diagnostic
from diagramlive.errors import CompileError, NormalizationError
from diagramlive.scheduler import CancellableTimer, RenderScheduler

VALID = "flowchart TD\nA-->B"
INVALID = "flowchart TD\nA--"


class CancellableTimerTests(unittest.IsolatedAsyncioTestCase):
    async def test_restart_replaces_pending_callback(self) -> None:
        fired = []
        timer = CancellableTimer()
        timer.start(0.05, lambda: fired.append("first"))
        timer.start(0.01, lambda: fired.append("second"))
        await timer.wait()
        await asyncio.sleep(0.06)
        self.assertEqual(fired, ["second"])
        self.assertFalse(timer.pending)

    async def test_cancel(self) -> None:
        fired = []
        timer = CancellableTimer()
        timer.start(0.01, lambda: fired.append(1))
        self.assertTrue(timer.cancel())
        await timer.wait()
        self.assertEqual(fired, [])
        self.assertFalse(timer.cancel())


class RenderSchedulerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.compiler = FakeCompiler()
        self.scheduler = RenderScheduler(self.compiler, config=FAST_CONFIG)
        self.mounts = []
        self.scheduler.display.subscribe(lambda slot: self.mounts.append(slot.generation))

    async def asyncTearDown(self) -> None:
        await self.scheduler.aclose()

    async def test_same_source_twice_renders_once(self) -> None:
        self.assertTrue(self.scheduler.submit(VALID))
        self.assertTrue(self.scheduler.submit(VALID))
        await self.scheduler.wait_idle()
        self.assertEqual(len(self.compiler.compiled), 1)

        self.assertFalse(self.scheduler.submit(VALID))
        await self.scheduler.wait_idle()
        self.assertEqual(len(self.compiler.compiled), 1)

    async def test_keystroke_burst_is_coalesced(self) -> None:
        for i in range(1, 6):
            self.scheduler.submit(VALID[: 10 + i])
        await self.scheduler.wait_idle()
        self.assertEqual(self.compiler.compiled, [("diagram-1", VALID[:15])])

    async def test_later_submission_wins_when_it_resolves_first(self) -> None:
        first = "flowchart TD\nA-->B"
        second = "flowchart TD\nA-->C"
        self.compiler.delays = {first: 0.2, second: 0.0}

        self.scheduler.submit(first)
        await asyncio.sleep(0.05)
        self.assertEqual(len(self.compiler.compiled), 1)
        self.scheduler.submit(second)
        await self.scheduler.wait_idle()

        self.assertEqual(len(self.compiler.compiled), 2)
        markup = self.scheduler.display.markup
        self.assertIsNotNone(markup)
        self.assertIn(marker(second), markup.text)
        self.assertNotIn(marker(first), markup.text)
        self.assertEqual(self.scheduler.display.generation, 2)
        self.assertEqual(self.mounts, [2])
        self.assertEqual(self.scheduler.accepted_source, second)

    async def test_stale_result_is_dropped(self) -> None:
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        self.scheduler.force_refresh()
        self.assertFalse(self.scheduler.on_result(1, "<svg/>"))
        self.assertIn(marker(VALID), self.scheduler.display.markup.text)

    async def test_accepted_markup_gains_viewbox(self) -> None:
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        markup = self.scheduler.display.markup
        self.assertIn('viewBox="0 0 400 300"', markup.text)
        self.assertIsNone(self.scheduler.display.error)

    async def test_invalid_source_clears_previous_diagram(self) -> None:
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        self.assertIsNotNone(self.scheduler.display.markup)

        self.scheduler.submit(INVALID)
        await self.scheduler.wait_idle()
        self.assertIsNone(self.scheduler.display.markup)
        error = self.scheduler.display.error
        self.assertIsInstance(error, CompileError)
        self.assertEqual(error.line, 2)
        self.assertFalse(error.fatal)
        self.assertEqual([src for _id, src in self.compiler.compiled], [VALID])

    async def test_internal_fault_in_precheck_fails_fast(self) -> None:
        self.compiler.validate_error = TypeError("Cannot read properties of undefined (reading 'nodes')")
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        error = self.scheduler.display.error
        self.assertIsInstance(error, CompileError)
        self.assertTrue(error.fatal)
        self.assertEqual(self.compiler.compiled, [])

    async def test_internal_fault_compile_error_in_precheck_is_fatal(self) -> None:
        self.compiler.validate_error = CompileError("Cannot read properties of undefined (reading 'edges')", line=4)
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        error = self.scheduler.display.error
        self.assertTrue(error.fatal)
        self.assertEqual(error.line, 4)
        self.assertEqual(self.compiler.compiled, [])

    async def test_internal_fault_diagnostic_is_fatal(self) -> None:
        self.compiler.diagnostic = Diagnostic("TypeError: Cannot read properties of null")
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        self.assertTrue(self.scheduler.display.error.fatal)
        self.assertEqual(self.compiler.compiled, [])

    async def test_internal_fault_during_compile_is_not_fatal(self) -> None:
        self.compiler.compile_error = CompileError("x is undefined")
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        self.assertFalse(self.scheduler.display.error.fatal)

    async def test_other_precheck_failure_is_not_fatal(self) -> None:
        self.compiler.validate_error = RuntimeError("lexical error on line 3")
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        self.assertFalse(self.scheduler.display.error.fatal)
        self.assertEqual(self.compiler.compiled, [])

    async def test_compile_failure_is_not_retried(self) -> None:
        self.compiler.compile_error = CompileError("boom")
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        self.assertEqual(str(self.scheduler.display.error), "boom")

        self.compiler.compile_error = None
        self.assertFalse(self.scheduler.submit(VALID))
        await self.scheduler.wait_idle()
        self.assertEqual(len(self.compiler.compiled), 1)

    async def test_unexpected_compile_exception_becomes_compile_error(self) -> None:
        self.compiler.compile_error = OSError("pipe closed")
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        self.assertIsInstance(self.scheduler.display.error, CompileError)
        self.assertEqual(str(self.scheduler.display.error), "pipe closed")

    async def test_malformed_compiler_output_is_displayed_as_error(self) -> None:
        self.compiler.outputs[VALID] = "<html/>"
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        self.assertIsInstance(self.scheduler.display.error, NormalizationError)
        self.assertIsNone(self.scheduler.display.markup)

    async def test_force_refresh_makes_next_submit_render(self) -> None:
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        generation = self.scheduler.generation

        self.scheduler.force_refresh()
        self.assertEqual(self.scheduler.generation, generation + 1)
        self.assertTrue(self.scheduler.submit(VALID))
        await self.scheduler.wait_idle()
        self.assertEqual(len(self.compiler.compiled), 2)
        self.assertEqual(self.scheduler.display.generation, generation + 2)

    async def test_force_refresh_discards_in_flight_result(self) -> None:
        self.compiler.delays = {VALID: 0.1}
        self.scheduler.submit(VALID)
        await asyncio.sleep(0.05)
        self.scheduler.force_refresh()
        await self.scheduler.wait_idle()
        self.assertTrue(self.scheduler.display.is_empty)
        self.assertEqual(self.mounts, [])

    async def test_refresh_rerenders_latest_source(self) -> None:
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        self.assertTrue(self.scheduler.refresh())
        await self.scheduler.wait_idle()
        self.assertEqual(len(self.compiler.compiled), 2)

    async def test_cancel_drops_pending_render(self) -> None:
        self.scheduler.submit(VALID)
        self.scheduler.cancel()
        await self.scheduler.wait_idle()
        self.assertEqual(self.compiler.compiled, [])
        self.assertTrue(self.scheduler.display.is_empty)

    async def test_empty_source_clears_without_compiling(self) -> None:
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()
        self.assertTrue(self.scheduler.submit("  \n"))
        self.assertTrue(self.scheduler.display.is_empty)
        await self.scheduler.wait_idle()
        self.assertEqual(len(self.compiler.compiled), 1)

    async def test_editing_back_to_shown_source_cancels_pending_work(self) -> None:
        other = "flowchart TD\nA-->Z"
        self.scheduler.submit(VALID)
        await self.scheduler.wait_idle()

        self.compiler.delays = {other: 0.1}
        self.scheduler.submit(other)
        await asyncio.sleep(0.05)
        self.assertFalse(self.scheduler.submit(VALID))
        await self.scheduler.wait_idle()

        self.assertIn(marker(VALID), self.scheduler.display.markup.text)
        self.assertEqual(self.scheduler.accepted_source, VALID)

    async def test_unknown_trigger_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.scheduler.submit(VALID, trigger="telepathy")


if __name__ == "__main__":
    unittest.main()
