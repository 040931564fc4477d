# tests/test_write_coordinator.py
"""
Tests pour la file d'écriture sérialisée.
"""

import asyncio
import gc
import unittest

from infrastructure.write_coordinator import WriteCoordinator


class TestWriteCoordinator(unittest.TestCase):

    def test_tasks_run_one_at_a_time_in_order(self):
        events = []

        async def scenario():
            coordinator = WriteCoordinator()

            def make_task(name, delay):
                async def task():
                    events.append(f"start {name}")
                    await asyncio.sleep(delay)
                    events.append(f"end {name}")
                    return name
                return task

            # Le premier est le plus lent, il doit quand même finir avant le second
            futures = [coordinator.enqueue(make_task(n, d)) for n, d in (("a", 0.03), ("b", 0.0), ("c", 0.01))]
            return await asyncio.gather(*futures)

        results = asyncio.run(scenario())

        self.assertEqual(results, ["a", "b", "c"])
        self.assertEqual(events, ["start a", "end a", "start b", "end b", "start c", "end c"])

    def test_failure_does_not_block_queue(self):
        async def scenario():
            coordinator = WriteCoordinator()

            async def failing():
                raise RuntimeError("disk full")

            async def succeeding():
                return "ok"

            first = coordinator.enqueue(failing)
            second = coordinator.enqueue(succeeding)
            with self.assertRaises(RuntimeError):
                await first
            return await second, coordinator.pending

        result, pending = asyncio.run(scenario())
        self.assertEqual(result, "ok")
        self.assertEqual(pending, 0)

    def test_enqueue_does_not_block_caller(self):
        async def scenario():
            coordinator = WriteCoordinator()
            started = asyncio.Event()

            async def task():
                started.set()
                return 1

            future = coordinator.enqueue(task)
            # Rien n'a encore tourné, la tâche est seulement planifiée
            self.assertFalse(started.is_set())
            self.assertEqual(coordinator.pending, 1)
            return await future

        self.assertEqual(asyncio.run(scenario()), 1)

    def test_unawaited_failure_is_not_reported_by_asyncio(self):
        reported = []

        async def scenario():
            asyncio.get_running_loop().set_exception_handler(lambda loop, context: reported.append(context))
            coordinator = WriteCoordinator()

            async def failing():
                raise RuntimeError("disk full")

            async def succeeding():
                return "ok"

            # Personne n'attend la tâche en échec
            coordinator.enqueue(failing)
            coordinator.enqueue(failing)
            result = await coordinator.enqueue(succeeding)
            coordinator.enqueue(failing)
            await coordinator.drain()
            coordinator._tail = None
            gc.collect()
            return result

        self.assertEqual(asyncio.run(scenario()), "ok")
        self.assertEqual(reported, [])

    def test_read_modify_write_sees_previous_result(self):
        async def scenario():
            coordinator = WriteCoordinator()
            state = {"value": 0}

            async def increment():
                current = state["value"]
                await asyncio.sleep(0)
                state["value"] = current + 1

            await asyncio.gather(*[coordinator.enqueue(increment) for _ in range(20)])
            return state["value"]

        self.assertEqual(asyncio.run(scenario()), 20)

    def test_drain_waits_for_everything(self):
        async def scenario():
            coordinator = WriteCoordinator()
            done = []

            async def task():
                await asyncio.sleep(0.01)
                done.append(True)

            for _ in range(3):
                coordinator.enqueue(task)
            await coordinator.drain()
            return len(done), coordinator.pending

        self.assertEqual(asyncio.run(scenario()), (3, 0))


if __name__ == '__main__':
    unittest.main()
