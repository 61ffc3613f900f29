import asyncio

from libs.cache import InMemoryLinkListCache
from libs.scheduler import ParallelScheduler
from libs.usecases import LinkService


class RecordingChecker:
    def __init__(self, fail_on=(), delay=0.0):
        self.seen = []
        self.fail_on = set(fail_on)
        self.delay = delay
        self.active = 0
        self.max_active = 0

    async def process_link(self, link):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.seen.append(link.url)
            if link.url in self.fail_on:
                raise RuntimeError("boom")
            return True
        finally:
            self.active -= 1


def seed_links(database, count):
    service = LinkService(database, InMemoryLinkListCache())
    urls = [f"https://github.com/owner/repo{i}" for i in range(count)]

    async def scenario():
        await service.register_chat(1)
        for url in urls:
            await service.add_link(1, url)

    asyncio.run(scenario())
    return urls


def test_sweep_visits_every_link_once_across_batches(database):
    urls = seed_links(database, 7)
    checker = RecordingChecker()
    scheduler = ParallelScheduler(checker, database, interval=60, batch_size=3, workers=2)

    processed = asyncio.run(scheduler.run_sweep())

    assert processed == 7
    assert sorted(checker.seen) == sorted(urls)


def test_sweep_continues_after_link_errors(database):
    urls = seed_links(database, 4)
    checker = RecordingChecker(fail_on={urls[1]})
    scheduler = ParallelScheduler(checker, database, interval=60, batch_size=10, workers=2)

    assert asyncio.run(scheduler.run_sweep()) == 4
    assert sorted(checker.seen) == sorted(urls)


def test_workers_bound_concurrency(database):
    seed_links(database, 9)
    checker = RecordingChecker(delay=0.01)
    scheduler = ParallelScheduler(checker, database, interval=60, batch_size=9, workers=3)

    asyncio.run(scheduler.run_sweep())

    assert len(checker.seen) == 9
    assert 1 < checker.max_active <= 3


def test_empty_database_sweep(database):
    scheduler = ParallelScheduler(RecordingChecker(), database, interval=60)
    assert asyncio.run(scheduler.run_sweep()) == 0


def test_stop_cancels_in_flight_work(database):
    seed_links(database, 2)
    started = None
    cancelled = []

    class BlockingChecker:
        async def process_link(self, link):
            started.set()
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                cancelled.append(link.url)
                raise
            return True

    async def scenario():
        nonlocal started
        started = asyncio.Event()
        scheduler = ParallelScheduler(BlockingChecker(), database, interval=60, workers=2)
        scheduler.start()
        await asyncio.wait_for(started.wait(), timeout=5)
        await scheduler.stop()

    asyncio.run(scenario())

    assert cancelled
