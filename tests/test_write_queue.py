import asyncio

from core.services.write_queue import MemoryWriteJob, MemoryWriteQueue


class RecordingWriter:
    def __init__(self):
        self.calls = []

    def store_exchange(self, owner_id, user_text, assistant_text, conversation_id=None, tags=None):
        self.calls.append((owner_id, user_text, assistant_text, conversation_id, tags))


def job(n=0):
    return MemoryWriteJob(owner_id="u1", user_text=f"question {n}", assistant_text="answer")


def test_submit_before_start_is_dropped():
    queue = MemoryWriteQueue(RecordingWriter())
    assert queue.submit(job()) is False
    assert queue.stats()["dropped"] == 1
    assert queue.running is False


def test_full_queue_drops_instead_of_blocking():
    writer = RecordingWriter()
    queue = MemoryWriteQueue(writer, workers=1, maxsize=1)

    async def scenario():
        queue.start()
        accepted = [queue.submit(job(n)) for n in range(3)]
        await queue.shutdown()
        return accepted

    accepted = asyncio.run(scenario())
    assert accepted == [True, False, False]
    assert len(writer.calls) == 1
    stats = queue.stats()
    assert stats["dropped"] == 2
    assert stats["completed"] == 1
    assert stats["running"] is False


def test_shutdown_drains_pending_jobs():
    writer = RecordingWriter()
    queue = MemoryWriteQueue(writer, workers=2, maxsize=50)

    async def scenario():
        queue.start()
        for n in range(10):
            queue.submit(job(n))
        await queue.shutdown()

    asyncio.run(scenario())
    assert len(writer.calls) == 10
    assert queue.stats()["submitted"] == 10
    assert {call[1] for call in writer.calls} == {f"question {n}" for n in range(10)}


def test_failed_write_is_counted_and_worker_survives():
    class FlakyWriter(RecordingWriter):
        def store_exchange(self, owner_id, user_text, *args):
            if user_text == "question 0":
                raise RuntimeError("boom")
            super().store_exchange(owner_id, user_text, *args)

    writer = FlakyWriter()
    queue = MemoryWriteQueue(writer, workers=1, maxsize=10)

    async def scenario():
        queue.start()
        queue.submit(job(0))
        queue.submit(job(1))
        await queue.shutdown()

    asyncio.run(scenario())
    stats = queue.stats()
    assert stats["failed"] == 1
    assert stats["completed"] == 1
    assert writer.calls[0][1] == "question 1"
