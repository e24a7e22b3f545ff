"""Tests for the archive reader/writer lock."""

import threading

from bufkit_data.utils.locking import ReadWriteLock


class TestReadWriteLock:
    """Shared readers, exclusive writer."""

    def test_readers_share(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(2, timeout=5)

        def reader():
            with lock.read():
                inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert not any(t.is_alive() for t in threads)

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        entered = threading.Event()

        def reader():
            with lock.read():
                entered.set()

        with lock.write():
            assert lock.write_locked
            t = threading.Thread(target=reader)
            t.start()
            assert not entered.wait(timeout=0.2)

        assert entered.wait(timeout=5)
        t.join(timeout=5)
        assert not lock.write_locked

    def test_reader_blocks_writer(self):
        lock = ReadWriteLock()
        entered = threading.Event()

        def writer():
            with lock.write():
                entered.set()

        with lock.read():
            t = threading.Thread(target=writer)
            t.start()
            assert not entered.wait(timeout=0.2)

        assert entered.wait(timeout=5)
        t.join(timeout=5)

    def test_writer_reentrant(self):
        lock = ReadWriteLock()
        with lock.write():
            with lock.write():
                with lock.read():
                    assert lock.write_locked
            assert lock.write_locked
        assert not lock.write_locked
