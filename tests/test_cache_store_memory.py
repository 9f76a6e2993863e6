import threading
import unittest

from gymcore.cache import CacheStore
from gymcore.cache_store.memory import InMemoryCacheMedium


class TestInMemoryCacheMedium(unittest.TestCase):
    def test_read_write_delete(self):
        medium = InMemoryCacheMedium()
        self.assertIsNone(medium.read("k"))
        medium.write("k", "v1")
        medium.write("k", "v2")
        self.assertEqual(medium.read("k"), "v2")
        medium.delete("k")
        medium.delete("k")
        self.assertIsNone(medium.read("k"))

    def test_keys_filters_by_prefix(self):
        medium = InMemoryCacheMedium()
        medium.write("gym_a", "1")
        medium.write("gym_b", "2")
        medium.write("other_a", "3")
        self.assertEqual(sorted(medium.keys("gym_")), ["gym_a", "gym_b"])

    def test_concurrent_writers_do_not_lose_keys(self):
        cache = CacheStore(InMemoryCacheMedium(), prefix="t_")

        def writer(offset):
            for i in range(50):
                cache.set(f"workout_detail_{offset + i}", {"id": offset + i})

        threads = [threading.Thread(target=writer, args=(n * 100,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(cache.medium), 200)
        self.assertEqual(cache.clear_pattern("workout_detail_"), 200)
        self.assertEqual(len(cache.medium), 0)


if __name__ == "__main__":
    unittest.main()
