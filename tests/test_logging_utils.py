import logging
import unittest

from utils import logging_utils
from utils.logging_utils import build_logging_config, get_tagged_logger, mask_db_url


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        self.records.append(record)


class TestLoggingUtils(unittest.TestCase):
    def test_build_logging_config_has_expected_handlers_and_filters(self):
        cfg = build_logging_config(job_name="gymcore-test")
        self.assertIn("stdout", cfg["handlers"])
        self.assertIn("stderr", cfg["handlers"])
        self.assertEqual(cfg["handlers"]["stderr"]["level"], "WARNING")
        self.assertEqual(cfg["filters"]["job_name"]["job_name"], "gymcore-test")

    def test_job_name_filter_defaults(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        logging_utils.JobNameFilter().filter(record)
        self.assertEqual(record.job_name, "gymcore")

    def test_ensure_tag_uses_logger_name_suffix(self):
        record = logging.LogRecord("sqlalchemy.engine.Engine", logging.INFO, __file__, 1, "msg", None, None)
        logging_utils.EnsureTagFilter().filter(record)
        self.assertEqual(record.tag, "Engine")

    def test_max_level_filter(self):
        f = logging_utils.MaxLevelFilter(logging.INFO)
        info = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        warning = logging.LogRecord("x", logging.WARNING, __file__, 1, "msg", None, None)
        self.assertTrue(f.filter(info))
        self.assertFalse(f.filter(warning))

    def test_get_tagged_logger_injects_tag(self):
        handler = _ListHandler()
        logger = get_tagged_logger("gymcore.cache_store.redis")
        base_logger = logger.logger
        base_logger.setLevel(logging.DEBUG)
        base_logger.addHandler(handler)
        base_logger.propagate = False
        try:
            logger.info("hello world")
            self.assertEqual(handler.records[-1].tag, "redis")
        finally:
            base_logger.removeHandler(handler)
            base_logger.propagate = True

    def test_setup_logging_override_applies_filters(self):
        root = logging.getLogger()
        orig_handlers = root.handlers[:]
        orig_level = root.level
        try:
            logging_utils.setup_logging(level="INFO", job_name="gymcore-test", override_existing=True)
            self.assertTrue(
                any(
                    any(f.__class__.__name__ == "JobNameFilter" for f in h.filters)
                    for h in root.handlers
                )
            )
        finally:
            root.handlers = orig_handlers
            root.setLevel(orig_level)
            logging_utils._CONFIGURED = False


class TestMaskDbUrl(unittest.TestCase):
    def test_masks_username_and_password(self):
        self.assertEqual(
            mask_db_url("postgresql://gym:secret@db:5432/gym"),
            "postgresql://***:***@db:5432/gym",
        )

    def test_masks_redis_password_without_username(self):
        self.assertEqual(mask_db_url("redis://:secret@cache:6379/0"), "redis://***@cache:6379/0")

    def test_leaves_sqlite_urls_alone(self):
        self.assertEqual(mask_db_url("sqlite:///./gym.db"), "sqlite:///./gym.db")

    def test_masks_sensitive_query_params(self):
        masked = mask_db_url("postgresql://db/gym?password=abc&sslmode=require")
        self.assertEqual(masked, "postgresql://db/gym?password=%2A%2A%2A&sslmode=require")


if __name__ == "__main__":
    unittest.main()
