# config module tests
import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from pydantic import ValidationError

from config import (
    Config,
    ConfigLoader,
    CrawlerConfig,
    DedupConfig,
    create_config_from_dict,
    load_config_file,
    load_config_from_env,
)


class TestConfigClasses(unittest.TestCase):
    def test_defaults(self):
        config = Config()
        self.assertEqual(config.feed.api_url, "https://api.pushshift.io/reddit/search/submission")
        self.assertEqual(config.feed.page_size, 100)
        self.assertEqual(config.crawler.max_parallelism, 8)
        self.assertEqual(config.crawler.max_attempts, 3)
        self.assertEqual(config.dedup.lock_pool_capacity, 10)
        self.assertEqual(config.image.default_extension, ".jpg")
        self.assertEqual(config.image.checkpoint_filename, "checkpoint.json")

    def test_max_parallelism_must_be_positive(self):
        with self.assertRaises(ValidationError):
            CrawlerConfig(max_parallelism=0)

    def test_hamming_distance_range(self):
        DedupConfig(max_hamming_distance=0)
        DedupConfig(max_hamming_distance=64)
        with self.assertRaises(ValidationError):
            DedupConfig(max_hamming_distance=-1)
        with self.assertRaises(ValidationError):
            DedupConfig(max_hamming_distance=65)


class TestCreateConfigFromDict(unittest.TestCase):
    def test_sections(self):
        config = create_config_from_dict({
            "crawler": {"max_parallelism": 2},
            "dedup": {"max_hamming_distance": 1},
        })
        self.assertEqual(config.crawler.max_parallelism, 2)
        self.assertEqual(config.dedup.max_hamming_distance, 1)

    def test_flat_keys(self):
        config = create_config_from_dict({
            "download_dir": "/data/images",
            "max_parallelism": 4,
            "max_hamming_distance": 0,
            "log_level": "DEBUG",
        })
        self.assertEqual(config.image.download_dir, Path("/data/images"))
        self.assertEqual(config.crawler.max_parallelism, 4)
        self.assertEqual(config.dedup.max_hamming_distance, 0)
        self.assertEqual(config.log.log_level, "DEBUG")

    def test_section_value_wins_over_flat_key(self):
        config = create_config_from_dict({"max_parallelism": 4, "crawler": {"max_parallelism": 6}})
        self.assertEqual(config.crawler.max_parallelism, 6)

    def test_unknown_keys_ignored(self):
        config = create_config_from_dict({"something_else": 1})
        self.assertEqual(config.crawler.max_parallelism, 8)

    def test_invalid_value(self):
        with self.assertRaises(ValidationError):
            create_config_from_dict({"max_parallelism": 0})


class TestConfigLoader(unittest.TestCase):
    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_load_file(self):
        path = self.test_dir / "settings.json"
        path.write_text(json.dumps({"max_parallelism": 3}), encoding="utf-8")

        self.assertEqual(load_config_file(path), {"max_parallelism": 3})
        self.assertEqual(ConfigLoader.load(path).crawler.max_parallelism, 3)

    def test_load_nonexistent_raises(self):
        with self.assertRaises(FileNotFoundError):
            ConfigLoader.load(self.test_dir / "missing.json")

    def test_load_invalid_json_raises(self):
        path = self.test_dir / "bad.json"
        path.write_text("{oops", encoding="utf-8")
        with self.assertRaises(json.JSONDecodeError):
            ConfigLoader.load(path)

    def test_load_without_file_uses_env(self):
        with patch.dict(os.environ, {"MAX_PARALLELISM": "5"}):
            self.assertEqual(ConfigLoader.load().crawler.max_parallelism, 5)


class TestLoadConfigFromEnv(unittest.TestCase):
    def test_env_values(self):
        env = {
            "MAX_PARALLELISM": "12",
            "MAX_HAMMING_DISTANCE": "0",
            "LOG_LEVEL": "WARNING",
            "FEED_API_URL": "https://feed.example/api",
            "USER_AGENT": "agent/1.0",
            "DOWNLOAD_DIR": "/srv/images",
        }
        with patch.dict(os.environ, env):
            config = load_config_from_env()

        self.assertEqual(config.crawler.max_parallelism, 12)
        self.assertEqual(config.dedup.max_hamming_distance, 0)
        self.assertEqual(config.log.log_level, "WARNING")
        self.assertEqual(config.feed.api_url, "https://feed.example/api")
        self.assertEqual(config.crawler.user_agent, "agent/1.0")
        self.assertEqual(config.image.download_dir, Path("/srv/images"))


if __name__ == '__main__':
    unittest.main()
