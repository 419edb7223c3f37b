# spider.py entry point tests
import asyncio
import io
import unittest
from contextlib import redirect_stderr, redirect_stdout

from spider import main


class TestMain(unittest.TestCase):
    def test_no_args_prints_help(self):
        output = io.StringIO()
        with redirect_stdout(output):
            code = asyncio.run(main([]))
        self.assertEqual(code, 0)
        self.assertIn("download", output.getvalue())

    def test_invalid_config_exits_with_error(self):
        errors = io.StringIO()
        with redirect_stderr(errors):
            code = asyncio.run(main(["download", "alice", "--max-parallelism", "0"]))
        self.assertEqual(code, 2)
        self.assertIn("配置无效", errors.getvalue())

    def test_missing_config_file(self):
        with redirect_stderr(io.StringIO()):
            code = asyncio.run(main(["download", "alice", "--config-file", "/nonexistent/settings.json"]))
        self.assertEqual(code, 2)


if __name__ == '__main__':
    unittest.main()
