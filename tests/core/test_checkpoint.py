"""
CheckpointManager 单元测试（使用临时目录）
"""
import json
import shutil
import tempfile
import unittest
from pathlib import Path

from core.checkpoint import Checkpoint, CheckpointManager, list_checkpointed_owners
from core.exceptions import CheckpointError


class TestCheckpoint(unittest.TestCase):
    """Checkpoint 模型测试"""

    def test_defaults(self):
        """空检查点"""
        checkpoint = Checkpoint()
        self.assertEqual(checkpoint.cursor, 0)
        self.assertEqual(checkpoint.exact_hashes, set())
        self.assertEqual(checkpoint.duplicate_count, 0)

    def test_json_keeps_64_bit_hashes(self):
        """64 位哈希序列化后不丢精度"""
        big = 2 ** 64 - 1
        checkpoint = Checkpoint(cursor=5, perceptual_hashes={big, 3}, exact_hashes={2 ** 32 - 1})
        restored = Checkpoint.from_json(checkpoint.to_json())
        self.assertEqual(restored, checkpoint)
        self.assertIn(big, restored.perceptual_hashes)

    def test_json_is_sorted(self):
        """集合按升序输出"""
        data = json.loads(Checkpoint(exact_hashes={3, 1, 2}).to_json())
        self.assertEqual(data["exact_hashes"], [1, 2, 3])

    def test_overlapping_sets_rejected(self):
        """同一感知哈希不能既是已接受又是近似重复"""
        with self.assertRaises(ValueError):
            Checkpoint(perceptual_hashes={1}, perceptual_duplicate_hashes={1})

    def test_from_json_invalid(self):
        """非法内容抛出 CheckpointError"""
        for text in ("not json", "[1, 2]", '{"cursor": -1}', '{"exact_hashes": ["x"]}'):
            with self.subTest(text=text):
                with self.assertRaises(CheckpointError):
                    Checkpoint.from_json(text)


class TestCheckpointManager(unittest.TestCase):
    """CheckpointManager 测试类"""

    def setUp(self):
        """测试前准备"""
        self.test_dir = Path(tempfile.mkdtemp())
        self.manager = CheckpointManager("alice", download_dir=self.test_dir, filename="checkpoint.json")

    def tearDown(self):
        """测试后清理"""
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_init(self):
        """检查点位于用户目录"""
        self.assertEqual(self.manager.checkpoint_file, self.test_dir / "alice" / "checkpoint.json")
        self.assertFalse(self.manager.exists())

    def test_load_missing_returns_empty(self):
        """没有检查点时从头开始"""
        self.assertEqual(self.manager.load(), Checkpoint())

    def test_save_and_load(self):
        """保存后加载"""
        checkpoint = Checkpoint(cursor=100, exact_hashes={1}, perceptual_hashes={2},
                                perceptual_duplicate_hashes={3}, duplicate_count=4)
        self.manager.save(checkpoint)

        self.assertTrue(self.manager.exists())
        self.assertFalse(self.manager.checkpoint_file.with_name("checkpoint.json.tmp").exists())
        loaded = CheckpointManager("alice", download_dir=self.test_dir).load()
        self.assertEqual(loaded, checkpoint)

    def test_save_overwrites(self):
        """再次保存覆盖原文件"""
        self.manager.save(Checkpoint(cursor=1))
        self.manager.save(Checkpoint(cursor=2, duplicate_count=1))
        loaded = self.manager.load()
        self.assertEqual(loaded.cursor, 2)
        self.assertEqual(loaded.duplicate_count, 1)

    def test_cursor_never_moves_backwards(self):
        """游标只增不减"""
        self.manager.save(Checkpoint(cursor=10))
        written = self.manager.save(Checkpoint(cursor=5, duplicate_count=3))

        self.assertEqual(written.cursor, 10)
        self.assertEqual(written.duplicate_count, 3)
        self.assertEqual(self.manager.load().cursor, 10)

    def test_loaded_cursor_is_floor(self):
        """加载后的游标同样作为下限"""
        self.manager.save(Checkpoint(cursor=10))
        manager = CheckpointManager("alice", download_dir=self.test_dir)
        manager.load()
        self.assertEqual(manager.save(Checkpoint(cursor=3)).cursor, 10)

    def test_corrupt_checkpoint(self):
        """损坏的检查点"""
        self.manager.checkpoint_file.parent.mkdir(parents=True)
        self.manager.checkpoint_file.write_text("{broken", encoding="utf-8")
        with self.assertRaises(CheckpointError):
            self.manager.load()

    def test_clear_checkpoint(self):
        """清除检查点"""
        self.assertFalse(self.manager.clear_checkpoint())
        self.manager.save(Checkpoint(cursor=1))
        self.assertTrue(self.manager.clear_checkpoint())
        self.assertFalse(self.manager.exists())

    def test_list_checkpointed_owners(self):
        """列出带检查点的用户"""
        CheckpointManager("bob", download_dir=self.test_dir).save(Checkpoint())
        self.manager.save(Checkpoint())
        (self.test_dir / "carol").mkdir()
        (self.test_dir / "stray.txt").write_text("x")

        owners = list_checkpointed_owners(self.test_dir, "checkpoint.json")
        self.assertEqual(owners, ["alice", "bob"])

    def test_list_checkpointed_owners_missing_dir(self):
        """下载目录不存在"""
        self.assertEqual(list_checkpointed_owners(self.test_dir / "nope"), [])


if __name__ == '__main__':
    unittest.main()
