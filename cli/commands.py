"""
CLI命令定义（argparse）
"""
import argparse
from pathlib import Path

ALL_OWNERS = "all"


def create_parser() -> argparse.ArgumentParser:
    """
    创建命令行参数解析器

    Returns:
        ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog='spider.py',
        description='用户图片订阅源爬虫（增量下载 + 去重）',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
示例:
  # 下载一个或多个用户的图片（已下载过的用户从检查点继续）
  python spider.py download alice bob

  # 更新下载目录中所有已有检查点的用户
  python spider.py download all

  # 指定配置文件 / 覆盖部分配置
  python spider.py download alice --config-file appsettings.json --max-parallelism 16
  python spider.py download alice --max-hamming-distance 0

  # 查看 / 清除检查点
  python spider.py checkpoint-status --owner alice
  python spider.py checkpoint-status --owner alice --clear
        '''
    )

    subparsers = parser.add_subparsers(dest='command', help='子命令', required=True)

    # ============================================================================
    # 子命令: download - 下载用户图片
    # ============================================================================
    parser_download = subparsers.add_parser('download', help=f'下载用户图片；传入 "{ALL_OWNERS}" 更新所有已有检查点的用户')
    parser_download.add_argument('owners', nargs='+', help=f'用户名列表，或单个 "{ALL_OWNERS}"')
    parser_download.add_argument('--config-file', type=Path, default=None,
                                 help='JSON 配置文件（默认从环境变量加载）')
    parser_download.add_argument('--download-dir', type=Path, default=None,
                                 help='下载目录（覆盖配置）')
    parser_download.add_argument('--max-parallelism', type=int, default=None,
                                 help='每页并发数（覆盖配置）')
    parser_download.add_argument('--max-hamming-distance', type=int, default=None,
                                 help='近似重复阈值，0 表示关闭近似判重（覆盖配置）')
    parser_download.add_argument('--no-progress', dest='show_progress', action='store_false',
                                 default=None, help='不显示进度条')

    # ============================================================================
    # 子命令: checkpoint-status - 查看检查点状态
    # ============================================================================
    parser_checkpoint = subparsers.add_parser('checkpoint-status', help='查看检查点状态')
    parser_checkpoint.add_argument('--owner', type=str, required=True, help='用户名')
    parser_checkpoint.add_argument('--config-file', type=Path, default=None, help='JSON 配置文件')
    parser_checkpoint.add_argument('--download-dir', type=Path, default=None, help='下载目录')
    parser_checkpoint.add_argument('--clear', action='store_true', help='清除检查点')

    return parser
