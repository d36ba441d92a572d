from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path
import sys

from nuget_notice.config import AppConfig, load_config
from nuget_notice.index_client import IndexAuth
from nuget_notice.output import Output


def build_parser() -> argparse.ArgumentParser:
    """
    构建 nuget-notice 的命令行参数解析器。
    """
    parser = argparse.ArgumentParser(prog="nuget-notice")
    parser.add_argument(
        "--version",
        action="store_true",
        help="输出版本号并退出",
    )
    parser.add_argument("--config", help="配置文件路径（.toml 或 .yaml）")
    parser.add_argument("-i", "--input", help="解决方案文件路径（.sln 或 .slnx）")
    parser.add_argument("-o", "--output", help="输出文件（默认：解决方案目录下的 Notice.txt）")
    parser.add_argument(
        "-e",
        "--exclude",
        action="append",
        default=[],
        help="排除包 id 的正则表达式（不区分大小写，可重复）",
    )
    parser.add_argument("--source", action="append", default=[], help="包源 URL 或本地目录（可重复，替换 NuGet.Config）")
    parser.add_argument("--recursive", action="store_true", help="总是展开依赖，而不只是缺少项目地址的包")
    parser.add_argument("--offline", action="store_true", help="只使用全局包目录，不访问网络")
    parser.add_argument("--always-report", action="store_true", help="缺少项目地址的包也写入报告")
    parser.add_argument("--max-concurrency", type=int, help="最大并发加载数")
    parser.add_argument("--no-cache", action="store_true", help="禁用许可证文本缓存")
    parser.add_argument("--bearer-token", help="私有源 Bearer Token（谨慎使用）")
    parser.add_argument("--basic-username", help="私有源 Basic 用户名（谨慎使用）")
    parser.add_argument("--basic-password", help="私有源 Basic 密码（谨慎使用）")
    return parser


def _merge_cli_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    """
    将 CLI 参数覆盖合并到 AppConfig。
    """
    auth: IndexAuth | None = cfg.auth
    if args.bearer_token or args.basic_username or args.basic_password:
        auth = IndexAuth(
            bearer_token=args.bearer_token,
            basic_username=args.basic_username,
            basic_password=args.basic_password,
        )

    return replace(
        cfg,
        sources=tuple(args.source or cfg.sources),
        exclude=tuple([*cfg.exclude, *(args.exclude or [])]),
        recursive=cfg.recursive or bool(args.recursive),
        offline=cfg.offline or bool(args.offline),
        always_report=cfg.always_report or bool(args.always_report),
        max_concurrency=cfg.max_concurrency if args.max_concurrency is None else int(args.max_concurrency),
        use_license_cache=cfg.use_license_cache and not bool(args.no_cache),
        auth=auth,
    )


def main(argv: list[str] | None = None) -> int:
    """
    nuget-notice 命令行入口。
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from nuget_notice import __version__

        print(__version__)
        return 0

    if not args.input:
        parser.print_usage(sys.stderr)
        print("nuget-notice: 缺少 --input 参数", file=sys.stderr)
        return 2

    output = Output()
    try:
        cfg = _merge_cli_overrides(load_config(args.config), args)
        if cfg.max_concurrency < 1:
            raise ValueError("--max-concurrency must be at least 1")

        from nuget_notice.app import run_build

        return run_build(Path(args.input), output_path=args.output, config=cfg, output=output)
    except Exception as exc:
        output.error(f"Execution failed: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
