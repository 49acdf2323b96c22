"""
命令行入口

用法:
    python -m aimanga list
    python -m aimanga new "Demo" --style Shounen
    python -m aimanga add-panel <project_id> "hero landing"
    python -m aimanga generate <project_id> [--provider openai]
    python -m aimanga delete <project_id>
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from .core.config import settings
from .core.logging_config import log_startup_info, setup_exception_hook, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aimanga", description=f"{settings.app_name} 生成核心")
    parser.add_argument("-v", "--verbose", action="store_true", help="在控制台输出调试日志")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="列出所有项目")

    new = sub.add_parser("new", help="创建项目")
    new.add_argument("title")
    new.add_argument("--style", default=None, help="预设风格名称（Shounen / Shoujo）")

    add = sub.add_parser("add-panel", help="追加画格")
    add.add_argument("project_id")
    add.add_argument("prompt")

    gen = sub.add_parser("generate", help="生成项目中尚无图片的画格")
    gen.add_argument("project_id")
    gen.add_argument("--provider", default=None, help="供应商类型")

    delete = sub.add_parser("delete", help="删除项目")
    delete.add_argument("project_id")
    return parser


async def run(args: argparse.Namespace) -> int:
    # 延迟导入，确保日志配置先于各模块 logger 生效
    from .models import GenerationStatusType, MangaStyle
    from .repositories import LocalMangaRepository
    from .services.api_client import APIClient
    from .services.manga_editor import MangaEditorService
    from .services.project_manager import ProjectManagerService

    repository = LocalMangaRepository()
    manager = ProjectManagerService(repository)

    try:
        if args.command == "list":
            for manga in await manager.load_projects():
                print(f"{manga.id}  {manga.title}  panels={manga.panel_count}  modified={manga.modified_date:%Y-%m-%d %H:%M}")

        elif args.command == "new":
            style = MangaStyle.by_name(args.style) if args.style else None
            if args.style and style is None:
                print(f"未知风格: {args.style}", file=sys.stderr)
                return 2
            manga = await manager.create_project(args.title, style)
            if manga is not None:
                print(manga.id)

        elif args.command == "delete":
            await manager.delete_project(args.project_id)

        else:
            manga = await manager.open_project(args.project_id)
            if manga is None:
                print(manager.error.description, file=sys.stderr)
                return 1
            editor = MangaEditorService(manga, repository)

            if args.command == "add-panel":
                panel = editor.add_panel(prompt=args.prompt)
                print(panel.id)
            else:
                if args.provider and not editor.set_provider(args.provider):
                    print(editor.error.description, file=sys.stderr)
                    return 1
                targets = [
                    p.id for p in manga.panels
                    if p.generation_status.type != GenerationStatusType.CACHED
                ]
                await editor.generate_batch(targets)
                for panel in manga.panels:
                    print(f"#{panel.order}  {panel.generation_status}")

            saved = await editor.save()
            await editor.close()
            if not saved:
                print(editor.error.description, file=sys.stderr)
                return 1

        if manager.error is not None:
            print(manager.error.description, file=sys.stderr)
            return 1
        return 0
    finally:
        await APIClient.get_instance().close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    setup_exception_hook()
    log_startup_info()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
