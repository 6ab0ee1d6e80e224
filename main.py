"""
TravelMaster - Agentic travel-planning assistant

Main entry point for the TravelMaster command line.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

EXIT_COMMANDS = {"exit", "quit", "q", "退出"}
NEW_TOPIC_COMMANDS = {"/new", "新话题"}


def setup_logging(level: str = "INFO", log_file: Optional[str] = "logs/travelmaster.log"):
    """Configure logging."""
    # Remove default handler
    logger.remove()

    # Console handler
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )

    # File handler
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
            compression="zip",
        )


def render_response(response) -> None:
    """Print one AppResponse."""
    if not response.success:
        console.print(Panel(response.error or "未知错误", title="请求失败", border_style="red"))
        return

    title = {
        "complex_planning": "旅行规划",
        "single_query": f"查询结果（{response.worker}）",
        "casual_chat": "TravelMaster",
    }.get(response.intent.value, "TravelMaster")
    console.print(Panel(response.output, title=title, border_style="green"))

    if response.flow_result is not None:
        table = Table(title="任务执行情况")
        table.add_column("任务")
        table.add_column("执行者")
        table.add_column("状态")
        for task in response.flow_result.metadata.get("tasks", []):
            table.add_row(task["description"], task["assigned_worker"], task["status"])
        console.print(table)


def render_usage(app) -> None:
    snapshot = app.usage()
    console.print(
        f"[dim]模型调用 {snapshot.request_count} 次，成功率 {snapshot.success_rate:.0%}，"
        f"tokens {snapshot.total_tokens}，费用约 ${snapshot.total_cost:.4f}[/dim]"
    )


async def main(request: Optional[str], config_path: Optional[str], debug: bool) -> int:
    """Main entry point."""
    from travelmaster.core.app import TravelMasterApp

    app = TravelMasterApp(config_path)
    await app.config.load()

    level = "DEBUG" if debug or app.config.get("app.debug") else app.config.get("logging.level", "INFO")
    setup_logging(level, app.config.get("logging.file"))

    logger.info("=" * 50)
    logger.info("TravelMaster - Travel Planning Assistant")
    logger.info("=" * 50)

    try:
        await app.startup()

        if request:
            render_response(await app.handle(request))
            render_usage(app)
            return 0

        console.print("[bold cyan]TravelMaster[/bold cyan] 已就绪，输入 exit 退出，/new 开始新话题。")
        while True:
            try:
                text = console.input("[bold]你> [/bold]").strip()
            except EOFError:
                break
            if not text:
                continue
            if text.lower() in EXIT_COMMANDS:
                break
            if text in NEW_TOPIC_COMMANDS:
                app.new_topic()
                console.print("[dim]已开始新话题[/dim]")
                continue
            render_response(await app.handle(text))

        render_usage(app)
        return 0

    except KeyboardInterrupt:
        logger.info("Shutdown requested via keyboard")
        return 0
    finally:
        await app.shutdown()


def cli():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="TravelMaster - Agentic travel-planning assistant"
    )
    parser.add_argument(
        "request",
        nargs="?",
        help="Request to answer; starts an interactive session when omitted"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="Path to configuration file"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="TravelMaster 0.1.0"
    )

    args = parser.parse_args()
    load_dotenv()

    try:
        sys.exit(asyncio.run(main(args.request, args.config, args.debug)))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
