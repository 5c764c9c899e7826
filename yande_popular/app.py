"""Typer CLI entrypoint for yande-popular."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

from .config import RETENTION_WINDOW, ConfigLocator, ConfigRepository, ForwarderKind, Settings
from .engine import DedupStore, ListingFetcher, ListingParser, Transcoder, build_client
from .errors import DeliveryError, StoreError
from .forwarder import BaseForwarder, build_forwarder
from .infra import SQLiteManager
from .logging_conf import configure_logging
from .orchestrator import CycleReport, Orchestrator, purge_scratch
from .scheduler import PollScheduler

app = typer.Typer(
    help="yande.re 热门图片转发机器人",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class CliOptions:
    data_dir: Path
    config_path: Path | None
    verbose: bool


@dataclass
class AppState:
    settings: Settings
    locator: ConfigLocator
    store: DedupStore
    fetcher: ListingFetcher
    forwarder: BaseForwarder
    orchestrator: Orchestrator
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    async def aclose(self) -> None:
        await self.forwarder.close()
        await self.fetcher.close()
        self.store.manager.close_all()


ForwarderOpt = Annotated[
    Optional[ForwarderKind], typer.Option("--forwarder", "-f", envvar="FORWARDER", help="转发后端：voce 或 matrix。")
]
ChannelOpt = Annotated[
    Optional[str], typer.Option("--channel-id", "-c", envvar="CHANNEL_ID", help="发送到的频道ID。")
]
ApiKeyOpt = Annotated[Optional[str], typer.Option("--api-key", "-a", envvar="API_KEY", help="机器人API_KEY。")]
ServerOpt = Annotated[
    Optional[str], typer.Option("--server-domain", "-s", envvar="SERVER_DOMAIN", help="服务器域名。")
]
HomeserverOpt = Annotated[
    Optional[str], typer.Option("--homeserver-url", envvar="HOME_SERVER_URL", help="Matrix 服务器地址。")
]
UserOpt = Annotated[Optional[str], typer.Option("--user", envvar="MATRIX_USER", help="Matrix 用户名。")]
PasswordOpt = Annotated[
    Optional[str], typer.Option("--password", envvar="MATRIX_PASSWORD", help="Matrix 密码。")
]
RoomOpt = Annotated[Optional[str], typer.Option("--room-id", envvar="ROOM_ID", help="Matrix 房间ID。")]
ThreadOpt = Annotated[
    Optional[int], typer.Option("--thread", "-t", envvar="THREAD", help="并发处理的图片组数量，默认为4。")
]


def _collect_overrides(options: CliOptions, **values: Any) -> dict[str, Any]:
    return {
        "forwarder": values.get("forwarder"),
        "channel_id": values.get("channel_id"),
        "api_key": values.get("api_key"),
        "server_domain": values.get("server_domain"),
        "homeserver_url": values.get("homeserver_url"),
        "user": values.get("user"),
        "password": values.get("password"),
        "room_id": values.get("room_id"),
        "concurrency": values.get("thread"),
        "data_dir": options.data_dir,
    }


def load_settings(options: CliOptions, **values: Any) -> Settings:
    repository = ConfigRepository(options.config_path)
    try:
        return repository.load_settings(_collect_overrides(options, **values))
    except (ValidationError, ValueError, FileNotFoundError) as exc:
        console.print(f"配置无效：{exc}", style="red", markup=False)
        raise typer.Exit(code=2) from exc


def open_store(data_dir: Path) -> DedupStore:
    locator = ConfigLocator(data_dir)
    return DedupStore(SQLiteManager(), locator.history_path())


def build_state(settings: Settings, verbose: bool) -> AppState:
    locator = ConfigLocator(settings.data_dir)
    try:
        locator.ensure_directories()
    except OSError as exc:
        console.print(f"无法创建数据目录 {settings.data_dir}：{exc}", style="red", markup=False)
        raise typer.Exit(code=1) from exc
    logger = configure_logging(verbose=verbose, log_dir=locator.logs_dir)
    purged = purge_scratch(locator.tmp_dir)
    if purged:
        logger.info("scratch_purged", count=purged)

    store = DedupStore(SQLiteManager(), locator.history_path())
    client = build_client(settings.user_agent, settings.request_timeout)
    fetcher = ListingFetcher(client, settings.site_url)
    parser = ListingParser(fetcher)
    transcoder = Transcoder(client)
    forwarder = build_forwarder(settings, locator)
    stop_event = asyncio.Event()
    orchestrator = Orchestrator(
        fetcher,
        parser,
        store,
        transcoder,
        forwarder,
        locator.tmp_dir,
        primary_listing=settings.primary_listing,
        auxiliary_listings=settings.auxiliary_listings,
        concurrency=settings.concurrency,
        stop_event=stop_event,
    )
    return AppState(
        settings=settings,
        locator=locator,
        store=store,
        fetcher=fetcher,
        forwarder=forwarder,
        orchestrator=orchestrator,
        stop_event=stop_event,
    )


async def serve(state: AppState) -> None:
    try:
        await state.forwarder.start()
        scheduler = PollScheduler(state.orchestrator, state.stop_event)
        scheduler.install_signal_handlers()
        await scheduler.run_until_stopped()
    finally:
        await state.aclose()


async def run_single_cycle(state: AppState) -> CycleReport:
    try:
        await state.forwarder.start()
        return await state.orchestrator.run_cycle()
    finally:
        await state.aclose()


def _render_report(report: CycleReport) -> Table:
    table = Table(title="运行结果", box=box.SIMPLE_HEAD)
    table.add_column("指标")
    table.add_column("数值", justify="right")
    labels = {
        "candidates": "候选",
        "resolved": "已解析",
        "resolve_failed": "解析失败",
        "skipped_known": "已处理跳过",
        "skipped_score": "分数过低",
        "dispatched": "已转发组",
        "groups_failed": "失败组",
        "not_started": "未开始",
        "members_sent": "图片成功",
        "members_failed": "图片失败",
        "evicted": "过期清理",
    }
    for key, value in report.as_dict().items():
        if key == "aborted":
            continue
        table.add_row(labels.get(key, key), str(value))
    if report.aborted:
        table.add_row("状态", "主榜单获取失败，本轮中止")
    return table


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Annotated[
        Path, typer.Option("--data-dir", "-d", envvar="DATA_DIR", help="服务存储临时文件的目录，默认为data。")
    ] = Path("data"),
    config: Annotated[
        Optional[Path], typer.Option("--config", help="YAML/JSON 配置文件路径。")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", help="开启调试日志")] = False,
) -> None:
    ctx.obj = CliOptions(data_dir=data_dir, config_path=config, verbose=verbose)


@app.command("run", help="启动定时轮询，每小时转发一次热门图片。")
def run(
    ctx: typer.Context,
    forwarder: ForwarderOpt = None,
    channel_id: ChannelOpt = None,
    api_key: ApiKeyOpt = None,
    server_domain: ServerOpt = None,
    homeserver_url: HomeserverOpt = None,
    user: UserOpt = None,
    password: PasswordOpt = None,
    room_id: RoomOpt = None,
    thread: ThreadOpt = None,
) -> None:
    values = _locals_without_ctx(locals())
    options: CliOptions = ctx.obj
    settings = load_settings(options, **values)
    state = build_state(settings, options.verbose)
    try:
        asyncio.run(serve(state))
    except DeliveryError as exc:
        console.print(f"转发端初始化失败：{exc}", style="red", markup=False)
        raise typer.Exit(code=1) from exc
    console.print("已停止。", style="green")


@app.command("run-once", help="立即执行一轮抓取与转发。")
def run_once(
    ctx: typer.Context,
    forwarder: ForwarderOpt = None,
    channel_id: ChannelOpt = None,
    api_key: ApiKeyOpt = None,
    server_domain: ServerOpt = None,
    homeserver_url: HomeserverOpt = None,
    user: UserOpt = None,
    password: PasswordOpt = None,
    room_id: RoomOpt = None,
    thread: ThreadOpt = None,
) -> None:
    values = _locals_without_ctx(locals())
    options: CliOptions = ctx.obj
    settings = load_settings(options, **values)
    state = build_state(settings, options.verbose)
    try:
        report = asyncio.run(run_single_cycle(state))
    except DeliveryError as exc:
        console.print(f"转发端初始化失败：{exc}", style="red", markup=False)
        raise typer.Exit(code=1) from exc
    console.print(_render_report(report))
    if report.aborted:
        raise typer.Exit(code=1)


@app.command("history", help="查看最近的去重记录。")
def history(
    ctx: typer.Context,
    limit: Annotated[int, typer.Option("--limit", "-n", help="显示记录数量。")] = 20,
) -> None:
    options: CliOptions = ctx.obj
    store = open_store(options.data_dir)
    try:
        rows = store.recent(limit)
        total = store.count()
    except StoreError as exc:
        console.print(f"读取历史失败：{exc}", style="red", markup=False)
        raise typer.Exit(code=1) from exc
    finally:
        store.manager.close_all()
    if not rows:
        console.print("没有历史记录。", style="dim")
        return
    table = Table(title=f"最近 {len(rows)} 条记录（共 {total} 条）", box=box.SIMPLE_HEAD)
    table.add_column("记录时间", style="green")
    table.add_column("图片ID")
    for key, inserted_at in rows:
        table.add_row(datetime.fromtimestamp(inserted_at).isoformat(timespec="seconds"), key)
    console.print(table)


@app.command("evict", help="立即清理过期的去重记录。")
def evict(
    ctx: typer.Context,
    days: Annotated[
        float, typer.Option("--days", help="保留天数，默认为7。")
    ] = RETENTION_WINDOW.total_seconds() / 86400,
) -> None:
    options: CliOptions = ctx.obj
    store = open_store(options.data_dir)
    try:
        removed = store.evict_older_than(timedelta(days=days))
    except StoreError as exc:
        console.print(f"清理失败：{exc}", style="red", markup=False)
        raise typer.Exit(code=1) from exc
    finally:
        store.manager.close_all()
    console.print(f"已清理 {removed} 条过期记录。", style="green")


@app.command("reset", help="清空全部去重记录。")
def reset(
    ctx: typer.Context,
    yes: Annotated[bool, typer.Option("--yes", help="跳过确认提示。")] = False,
) -> None:
    options: CliOptions = ctx.obj
    if not yes and not typer.confirm("确定要清空全部去重记录？", default=False):
        console.print("已取消操作。", style="yellow")
        raise typer.Exit(code=0)
    store = open_store(options.data_dir)
    try:
        store.reset()
    except StoreError as exc:
        console.print(f"清空失败：{exc}", style="red", markup=False)
        raise typer.Exit(code=1) from exc
    finally:
        store.manager.close_all()
    console.print("去重记录已清空。", style="green")


def _locals_without_ctx(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if key != "ctx"}


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
