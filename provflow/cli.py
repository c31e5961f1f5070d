"""
CLI エントリポイント — Typer ベースのコマンドラインインターフェース

provflow コマンドとして以下のサブコマンドを提供する:
  - run: フロー実行（結果は標準出力に `<KEY>=<value>` で出力）
  - flows: 同梱フロー一覧
  - steps: ステップ語彙一覧
  - check-creds: 認証情報の事前確認（値は表示しない）
  - lint: フロー定義の静的解析

標準出力は結果の行専用とし、ログは全て標準エラー出力に出す。
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import typer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Typer アプリ定義
# ---------------------------------------------------------------------------

app = typer.Typer(
    help=(
        "provflow — SaaS アカウントのプロビジョニングフロー実行ツール\n\n"
        "基本の流れ:\n"
        "  1. provflow check-creds github    認証情報を確認\n"
        "  2. provflow run github-token      フローを実行（GITHUB_TOKEN=... を出力）\n\n"
        "詳しくは各コマンドに --help を付けてください。"
    ),
    no_args_is_help=True,
)


def _configure_logging(verbose: bool = False) -> None:
    """ログを標準エラー出力に設定する。"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s - %(message)s",
        stream=sys.stderr,
    )


def _is_path(ref: str) -> bool:
    return ref.endswith((".yaml", ".yml")) or Path(ref).is_file()


def _load_flow(ref: str, *, require_terminal: bool = True):
    """フロー名または YAML ファイルパスからフロー定義を読み込む。"""
    from .dsl.parser import FlowParser
    from .flows import FRAGMENTS_DIR, load_flow

    if _is_path(ref):
        parser = FlowParser(fragments_dir=FRAGMENTS_DIR)
        return parser.load(Path(ref), require_terminal=require_terminal)
    return load_flow(ref, require_terminal=require_terminal)


def _open_store(secrets_file: Path):
    """認証情報ファイルがあればそれを、なければ環境変数を使う。"""
    from .core.credentials import SecretStore

    if secrets_file.exists():
        return SecretStore.from_file(secrets_file)
    logger.info("認証情報ファイル %s がないため環境変数から読み込みます", secrets_file)
    return SecretStore.from_environ()


def _parse_vars(pairs: Optional[list[str]]) -> dict[str, str]:
    """--var KEY=VALUE の一覧を辞書に変換する。"""
    result: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"KEY=VALUE 形式で指定してください: {pair}", param_hint="--var")
        result[key] = value
    return result


# ---------------------------------------------------------------------------
# run コマンド
# ---------------------------------------------------------------------------

@app.command()
def run(
    flow_ref: str = typer.Argument(..., metavar="FLOW", help="フロー名（provflow flows で一覧）または YAML ファイル"),
    secrets: Optional[Path] = typer.Option(None, "--secrets", "-s", help="認証情報ファイル（KEY=VALUE 形式）"),
    headless: bool = typer.Option(False, "--headless", help="ヘッドレスで起動する（CI 用。ボット検知されやすい）"),
    visible: bool = typer.Option(False, "--visible", help="ウィンドウを画面内に表示する"),
    timeout: Optional[int] = typer.Option(None, "--timeout", help="要素解決の全体タイムアウト（ミリ秒）"),
    step_timeout: Optional[int] = typer.Option(None, "--step-timeout", help="各ステップのタイムアウト（ミリ秒）。0 で無制限"),
    human_wait: Optional[int] = typer.Option(None, "--human-wait", help="人間の操作を待つ上限（ミリ秒）。0 で待たずに停止"),
    slow_mo: Optional[int] = typer.Option(None, "--slow-mo", help="各操作間の遅延（ミリ秒）"),
    var: Optional[list[str]] = typer.Option(None, "--var", help="フロー変数の上書き（KEY=VALUE、複数指定可）"),
    report_json: Optional[Path] = typer.Option(None, "--report-json", help="JSON 実行レポートの出力先"),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="デバッグログを出力する"),
) -> None:
    """フローを実行し、結果を `<KEY>=<value>` 形式で標準出力に書く。"""
    import asyncio

    from .config import apply_overrides, load_config_from_env
    from .core.errors import ProvflowError
    from .core.reporting import OutcomeReporter
    from .core.runner import run_flow

    _configure_logging(verbose)

    config = apply_overrides(
        load_config_from_env(),
        secrets_file=secrets,
        headless=True if headless else None,
        offscreen=False if visible else None,
        timeout=timeout,
        step_timeout=step_timeout,
        human_wait=human_wait,
        slow_mo=slow_mo,
    )
    overrides = _parse_vars(var)

    try:
        flow = _load_flow(flow_ref)
    except (ProvflowError, FileNotFoundError) as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=1)

    store = _open_store(config.secrets_file)
    result = asyncio.run(run_flow(flow, store, config, vars=overrides))

    reporter = OutcomeReporter()
    if report_json is not None:
        reporter.generate_json(result, report_json)

    exit_code = reporter.emit(reporter.render(result.outcome, flow.report))
    if exit_code:
        raise typer.Exit(code=exit_code)


# ---------------------------------------------------------------------------
# flows コマンド
# ---------------------------------------------------------------------------

@app.command()
def flows() -> None:
    """同梱フローの一覧を表示する。"""
    from .core.errors import ProvflowError
    from .flows import list_flows, load_flow

    _configure_logging()

    names = list_flows()
    for name in names:
        try:
            flow = load_flow(name)
        except ProvflowError as exc:
            typer.echo(f"  {name:18s} (読み込みエラー: {exc})", err=True)
            continue
        typer.echo(f"  {name:18s} {flow.service:10s} {flow.report.key:24s} {flow.title}")

    typer.echo(f"\n合計: {len(names)} フロー")


# ---------------------------------------------------------------------------
# steps コマンド
# ---------------------------------------------------------------------------

@app.command()
def steps() -> None:
    """フロー DSL で使用できるステップの一覧を表示する。"""
    from .steps import BRANCH_STEP_INFO, create_default_registry

    registry = create_default_registry()
    all_steps = registry.list_all() + [BRANCH_STEP_INFO]

    # カテゴリごとにグループ化して表示
    categories: dict[str, list] = {}
    for info in all_steps:
        categories.setdefault(info.category, []).append(info)

    for category, infos in sorted(categories.items()):
        typer.echo(f"\n[{category}]")
        for info in sorted(infos, key=lambda i: i.name):
            typer.echo(f"  {info.name:16s} {info.description}")

    typer.echo(f"\n合計: {len(all_steps)} ステップ")


# ---------------------------------------------------------------------------
# check-creds コマンド
# ---------------------------------------------------------------------------

@app.command("check-creds")
def check_creds(
    service: str = typer.Argument(..., help="サービス ID（supabase / github）"),
    secrets: Optional[Path] = typer.Option(None, "--secrets", "-s", help="認証情報ファイル（KEY=VALUE 形式）"),
) -> None:
    """サービスの必須認証情報が揃っているかを確認する（値は表示しない）。"""
    from .config import apply_overrides, load_config_from_env
    from .core.credentials import REQUIRED_KEYS
    from .core.errors import ProvflowError

    _configure_logging()

    config = apply_overrides(load_config_from_env(), secrets_file=secrets)
    store = _open_store(config.secrets_file)

    try:
        store.load(service)
    except ProvflowError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"✓ {service}: {', '.join(REQUIRED_KEYS[service])}")


# ---------------------------------------------------------------------------
# lint コマンド
# ---------------------------------------------------------------------------

@app.command()
def lint(
    targets: Optional[list[str]] = typer.Argument(None, metavar="[FILE|FLOW]...", help="対象（省略時は同梱フロー全て）"),
) -> None:
    """フロー定義の静的解析（Lint）を実行する。"""
    from .core.errors import ProvflowError
    from .dsl.linter import FlowLinter, LintSeverity
    from .flows import list_flows

    _configure_logging()

    linter = FlowLinter()
    failed = False

    for ref in targets or list_flows():
        try:
            flow = _load_flow(ref, require_terminal=False)
        except (ProvflowError, FileNotFoundError) as exc:
            typer.echo(f"✗ {ref}: {exc}", err=True)
            failed = True
            continue

        issues = linter.lint(flow)
        if not issues:
            typer.echo(f"✓ {ref}: lint 問題なし")
            continue

        for issue in issues:
            location = f"{issue.path} " if issue.path else ""
            typer.echo(
                f"[{issue.severity.value}] {ref} {location}({issue.step_name}): {issue.message}"
            )
        # warning/error がある場合は終了コード 1
        if any(i.severity in (LintSeverity.ERROR, LintSeverity.WARNING) for i in issues):
            failed = True

    if failed:
        raise typer.Exit(code=1)
