"""
実行設定 — 環境変数・CLI オプションからの設定読み込み

CLI オプション > 環境変数 > デフォルト値 の優先順位で適用される。

環境変数一覧:
  PROVFLOW_SECRETS_FILE    : 認証情報ファイル（デフォルト: .secrets）
  PROVFLOW_HEADLESS        : ヘッドレス起動（true/false, デフォルト: false）
  PROVFLOW_OFFSCREEN       : ウィンドウを画面外に配置（true/false, デフォルト: true）
  PROVFLOW_TIMEOUT_MS      : 要素解決の全体タイムアウト（デフォルト: 15000）
  PROVFLOW_STEP_TIMEOUT_MS : 各ステップのタイムアウト（デフォルト: 60000）
  PROVFLOW_HUMAN_WAIT_MS   : 人間の操作を待つ上限（デフォルト: 0 = 待たずに停止）
  PROVFLOW_SLOW_MO         : 各 Playwright 操作間の遅延（デフォルト: 0）
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

_ENV_SECRETS_FILE = "PROVFLOW_SECRETS_FILE"
_ENV_HEADLESS = "PROVFLOW_HEADLESS"
_ENV_OFFSCREEN = "PROVFLOW_OFFSCREEN"

# 整数値の環境変数 → RunConfig のフィールド名
_INT_ENV_FIELDS = {
    "PROVFLOW_TIMEOUT_MS": "timeout",
    "PROVFLOW_STEP_TIMEOUT_MS": "step_timeout",
    "PROVFLOW_HUMAN_WAIT_MS": "human_wait",
    "PROVFLOW_SLOW_MO": "slow_mo",
}


@dataclass
class RunConfig:
    """フロー実行の設定。

    Attributes:
        secrets_file: 認証情報ファイルのパス
        headless: True でヘッドレス起動（ボット検知されやすいため CI 専用）
        offscreen: True でウィンドウを画面外に配置する（headless=False 時のみ有効）
        timeout: 要素解決の全体タイムアウト（ミリ秒）
        step_timeout: 各ステップのタイムアウト（ミリ秒）。0 で無制限
        human_wait: 人間の操作を待つ上限（ミリ秒）。0 で待たずに NeedsHumanInput
        slow_mo: 各 Playwright 操作間の遅延（ミリ秒）
        viewport_width: ビューポート幅
        viewport_height: ビューポート高さ
    """

    secrets_file: Path = field(default_factory=lambda: Path(".secrets"))
    headless: bool = False
    offscreen: bool = True
    timeout: int = 15_000
    step_timeout: int = 60_000
    human_wait: int = 0
    slow_mo: int = 0
    viewport_width: int = 1280
    viewport_height: int = 800


def _parse_bool(value: str) -> bool:
    """"true", "1", "yes" → True、それ以外 → False。"""
    return value.strip().lower() in ("true", "1", "yes")


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> RunConfig:
    """環境変数から RunConfig を生成する。

    設定されていない環境変数はデフォルト値を使用する。
    不正な整数値は警告を出して無視する。
    """
    env = os.environ if environ is None else environ
    config = RunConfig()

    if _ENV_SECRETS_FILE in env:
        config.secrets_file = Path(env[_ENV_SECRETS_FILE])

    if _ENV_HEADLESS in env:
        config.headless = _parse_bool(env[_ENV_HEADLESS])

    if _ENV_OFFSCREEN in env:
        config.offscreen = _parse_bool(env[_ENV_OFFSCREEN])

    for key, attr in _INT_ENV_FIELDS.items():
        if key not in env:
            continue
        try:
            value = int(env[key])
        except ValueError:
            logger.warning("%s の値が不正です: %s", key, env[key])
            continue
        if value < 0:
            logger.warning("%s に負の値は指定できません: %s", key, value)
            continue
        setattr(config, attr, value)

    logger.debug("設定を読み込みました: %s", config)
    return config


def apply_overrides(config: RunConfig, **overrides: Any) -> RunConfig:
    """CLI オプションを適用した新しい RunConfig を返す。

    値が None のオプションは上書きしない。
    """
    given = {k: v for k, v in overrides.items() if v is not None}
    unknown = set(given) - set(RunConfig.__dataclass_fields__)
    if unknown:
        raise TypeError(f"未知の設定項目です: {', '.join(sorted(unknown))}")
    return replace(config, **given)
