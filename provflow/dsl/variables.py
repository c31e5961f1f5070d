"""
変数展開エンジン — ${creds.X} / ${vars.X} / ${env.X} の遅延評価展開

ステップ実行の直前に値を展開する（フロー読み込み時には展開しない）。
認証情報はフロー定義や StepResult に平文で残らない。

サポートする構文:
  - ${creds.X} → 読み込み済み Credential のフィールド（email, password 等）
  - ${vars.X}  → フロー変数（CLI の --var で上書き可能）
  - ${env.X}   → 環境変数

展開した認証情報と、抽出した秘密値は mask() で *** に置換できる。
"""

from __future__ import annotations

import re
from typing import Mapping


_VAR_PATTERN = re.compile(r"\$\{(creds|vars|env)\.([a-zA-Z_][a-zA-Z0-9_]*)\}")

# 展開後に残っている未解決の ${...} パターン
_UNRESOLVED_PATTERN = re.compile(r"\$\{[^}]+\}")

_MASK = "***"


class VariableNotFoundError(Exception):
    """未定義の変数が参照された場合に送出される例外。

    Attributes:
        namespace: 変数の名前空間（"creds" / "vars" / "env"）
        var_name: 参照された変数名
    """

    def __init__(self, namespace: str, var_name: str) -> None:
        self.namespace = namespace
        self.var_name = var_name
        super().__init__(
            f"未定義の変数が参照されました: ${{{namespace}.{var_name}}}"
        )


class VariableExpander:
    """テキスト内の変数参照を展開するエンジン。"""

    def __init__(
        self,
        creds: Mapping[str, str],
        vars: Mapping[str, str],
        env: Mapping[str, str] | None = None,
    ) -> None:
        """変数展開エンジンを初期化する。

        Args:
            creds: 認証情報フィールド（Credential.fields）
            vars: フロー変数
            env: 環境変数辞書（テスタビリティのため直接渡す）
        """
        self._namespaces: dict[str, dict[str, str]] = {
            "creds": dict(creds),
            "vars": dict(vars),
            "env": dict(env or {}),
        }
        self._secrets: set[str] = {v for v in creds.values() if v}

    def expand(self, text: str) -> str:
        """テキスト内の変数参照を展開する。

        Raises:
            VariableNotFoundError: 未定義の変数、またはテンプレートに解釈できない ${...} がある場合
        """
        # 未解決の参照はテンプレート側だけで判定する（展開後の値は検査しない）
        unresolved = _UNRESOLVED_PATTERN.search(_VAR_PATTERN.sub("", text))
        if unresolved:
            raise VariableNotFoundError("unknown", unresolved.group())

        return _VAR_PATTERN.sub(self._replace_match, text)

    def add_secret(self, value: str) -> None:
        """マスク対象の値を追加する（抽出した秘密値など）。"""
        if value:
            self._secrets.add(value)

    def mask(self, text: str) -> str:
        """テキスト中の秘密値を *** に置換する。

        長い値から順に置換し、部分一致による取りこぼしを防ぐ。
        """
        result = text
        for secret in sorted(self._secrets, key=len, reverse=True):
            result = result.replace(secret, _MASK)
        return result

    @property
    def vars(self) -> dict[str, str]:
        """フロー変数辞書の読み取り専用コピーを返す。"""
        return dict(self._namespaces["vars"])

    def _replace_match(self, match: re.Match) -> str:
        namespace, var_name = match.group(1), match.group(2)
        values = self._namespaces[namespace]
        if var_name not in values:
            raise VariableNotFoundError(namespace, var_name)
        return values[var_name]
