"""
DSL パーサー — YAML フロー定義の読み込み・検証

ruamel.yaml で YAML を読み込み、include ディレクティブを展開してから
Pydantic の FlowDefinition モデルに変換する。

include:
  `- include: github-login` は fragments/github-login.yaml（ステップ配列）を
  その位置に展開する。branch の then / else 内でも使用できる。
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from ..core.errors import FlowDefinitionError
from .schema import FlowDefinition

_MAX_INCLUDE_DEPTH = 8


@dataclass
class DslValidationError:
    """フロー定義の検証で検出されたエラー。

    Attributes:
        message: エラーメッセージ
        location: エラー箇所（フィールドパス等）
        line: YAML ファイル内の行番号（取得可能な場合）
    """

    message: str
    location: str = ""
    line: Optional[int] = None


class FlowParser:
    """YAML フロー定義の読み込みと検証を担当するパーサー。"""

    def __init__(self, fragments_dir: Optional[Path] = None) -> None:
        """パーサーを初期化する。

        Args:
            fragments_dir: include で参照するフラグメントのディレクトリ
        """
        self._yaml = YAML()
        self._yaml.preserve_quotes = True
        self._fragments_dir = fragments_dir

    # ----- load -----

    def load(self, path: Path, *, require_terminal: bool = True) -> FlowDefinition:
        """YAML ファイルを読み込み、FlowDefinition に変換する。

        Args:
            path: フロー定義ファイルのパス
            require_terminal: False の場合は終端到達性の検証を省略する（lint 用）

        Raises:
            FileNotFoundError: ファイルが存在しない場合
            FlowDefinitionError: YAML 構文・include・スキーマのいずれかが不正な場合
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"フロー定義が見つかりません: {path}")

        data = self._read(path)
        if not isinstance(data, dict):
            raise FlowDefinitionError(f"フロー定義のルートはマッピングである必要があります: {path}")

        return self.build(data, source=str(path), require_terminal=require_terminal)

    def build(
        self, data: dict, source: str = "<dict>", *, require_terminal: bool = True,
    ) -> FlowDefinition:
        """辞書データから FlowDefinition を構築する（include 展開込み）。"""
        resolved = dict(data)
        resolved["steps"] = self._resolve_includes(data.get("steps", []), depth=0)
        try:
            return FlowDefinition.model_validate(
                resolved, context={"allow_open": not require_terminal},
            )
        except PydanticValidationError as e:
            raise FlowDefinitionError(f"スキーマ検証エラー ({source}): {e}") from e

    # ----- validate -----

    def validate(self, path: Path) -> list[DslValidationError]:
        """フロー定義を検証し、違反箇所を報告する。

        エラーがない場合は空リストを返す。
        """
        path = Path(path)
        if not path.exists():
            return [DslValidationError(
                message=f"フロー定義が見つかりません: {path}",
                location="file",
            )]

        try:
            data = self._read(path)
        except FlowDefinitionError as e:
            cause = e.__cause__
            line = None
            mark = getattr(cause, "problem_mark", None)
            if mark is not None:
                line = mark.line + 1
            return [DslValidationError(message=str(e), location="yaml", line=line)]

        if not isinstance(data, dict):
            return [DslValidationError(
                message="フロー定義のルートはマッピングである必要があります",
                location="file",
            )]

        try:
            resolved = dict(data)
            resolved["steps"] = self._resolve_includes(data.get("steps", []), depth=0)
        except FlowDefinitionError as e:
            return [DslValidationError(message=str(e), location="include")]

        errors: list[DslValidationError] = []
        try:
            FlowDefinition(**resolved)
        except PydanticValidationError as e:
            for err in e.errors():
                loc_parts = [str(part) for part in err.get("loc", [])]
                errors.append(DslValidationError(
                    message=err.get("msg", "不明なエラー"),
                    location=" -> ".join(loc_parts) if loc_parts else "unknown",
                ))
        return errors

    # ----- 内部ヘルパー -----

    def _read(self, path: Path) -> object:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = self._yaml.load(f)
        except YAMLError as e:
            line_info = ""
            mark = getattr(e, "problem_mark", None)
            if mark is not None:
                line_info = f" (行 {mark.line + 1}, 列 {mark.column + 1})"
            raise FlowDefinitionError(f"YAML 構文エラー{line_info}: {e}") from e

        if data is None:
            raise FlowDefinitionError(f"YAML ファイルが空です: {path}")
        return self._to_plain(data)

    def _to_plain(self, data: object) -> object:
        """ruamel.yaml の CommentedMap/CommentedSeq を通常の dict/list に再帰変換する。"""
        if isinstance(data, dict):
            return {str(key): self._to_plain(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self._to_plain(item) for item in data]
        if isinstance(data, str):
            # ScalarString（引用符保持）を通常の str に戻す
            return str(data)
        return data

    def _resolve_includes(self, steps: object, depth: int) -> list:
        """include ディレクティブを再帰的に展開する。"""
        if not isinstance(steps, list):
            # 型エラーはスキーマ検証に任せる
            return steps  # type: ignore[return-value]
        if depth > _MAX_INCLUDE_DEPTH:
            raise FlowDefinitionError("include のネストが深すぎます（循環参照の可能性）")

        result: list = []
        for step in steps:
            if isinstance(step, dict) and set(step) == {"include"}:
                result.extend(self._resolve_includes(self._load_fragment(step["include"]), depth + 1))
                continue
            if isinstance(step, dict) and "branch" in step:
                step = dict(step)
                for arm in ("then", "else"):
                    if arm in step:
                        step[arm] = self._resolve_includes(step[arm], depth + 1)
            result.append(step)
        return result

    def _load_fragment(self, name: object) -> list:
        if self._fragments_dir is None:
            raise FlowDefinitionError(f"フラグメントディレクトリが未設定のため include できません: {name}")
        path = self._fragments_dir / f"{name}.yaml"
        if not path.exists():
            raise FlowDefinitionError(f"include 先のフラグメントが見つかりません: {path}")
        data = self._read(path)
        if not isinstance(data, list):
            raise FlowDefinitionError(f"フラグメントはステップ配列である必要があります: {path}")
        return data
