"""
認証情報アダプタ — フラットな KEY=VALUE ソースからの認証情報読み込み

サービスごとに必須キーが固定されており、load() はブラウザを起動する前に
全ての必須キーが存在し空でないことを検証する。

ソース:
  - from_file(): .env 形式のファイル（python-dotenv の dotenv_values で読み込み）
  - from_environ(): プロセス環境変数
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from dotenv import dotenv_values

from .errors import MissingCredential, UnknownService

logger = logging.getLogger(__name__)


# サービス ID → 必須キー（宣言順にエラー報告される）
REQUIRED_KEYS: dict[str, tuple[str, ...]] = {
    "supabase": ("SUPABASE_EMAIL", "SUPABASE_PASSWORD"),
    "github": ("GITHUB_USERNAME", "GITHUB_PASSWORD"),
}


@dataclass(frozen=True)
class Credential:
    """1 サービス分の認証情報（不変）。

    fields のキーはプレフィックスを除いた小文字名
    （SUPABASE_EMAIL → email）。値は repr に出さない。
    """

    service_id: str
    fields: Mapping[str, str] = field(repr=False)

    def __getitem__(self, name: str) -> str:
        return self.fields[name]


class SecretStore:
    """フラットなキー・バリューソースへの読み取り専用アダプタ。"""

    def __init__(self, source: Mapping[str, str | None]) -> None:
        self._source = dict(source)

    @classmethod
    def from_file(cls, path: Path) -> "SecretStore":
        """KEY=VALUE 形式のファイルからストアを生成する。

        ファイルが存在しない場合は空のストアとして扱う
        （load() 時に MissingCredential となる）。
        """
        path = Path(path)
        if not path.exists():
            logger.warning("認証情報ファイルが見つかりません: %s", path)
            return cls({})
        logger.debug("認証情報ファイルを読み込みます: %s", path)
        return cls(dotenv_values(path))

    @classmethod
    def from_environ(cls) -> "SecretStore":
        return cls(os.environ)

    def load(self, service_id: str) -> Credential:
        """サービスの認証情報を読み込む。

        Args:
            service_id: サービス ID（"supabase" / "github"）

        Returns:
            検証済みの Credential

        Raises:
            UnknownService: 未定義のサービス ID の場合
            MissingCredential: 必須キーが欠落・空の場合
        """
        try:
            keys = REQUIRED_KEYS[service_id]
        except KeyError:
            raise UnknownService(service_id) from None

        missing = [k for k in keys if not (self._source.get(k) or "").strip()]
        if missing:
            raise MissingCredential(service_id, missing)

        prefix = f"{service_id.upper()}_"
        fields = {
            k[len(prefix):].lower(): str(self._source[k]).strip() for k in keys
        }
        logger.info("認証情報を読み込みました: %s (%s)", service_id, ", ".join(keys))
        return Credential(service_id=service_id, fields=MappingProxyType(fields))
