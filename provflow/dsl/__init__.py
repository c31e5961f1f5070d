# DSL モジュール
# フロー定義スキーマ、パーサー、変数展開エンジン、Linter を提供

from . import schema  # noqa: F401
from . import parser  # noqa: F401
from . import variables  # noqa: F401
from . import linter  # noqa: F401
