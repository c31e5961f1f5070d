"""`python -m provflow` で CLI を起動する。"""

from .cli import app

if __name__ == "__main__":
    app(prog_name="provflow")
