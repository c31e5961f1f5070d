"""
provflow — SaaS アカウントのプロビジョニングフロー実行エンジン

ブラウザを操作して Supabase / GitHub のサインアップ・ログイン・トークン発行を行い、
結果を 1 つの Outcome として機械可読な形式で出力する。
"""

__version__ = "0.1.0"
