"""larkbridge -- Feishu/Lark event gateway with in-chat group commands."""

__version__ = "0.1.0"
