"""LLM 网关韧性与会话状态层"""

__version__ = "0.1.0"
