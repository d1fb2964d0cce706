"""API 依赖."""

from fastapi import Request

from retrui.core.context import AppContext


def get_context(request: Request) -> AppContext:
    """获取应用上下文（测试中通过 dependency_overrides 替换）."""
    return request.app.state.context
