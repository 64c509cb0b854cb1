"""
HTTP 接口模块
"""

from .app import SERVICES_KEY, AlertFlowAPI, create_app, error_middleware

__all__ = ["SERVICES_KEY", "AlertFlowAPI", "create_app", "error_middleware"]
