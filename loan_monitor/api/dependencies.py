"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from loan_monitor.runner.scheduler import RepaymentScheduler


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_scheduler(request: Request) -> RepaymentScheduler:
    """Provide the application's repayment scheduler"""
    return request.app.state.scheduler
