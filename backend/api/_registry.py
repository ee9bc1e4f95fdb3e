"""
Centralized router registry for all API endpoints
"""
from . import (
    submissions,
    blogs,
    social,
    ledger,
    admin,
    payments,
)

ROUTERS = [
    submissions.router,
    blogs.router,
    social.router,
    ledger.router,
    admin.router,
    payments.router,
]
