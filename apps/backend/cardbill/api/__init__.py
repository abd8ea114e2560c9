"""Router aggregation for the HTTP API."""

from fastapi import FastAPI

from . import invoices, payment_methods, transactions


def register_routers(app: FastAPI) -> None:
    """Attach all API routes to the FastAPI application."""

    app.include_router(invoices.router, prefix="/api")
    app.include_router(transactions.router, prefix="/api")
    app.include_router(payment_methods.router, prefix="/api")
