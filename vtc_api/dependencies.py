from fastapi import Request

from vtc_api.config import Settings
from vtc_api.database import Database
from vtc_api.reconciliation import PaymentReconciler
from vtc_api.stripe_service import StripeGateway


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_gateway(request: Request) -> StripeGateway:
    return request.app.state.gateway


def get_reconciler(request: Request) -> PaymentReconciler:
    return request.app.state.reconciler
