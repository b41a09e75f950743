# membership/dependencies.py
from fastapi import Depends

from membership.config import Settings, get_settings
from membership.services.issuer import TokenIssuer
from membership.services.payments import StripeGateway
from membership.services.token_store import AUTO, MANUAL, TokenStore, build_store


def get_manual_store(settings: Settings = Depends(get_settings)) -> TokenStore:
    return build_store(settings, MANUAL)


def get_auto_store(settings: Settings = Depends(get_settings)) -> TokenStore:
    return build_store(settings, AUTO)


def get_gateway(settings: Settings = Depends(get_settings)) -> StripeGateway:
    return StripeGateway(settings.stripe_secret_key)


def get_issuer(store: TokenStore = Depends(get_auto_store)) -> TokenIssuer:
    return TokenIssuer(store)
