# src/identity_service/dependencies/identity.py
from fastapi import Request

from ..UAA.services import IdentityService


def get_identity_service(request: Request) -> IdentityService:
    return request.app.state.identity_service
