"""
FastAPI dependencies resolving services from the application container.
"""

from fastapi import Request

from registrar.services.container import ServiceContainer
from registrar.services.registration_api import RegistrationApi


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_registration_api(request: Request) -> RegistrationApi:
    return get_container(request).api
