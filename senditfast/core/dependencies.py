import httpx
from fastapi import Request

from senditfast.storage.base import StorageGateway
from senditfast.utils.email import Mailer


# Built once in the lifespan and shared by every request.
def get_storage(request: Request) -> StorageGateway:
    return request.app.state.storage


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer
