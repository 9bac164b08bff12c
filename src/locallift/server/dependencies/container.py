from fastapi import Request

from locallift.main.container.container import Container
from locallift.main.exceptions import NotReadyException


def get_container():
    def _get_container(request: Request) -> Container:
        container = getattr(request.app.state, "container", None)
        if container is None:
            raise NotReadyException("Container is not initialized")
        return container

    return _get_container
