from fastapi import Request

from chatrelay.services.relay_system import RelaySystem


def get_relay_system(request: Request) -> RelaySystem:
    return request.app.state.relay
