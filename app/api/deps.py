from fastapi import Request

from app.services.collab_hub import CollabHub


def get_collab_hub(request: Request) -> CollabHub:
    return request.app.state.collab_hub
