"""
Route dependencies.

The application container is attached to ``app.state`` by ``create_application``;
routes receive it through ``Depends(get_onebox)`` instead of a module global.
"""

from fastapi import Request

from onebox.application import OneboxApplication


def get_onebox(request: Request) -> OneboxApplication:
    return request.app.state.onebox
