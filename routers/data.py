""" Protected demo routes; only reachable through the request gate.
"""

from fastapi import APIRouter, Depends, Request

from schema.security import Principal

from typing import Annotated

router = APIRouter(tags=["Data"])


def get_principal(request: Request) -> Principal:
    """The caller resolved by the request gate."""
    return request.state.principal


@router.get("/return-data")
async def return_data(principal: Annotated[Principal, Depends(get_principal)]):
    """Returns a payload addressed to the authenticated caller."""
    return {
        "user": principal.username,
        "name": principal.display_name,
        "data": f"Hello {principal.display_name or principal.username}, here is your data",
        "token_expires_at": principal.expires_at.isoformat(),
    }


@router.get("/do-something")
async def do_something(principal: Annotated[Principal, Depends(get_principal)]):
    """Acknowledges an action performed on the caller's behalf."""
    return {"user": principal.username, "result": "Something was done"}
