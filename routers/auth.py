"""
Auth router: credential submission and logout.
"""

import logfire

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from schema.users import RefreshTokenRequest
from schema.security import RefreshTokenResponse, MessageResponse, ErrorResponse
from security.errors import AuthError

router = APIRouter(tags=["Auth"])


@router.post(
    "/refresh-token",
    response_model=RefreshTokenResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def refresh_token(payload: RefreshTokenRequest, request: Request, response: Response):
    """Exchange a username and password for a new token.

    In stateful mode the token is returned in the `token` response header and
    replaces any token previously issued to the user. In stateless mode it is
    set as the `token` cookie.

    ## Responses
    ### Missing user or password
    - status code: 400
    - body: ```{'error': 'Both user and password are required'}```

    ### Unknown user or wrong password
    - status code: 401
    - body: ```{'error': 'Incorrect username or password'}```

    ### User directory unavailable
    - status code: 500
    - body: ```{'error': 'User directory is unavailable'}```
    """
    validator = request.app.state.credential_validator
    backend = request.app.state.auth_backend

    try:
        user = await validator.validate(payload.user, payload.password)
        issued = await backend.issue(user)
    except AuthError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_content())

    backend.deliver(response, issued)
    logfire.info(f"Issued {backend.mode.value} token for user {user.username}")

    return RefreshTokenResponse(expires_at=issued.expires_at)


@router.post(
    "/logout",
    response_model=MessageResponse,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def logout(request: Request, response: Response):
    """End the caller's session.

    Stateful tokens are cleared from the user record. Stateless tokens cannot
    be recalled, so the cookie is expired and the envelope stays valid until
    its embedded expiry.
    """
    backend = request.app.state.auth_backend
    principal = request.state.principal

    try:
        await backend.revoke(principal, response)
    except AuthError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_content())

    logfire.info(f"User {principal.username} logged out")
    return MessageResponse(message="Successfully logged out")
