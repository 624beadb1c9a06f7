from __future__ import annotations

import contextlib
import os

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from auth.errors import CSRFStateMismatchError, DoorFlowAuthError
from auth.oauth_manager import OAuthManager
from auth.token_store import FileTokenStore
from doorflow.client import DoorFlow
from doorflow.constants import APP_VERSION, LOGGER
from doorflow.env import (
    get_base_url,
    get_env_float,
    get_refresh_buffer_seconds,
    get_scopes,
    load_env,
    setup_logging,
    use_pkce,
    validate_env,
)
from webhooks.handler import WebhookHandler
from webhooks.verify import WebhookEvent, WebhookSignatureError


def error_response(code: str, description: str, status_code: int) -> Response:
    return JSONResponse(
        {"error": code, "error_description": description},
        status_code=status_code,
    )


async def log_webhook_event(event: WebhookEvent, resource) -> None:
    LOGGER.info(
        "DoorFlow webhook %s %s account=%s fetched=%s",
        event.pattern,
        event.resource_id,
        event.account_id,
        resource is not None,
    )


def build_doorflow_from_env() -> DoorFlow:
    auth = OAuthManager(
        client_id=os.getenv("DOORFLOW_CLIENT_ID", "").strip(),
        client_secret=os.getenv("DOORFLOW_CLIENT_SECRET", "").strip() or None,
        redirect_uri=os.getenv("DOORFLOW_REDIRECT_URI", "").strip(),
        storage=FileTokenStore(os.getenv("DOORFLOW_TOKEN_STORE_PATH", ".tokens.json")),
        scopes=get_scopes(),
        refresh_buffer_seconds=get_refresh_buffer_seconds(),
        base_path=get_base_url(),
    )
    return DoorFlow(auth, timeout=get_env_float("DOORFLOW_API_TIMEOUT", 30.0))


def create_app(
    *,
    doorflow: DoorFlow | None = None,
    webhooks: WebhookHandler | None = None,
    pkce: bool | None = None,
) -> Starlette:
    if doorflow is None or webhooks is None:
        load_env()
        setup_logging()
        validate_env()

    doorflow = doorflow or build_doorflow_from_env()
    if webhooks is None:
        webhooks = WebhookHandler(os.getenv("DOORFLOW_WEBHOOK_SECRET", ""), doorflow)
        webhooks.on("*", log_webhook_event)
    pkce_enabled = use_pkce() if pkce is None else pkce
    auth = doorflow.auth

    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse({"status": "ok", "version": APP_VERSION})

    async def connect_route(request: Request) -> Response:
        del request
        result = auth.get_authorization_url(use_pkce=pkce_enabled)
        return RedirectResponse(url=result.url, status_code=302)

    async def callback_route(request: Request) -> Response:
        if request.query_params.get("error"):
            return error_response(
                "oauth_error", "DoorFlow authorization returned an error.", 400
            )

        code = request.query_params.get("code")
        state = request.query_params.get("state")
        if not code or not state:
            return error_response("invalid_request", "Missing code or state.", 400)

        try:
            tokens = await doorflow.handle_callback(code, state)
        except CSRFStateMismatchError as error:
            return error_response("invalid_state", str(error), error.status_code)
        except DoorFlowAuthError as error:
            return error_response("token_exchange_failed", str(error), error.status_code)

        return JSONResponse(
            {"status": "connected", "expires_at": tokens.expires_at, "scope": tokens.scope}
        )

    async def status_route(request: Request) -> Response:
        del request
        info = await auth.get_token_info()
        if info is None:
            return JSONResponse({"authenticated": False})
        return JSONResponse(
            {"authenticated": True, "expires_at": info.expires_at, "scope": info.scope}
        )

    async def disconnect_route(request: Request) -> Response:
        del request
        await doorflow.disconnect()
        return Response(status_code=204)

    async def webhook_route(request: Request) -> Response:
        body = await request.body()
        try:
            await webhooks.handle(body, request.headers)
        except WebhookSignatureError as error:
            LOGGER.warning("Rejected DoorFlow webhook: %s", error)
            return error_response("invalid_webhook", str(error), error.status_code)
        return Response(status_code=204)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        del app
        yield
        await doorflow.aclose()

    routes = [
        Route("/health", health_route, methods=["GET"]),
        Route("/oauth/connect", connect_route, methods=["GET"]),
        Route("/oauth/callback", callback_route, methods=["GET"]),
        Route("/oauth/status", status_route, methods=["GET"]),
        Route("/oauth/disconnect", disconnect_route, methods=["POST"]),
        Route("/webhooks", webhook_route, methods=["POST"]),
    ]
    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.doorflow = doorflow
    app.state.webhooks = webhooks
    return app


def main() -> None:
    import uvicorn

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
