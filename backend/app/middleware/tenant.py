"""Tenant middleware — resolves tenant context from the JWT on every request.

Flow:
  1. Extract Bearer token from Authorization header
  2. Decode JWT → get `tenant_schema` claim
  3. Validate the schema name and set the ContextVar, which
     get_tenant_db and the cache keys read
  4. After the response, clear the ContextVar

Routes that don't require tenant scope (health, docs) simply won't call
get_tenant_db(), so having no tenant context is fine for them.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.auth.jwt import decode_token
from app.tenancy import (
    clear_tenant_context,
    set_current_tenant_schema,
)

# Routes that never require auth; expired tokens are not rejected here
_PUBLIC_PREFIXES = ("/docs", "/openapi.json", "/health")


class TenantMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        auth_header = request.headers.get("authorization", "")
        path = request.url.path

        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
            payload = decode_token(token)

            if not payload:
                # Token present but expired/malformed: answer 401 here
                # instead of a confusing 400 "No tenant context".
                clear_tenant_context()
                if not any(path.startswith(p) for p in _PUBLIC_PREFIXES):
                    return JSONResponse(
                        status_code=401,
                        content={"detail": "Token expired or invalid"},
                        headers={"WWW-Authenticate": "Bearer"},
                    )
            else:
                tenant_schema = payload.get("tenant_schema")
                if tenant_schema:
                    try:
                        set_current_tenant_schema(tenant_schema)
                    except ValueError:
                        clear_tenant_context()
                else:
                    clear_tenant_context()
        else:
            clear_tenant_context()

        try:
            response = await call_next(request)
        finally:
            clear_tenant_context()

        return response
