# authguard/app/api/deps.py
from typing import Callable, Optional, Union

from fastapi import Depends, Request, Response

from authguard.app.core.errors import SecurityDenied
from authguard.app.schemas.security import InboundRequest, Principal
from authguard.app.security.gate import PROFILES, SecurityProfile
from authguard.app.services.container import SecurityServices


def get_services(request: Request) -> SecurityServices:
    return request.app.state.services


def client_ip(request: Request, trust_proxy_headers: bool = True) -> str:
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip") or request.headers.get("cf-connecting-ip")
        if real_ip:
            return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def to_inbound(request: Request, trust_proxy_headers: bool = True) -> InboundRequest:
    return InboundRequest(
        method=request.method,
        path=request.url.path,
        client_ip=client_ip(request, trust_proxy_headers),
        headers=dict(request.headers),
        query_params=list(request.query_params.multi_items()),
        cookies=dict(request.cookies),
        body=await request.body(),
    )


def require_security(profile: Union[str, SecurityProfile] = "authenticated") -> Callable:
    """
    Dependency factory running the security gate for a route.

    Usage:
        @router.get("/items")
        async def items(principal: Principal = Depends(require_security("premium"))):
            ...

    A deny raises SecurityDenied (rendered by the app's exception handler).
    Headers on an allow decision (e.g. a freshly issued 2FA grant) are
    copied onto the response.
    """
    resolved = PROFILES[profile] if isinstance(profile, str) else profile

    async def dependency(
        request: Request,
        response: Response,
        services: SecurityServices = Depends(get_services),
    ) -> Optional[Principal]:
        inbound = await to_inbound(request, services.settings.TRUST_PROXY_HEADERS)
        decision = await services.gate.evaluate(inbound, resolved)
        if not decision.allow:
            raise SecurityDenied(decision)
        for name, value in decision.headers.items():
            response.headers[name] = value
        return decision.principal

    return dependency


get_current_principal = require_security("authenticated")
