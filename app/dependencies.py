from fastapi import Request
from fastapi.templating import Jinja2Templates

from app.config import settings

USER_AGENT_MAX_LENGTH = 512


def get_templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


def get_client_ip(request: Request) -> str | None:
    if settings.trust_proxy_headers:
        forwarded_for = request.headers.get('x-forwarded-for')
        if forwarded_for:
            return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_user_agent(request: Request) -> str | None:
    user_agent = request.headers.get('user-agent')
    if not user_agent:
        return None
    return user_agent[:USER_AGENT_MAX_LENGTH]
