import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from fastapi.templating import Jinja2Templates

from app.config import settings
from app.db import engine
from app.logging_config import setup_logging
from app.models import Base
from app.permissions import permissions_by_category
from app.routers import admin, auth, clients, dashboard, management, projects, suppliers, warehouse
from app.security.csrf import install_csrf_cookie_middleware
from app.security.headers import install_security_headers
from app.security.sessions import install_auth_session_middleware

setup_logging(settings.log_level, settings.log_dir)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    Base.metadata.create_all(engine)
    logger.info('Renovation portal started (database dialect: %s)', engine.dialect.name)
    yield


app = FastAPI(title='Renovation Portal', lifespan=lifespan)

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'
app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))


def _csrf_token(request: Request) -> str:
    return getattr(request.state, 'csrf_token', '')


app.state.templates.env.globals['csrf_token'] = _csrf_token
app.state.templates.env.globals['currency'] = settings.default_currency
app.state.templates.env.globals['permission_groups'] = permissions_by_category()

# Last installed runs first, so headers also cover the login redirect.
install_auth_session_middleware(app)
install_csrf_cookie_middleware(app)
install_security_headers(app)

app.include_router(auth.router)
app.include_router(dashboard.router)
app.include_router(projects.router)
app.include_router(clients.router)
app.include_router(suppliers.router)
app.include_router(warehouse.router)
app.include_router(management.router)
app.include_router(admin.router)


@app.get('/health', response_class=PlainTextResponse)
def health() -> str:
    return 'ok'


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
