from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vcare_access.audit import AuditSink
from vcare_access.auth import get_current_user, require_admin, require_customer, require_staff
from vcare_access.auth.crud import (
    assign_role,
    bootstrap_admin_if_needed,
    create_user,
    load_identity,
    normalize_email,
    public_identity,
    touch_last_login,
    verify_user_credentials,
)
from vcare_access.auth.deps import client_address, login_rate_limit
from vcare_access.auth.gate import require_min_share_balance
from vcare_access.auth.rate_limit import RateLimiter
from vcare_access.auth.resolver import AuthResolver
from vcare_access.auth.security import TokenIssuer
from vcare_access.auth.sessions import MemorySessionStore
from vcare_access.config import Config, load_config, validate_config
from vcare_access.db import connect, init_db
from vcare_access.economics import shares
from vcare_access.economics.tables import RoleTable, get_role_table
from vcare_access.errors import AccessError, BadRequest, InvalidCredentials, InvalidToken
from vcare_access.models import Identity


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


router = APIRouter()


def build_state(app: FastAPI, cfg: Config) -> None:
    """Wire the collaborators the routes and auth deps read from `app.state`."""
    issuer = TokenIssuer(cfg.AUTH_JWT_SECRET)
    sessions = MemorySessionStore(ttl_seconds=int(cfg.AUTH_SESSION_TTL_MINUTES) * 60)

    def _load(user_id: int) -> Identity:
        with connect(cfg.DB_DSN) as conn:
            return load_identity(conn, user_id)

    app.state.cfg = cfg
    app.state.issuer = issuer
    app.state.sessions = sessions
    app.state.resolver = AuthResolver(sessions=sessions, issuer=issuer, load_identity=_load)
    app.state.rate_limiter = RateLimiter(cfg.LOGIN_RATE_LIMIT, cfg.LOGIN_RATE_WINDOW_SECONDS)
    app.state.audit = AuditSink(cfg.DB_DSN)
    app.state.role_table = get_role_table(cfg.ROLE_TABLES_VERSION, cfg.ROLE_TABLES_PATH)


def create_app(cfg: Optional[Config] = None) -> FastAPI:
    cfg = cfg or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Refuses to start without a signing secret.
        validate_config(cfg)
        init_db(cfg.DB_DSN)
        build_state(app, cfg)

        boot = bootstrap_admin_if_needed(cfg)
        if boot:
            _debug(f"Bootstrapped initial admin user: email={boot.email} role={boot.role}")
        _debug(f"Role tables version={app.state.role_table.version}")
        yield

    app = FastAPI(title="VCare Access", version="0.1.0", lifespan=lifespan)

    # CORS is mainly needed for local development (Vite on :5173 -> API on :8000).
    origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(AccessError)
    async def _access_error(request: Request, exc: AccessError) -> JSONResponse:
        headers = dict(exc.headers())
        if exc.status_code == 401:
            headers.setdefault("WWW-Authenticate", "Bearer")
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder({"message": exc.message, **exc.extra()}),
            headers=headers,
        )

    app.include_router(router)
    return app


def _st(request: Request, name: str) -> Any:
    return getattr(request.app.state, name)


def _audit(request: Request, user_id: Optional[int], action: str, *, new_value: Any = None) -> None:
    _st(request, "audit").record(
        user_id,
        action,
        "user",
        entity_id=user_id,
        new_value=new_value,
        client_address=client_address(request),
        client_agent=request.headers.get("user-agent"),
    )


# -----------------------------
# Health
# -----------------------------


@router.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok"}


# -----------------------------
# Session cookie
# -----------------------------


def _cookie_secure(cfg: Config) -> bool:
    """Return whether auth cookies should be marked Secure."""
    # Browsers require Secure when SameSite=None
    if str(cfg.AUTH_COOKIE_SAMESITE or "lax").lower() == "none":
        return True
    return bool(cfg.AUTH_COOKIE_SECURE)


def _set_session_cookie(response: Response, *, session_id: str, cfg: Config) -> None:
    response.set_cookie(
        key=cfg.AUTH_SESSION_COOKIE_NAME,
        value=session_id,
        httponly=True,
        samesite=str(cfg.AUTH_COOKIE_SAMESITE or "lax").lower(),
        secure=_cookie_secure(cfg),
        max_age=int(cfg.AUTH_SESSION_TTL_MINUTES) * 60,
        path=cfg.AUTH_COOKIE_PATH or "/",
        domain=cfg.AUTH_COOKIE_DOMAIN,
    )


def _clear_session_cookie(response: Response, cfg: Config) -> None:
    response.delete_cookie(
        key=cfg.AUTH_SESSION_COOKIE_NAME,
        path=cfg.AUTH_COOKIE_PATH or "/",
        domain=cfg.AUTH_COOKIE_DOMAIN,
    )


def _with_token(request: Request, identity: Identity) -> Dict[str, Any]:
    out = public_identity(identity)
    out["token"] = _st(request, "issuer").issue(identity)
    return out


def _open_session(request: Request, response: Response, identity: Identity) -> None:
    cfg: Config = _st(request, "cfg")
    sid = _st(request, "sessions").create(identity.id)
    _set_session_cookie(response, session_id=sid, cfg=cfg)


# -----------------------------
# Auth
# -----------------------------


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str = ""
    # Investor roles to register with; each must exist in the live role table.
    roles: List[str] = Field(default_factory=list)


class RefreshRequest(BaseModel):
    token: str = ""


@router.post("/register", status_code=201, dependencies=[Depends(login_rate_limit)])
def register(payload: RegisterRequest, request: Request, response: Response) -> Dict[str, Any]:
    cfg: Config = _st(request, "cfg")
    table: RoleTable = _st(request, "role_table")

    email = normalize_email(payload.email)
    if "@" not in email:
        raise BadRequest("invalid_email")
    if len(payload.password or "") < 8:
        raise BadRequest("password_too_short")
    unknown = [r for r in payload.roles if r not in table.roles]
    if unknown:
        raise BadRequest(f"unknown_roles: {', '.join(unknown)}")

    with connect(cfg.DB_DSN) as conn:
        identity = create_user(conn, email=email, password=payload.password, name=payload.name, role="customer")
        for role_name in payload.roles:
            assign_role(conn, identity.id, role_name)
        identity = load_identity(conn, identity.id)

    _open_session(request, response, identity)
    _audit(request, identity.id, "register", new_value={"email": identity.email, "roles": list(identity.roles)})
    return _with_token(request, identity)


@router.post("/login", dependencies=[Depends(login_rate_limit)])
def login(payload: LoginRequest, request: Request, response: Response) -> Dict[str, Any]:
    """Session login. Also returns a bearer token so the client can go stateless."""
    cfg: Config = _st(request, "cfg")
    with connect(cfg.DB_DSN) as conn:
        row = verify_user_credentials(conn, payload.email, payload.password)
        if row is None:
            _debug(f"login rejected email={normalize_email(payload.email)}")
            raise InvalidCredentials()
        touch_last_login(conn, int(row["user_id"]))
        identity = load_identity(conn, int(row["user_id"]))

    _open_session(request, response, identity)
    _audit(request, identity.id, "login")
    return _with_token(request, identity)


@router.post("/logout")
def logout(request: Request, response: Response) -> Dict[str, Any]:
    cfg: Config = _st(request, "cfg")
    sessions: MemorySessionStore = _st(request, "sessions")
    sid = request.cookies.get(cfg.AUTH_SESSION_COOKIE_NAME)
    user_id = sessions.get(sid)
    sessions.invalidate(sid)
    _clear_session_cookie(response, cfg)
    if user_id is not None:
        _audit(request, user_id, "logout")
    return {"ok": True}


@router.get("/user")
def current_user(user: Identity = Depends(get_current_user)) -> Dict[str, Any]:
    out = public_identity(user)
    out["shareValue"] = float(shares.share_value(user.share_balance))
    return out


@router.post("/auth/login", dependencies=[Depends(login_rate_limit)])
def token_login(payload: LoginRequest, request: Request) -> Dict[str, Any]:
    """Stateless login: returns identity + bearer token, no session."""
    cfg: Config = _st(request, "cfg")
    try:
        with connect(cfg.DB_DSN) as conn:
            row = verify_user_credentials(conn, payload.email, payload.password)
            if row is None:
                raise InvalidCredentials()
            touch_last_login(conn, int(row["user_id"]))
            identity = load_identity(conn, int(row["user_id"]))
        out = _with_token(request, identity)
    except AccessError:
        raise
    except Exception as e:
        _debug(f"token login failed: {e!r}")
        return JSONResponse(status_code=500, content={"message": "Login failed"})

    _audit(request, identity.id, "token_login")
    return out


@router.post("/auth/refresh")
def token_refresh(payload: RefreshRequest, request: Request) -> Dict[str, Any]:
    """Swap a valid token for a new one carrying the identity's current roles and balance."""
    cfg: Config = _st(request, "cfg")
    issuer: TokenIssuer = _st(request, "issuer")
    try:
        claims = issuer.verify(payload.token)
        with connect(cfg.DB_DSN) as conn:
            identity = load_identity(conn, claims.subject_id)
        out = _with_token(request, identity)
    except InvalidToken as e:
        _debug(f"token refresh rejected reason={e.reason}")
        raise
    except Exception as e:
        _debug(f"token refresh failed: {e!r}")
        raise InvalidToken("refresh_failed") from None

    _audit(request, identity.id, "token_refresh")
    return out


# -----------------------------
# Digital shares
# -----------------------------


class QuoteRequest(BaseModel):
    amount: float = Field(ge=0)
    roles: List[str] = Field(default_factory=list)
    referralCount: int = Field(default=0, ge=0)


@router.get("/digital-share/rates")
def digital_share_rates(request: Request) -> Dict[str, Any]:
    table: RoleTable = _st(request, "role_table")
    return jsonable_encoder({
        "sharesPerBlock": shares.SHARES_PER_BLOCK,
        "amountPerBlock": shares.AMOUNT_PER_SHARE_BLOCK,
        "currencyPerShare": shares.CURRENCY_PER_SHARE,
        "withdrawalFeeRate": shares.WITHDRAWAL_FEE_RATE,
        "referral": {"perReferral": shares.REFERRAL_BONUS_PER_REFERRAL, "cap": shares.REFERRAL_BONUS_CAP},
        "vipTiers": [{"minInvestment": t, "bonus": b} for t, b in sorted(shares.VIP_TIERS)],
        "roleTable": table.as_dict(),
    })


@router.post("/digital-share/quote")
def digital_share_quote(
    payload: QuoteRequest,
    request: Request,
    _user: Identity = Depends(require_customer),
) -> Dict[str, Any]:
    quote = shares.investment_quote(
        str(payload.amount),
        payload.roles,
        referral_count=payload.referralCount,
        table=_st(request, "role_table"),
    )
    return jsonable_encoder(quote)


# -----------------------------
# Gated areas
# -----------------------------


@router.get("/admin/roles")
def admin_roles(request: Request, _admin: Identity = Depends(require_admin)) -> Dict[str, Any]:
    return _st(request, "role_table").as_dict()


@router.get("/admin/auth-rejections")
def admin_auth_rejections(request: Request, _admin: Identity = Depends(require_admin)) -> Dict[str, Any]:
    return {"rejections": _st(request, "resolver").rejection_counts()}


@router.get("/staff/ping")
def staff_ping(_staff: Identity = Depends(require_staff)) -> Dict[str, Any]:
    return {"ok": True}


@router.get("/shareholder/ping")
def shareholder_ping(request: Request, user: Identity = Depends(get_current_user)) -> Dict[str, Any]:
    cfg: Config = _st(request, "cfg")
    require_min_share_balance(user, cfg.SHAREHOLDER_MIN_SHARES)
    return {"ok": True}


app = create_app()
