import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from . import models, security
from .db import get_session
from .identity import IdentityError, IdentityProvider
from .models import StaffMember, StaffRole, Tenant
from .permissions import PermissionService
from .settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()

ACCESS_DENIED = "Access denied"


def canonical_code(code: str | None) -> str:
    return (code or "").strip().upper()


def resolve_tenant_code(session: Session, code: str | None) -> Tenant | None:
    canonical = canonical_code(code)
    if not canonical:
        return None
    return session.exec(select(Tenant).where(Tenant.code == canonical)).first()


def _missing(*values: str | None) -> bool:
    return any(not (v or "").strip() for v in values)


# ============ REGISTRATION ============

@router.post("/register")
def register(
    body: models.RegisterRequest,
    token: Annotated[str | None, Depends(security.get_session_token)],
    session: Session = Depends(get_session),
    identity: IdentityProvider = Depends(security.get_identity_provider),
) -> dict:
    if body.type == "restaurant":
        return register_restaurant(body, session, identity)
    if body.type == "waiter":
        return register_waiter(body, token, session, identity)
    raise HTTPException(status_code=400, detail="Invalid registration type")


def register_restaurant(body: models.RegisterRequest, session: Session, identity: IdentityProvider) -> dict:
    if _missing(body.restaurant_code, body.restaurant_name, body.admin_email, body.admin_password, body.admin_name):
        raise HTTPException(status_code=400, detail="All required fields must be filled")

    code = canonical_code(body.restaurant_code)
    if resolve_tenant_code(session, code):
        raise HTTPException(status_code=400, detail="This restaurant code is already in use")

    tenant = Tenant(
        code=code,
        name=body.restaurant_name.strip(),
        iban=(body.restaurant_iban or "").strip() or None,
    )
    session.add(tenant)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=400, detail="This restaurant code is already in use")
    session.refresh(tenant)

    try:
        principal = identity.create_account(body.admin_email, body.admin_password)
    except IdentityError as e:
        # Rollback: delete restaurant if account creation fails
        logger.warning(f"Registration of {code} failed creating account, removing restaurant: {e}")
        session.delete(tenant)
        session.commit()
        raise HTTPException(status_code=400, detail=f"User could not be created: {e}")

    try:
        session.add(StaffMember(
            id=principal.id,
            name=body.admin_name.strip(),
            role=StaffRole.admin,
            tenant_id=tenant.id,
        ))
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        # Rollback: delete account and restaurant
        logger.error(f"Registration of {code} failed creating admin profile: {e}", exc_info=True)
        identity.delete_account(principal.id)
        stale = session.get(Tenant, tenant.id)
        if stale is not None:
            session.delete(stale)
            session.commit()
        raise HTTPException(status_code=500, detail="Profile could not be created")

    logger.info(f"Registered restaurant {code} with admin {principal.email}")
    return {
        "success": True,
        "message": "Restaurant and admin user created",
        "restaurant_code": code,
    }


def register_waiter(
    body: models.RegisterRequest,
    token: str | None,
    session: Session,
    identity: IdentityProvider,
) -> dict:
    claims = security.resolve_session(token, identity)
    admin = session.get(StaffMember, claims.principal_id) if claims else None
    if (
        admin is None
        or admin.role != StaffRole.admin
        or not PermissionService.has_tenant_binding(admin, claims.tenant_id)
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin session required")

    if _missing(body.waiter_email, body.waiter_password, body.waiter_name):
        raise HTTPException(status_code=400, detail="All fields must be filled")

    try:
        principal = identity.create_account(body.waiter_email, body.waiter_password)
    except IdentityError as e:
        raise HTTPException(status_code=400, detail=f"User could not be created: {e}")

    try:
        session.add(StaffMember(
            id=principal.id,
            name=body.waiter_name.strip(),
            role=StaffRole.waiter,
            tenant_id=admin.tenant_id,
        ))
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        # Rollback: delete account
        logger.error(f"Waiter profile creation failed: {e}", exc_info=True)
        identity.delete_account(principal.id)
        raise HTTPException(status_code=500, detail="Profile could not be created")

    logger.info(f"Waiter {principal.email} added to tenant {admin.tenant_id}")
    return {"success": True, "message": "Waiter user created"}


# ============ LOGIN / LOGOUT ============

@router.get("/login")
def login_page() -> dict:
    return {"status": "login_required", "message": "POST restaurant_code, email and password to /login"}


@router.post("/login")
def login(
    body: models.LoginRequest,
    session: Session = Depends(get_session),
    identity: IdentityProvider = Depends(security.get_identity_provider),
):
    tenant = resolve_tenant_code(session, body.restaurant_code)
    if tenant is None:
        raise HTTPException(status_code=400, detail="Invalid restaurant code")

    try:
        principal = identity.authenticate(body.email, body.password)
    except IdentityError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    staff = session.get(StaffMember, principal.id)
    if staff is None:
        if not settings.auto_provision_missing_profile:
            logger.warning(f"Login rejected: principal {principal.id} has no staff profile")
            identity.sign_out(principal.id)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=ACCESS_DENIED)
        staff = StaffMember(
            id=principal.id,
            name=principal.email.split("@")[0],
            role=StaffRole.waiter,
            tenant_id=tenant.id,
        )
        session.add(staff)
        session.commit()
        session.refresh(staff)
        logger.warning(
            f"Auto-provisioned waiter profile for principal {principal.id} in tenant {tenant.code}"
        )

    if staff.tenant_id is None or staff.tenant_id != tenant.id:
        logger.warning(f"Login rejected: principal {principal.id} is not bound to tenant {tenant.code}")
        identity.sign_out(principal.id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=ACCESS_DENIED)

    access_token = security.create_access_token(principal, tenant.id, staff.role)
    home = PermissionService.home_path(staff.role)
    logger.info(f"Staff {staff.id} logged in to {tenant.code} as {staff.role.value}")

    response = JSONResponse(content={
        "status": "success",
        "message": "Logged in",
        "access_token": access_token,
        "token_type": "bearer",
        "role": staff.role.value,
        "redirect": home,
    })
    response.set_cookie(
        key=security.SESSION_COOKIE,
        value=access_token,
        httponly=True,
        secure=settings.is_production,  # Only enforce HTTPS in production
        samesite="lax",
        path="/",
        max_age=settings.access_token_expire_minutes * 60,
    )
    return response


@router.api_route("/logout", methods=["GET", "POST"])
def logout(
    token: Annotated[str | None, Depends(security.get_session_token)],
    identity: IdentityProvider = Depends(security.get_identity_provider),
):
    claims = security.resolve_session(token, identity)
    if claims is not None:
        identity.sign_out(claims.principal_id)
        logger.info(f"Principal {claims.principal_id} signed out")
    response = RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)
    response.delete_cookie(key=security.SESSION_COOKIE, path="/")  # Must match path used in set_cookie
    return response


@router.get("/me", response_model=models.StaffRead)
def read_me(
    current_staff: Annotated[StaffMember, Depends(security.get_current_staff)],
):
    return current_staff
