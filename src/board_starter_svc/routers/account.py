"""
Account pages: register, log in, log out and reset a forgotten password.

Handlers only check the shape of the submitted form and call the Auth
Service. Failure messages are generic: a response never tells
an unknown email apart from a wrong password or a taken address.
"""
from pathlib import Path

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, EmailStr, Field, ValidationError

from board_starter_svc.auth.dependencies import get_auth_service, require_user
from board_starter_svc.auth.service import AuthService
from board_starter_svc.auth.sessions import Principal

router = APIRouter(prefix="/account", tags=["account"])

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

REGISTER_FAILED = "That email/password combination did not work."
LOGIN_INCOMPLETE = "Both email/password are required."
LOGIN_FAILED = "Invalid login attempt."
EMAIL_REQUIRED = "A valid email is required."
RESET_SENT = "If an account exists for that email, a reset link is on its way."
RESET_FAILED = "That reset link is invalid or has expired, or the password is too weak."


class UserForm(BaseModel):
    """
    Pydantic model for the register/login form containing email and password.
    """
    email: EmailStr
    password: str = Field(min_length=1)


class EmailForm(BaseModel):
    email: EmailStr


class AccountResponse(BaseModel):
    id: int
    email: str


def render(request: Request, action: str, title: str, status_code: int = status.HTTP_200_OK, **context):
    context.update(action=action, title=title, form_action=request.url.path)
    return templates.TemplateResponse(request, "account.html", context, status_code=status_code)


def render_login(request: Request, status_code: int = status.HTTP_200_OK, **context):
    providers = list(request.app.state.external_providers.values())
    return render(request, "login", "Login", status_code, providers=providers, **context)


@router.get("", response_model=AccountResponse)
async def account(principal: Principal = Depends(require_user)):
    return AccountResponse(id=principal.user_id, email=principal.email)


@router.get("/register")
async def register_form(request: Request):
    return render(request, "register", "Register")


@router.post("/register")
def register(request: Request, email: str = Form(""), password: str = Form(""),
             auth: AuthService = Depends(get_auth_service)):
    try:
        form = UserForm(email=email, password=password)
    except ValidationError:
        return render(request, "register", "Register", error=REGISTER_FAILED, email=email)

    if not auth.register(form.email, form.password):
        return render(request, "register", "Register", error=REGISTER_FAILED, email=email)
    return RedirectResponse("/account", status_code=status.HTTP_302_FOUND)


@router.get("/login")
async def login_form(request: Request):
    return render_login(request)


@router.post("/login")
def login(request: Request, email: str = Form(""), password: str = Form(""),
          remember: bool = Form(False), auth: AuthService = Depends(get_auth_service)):
    try:
        form = UserForm(email=email, password=password)
    except ValidationError:
        return render_login(request, error=LOGIN_INCOMPLETE, email=email)

    if not auth.login(form.email, form.password, remember):
        return render_login(request, status.HTTP_400_BAD_REQUEST, error=LOGIN_FAILED, email=email)
    return RedirectResponse("/account", status_code=status.HTTP_302_FOUND)


# Mounted by create_app at the configured logout path
def logout(principal: Principal = Depends(require_user),
           auth: AuthService = Depends(get_auth_service)):
    auth.logout()
    return RedirectResponse("/", status_code=status.HTTP_302_FOUND)


@router.get("/forgot-password")
async def forgot_password_form(request: Request):
    return render(request, "forgot", "Forgot password")


@router.post("/forgot-password")
def forgot_password(request: Request, email: str = Form(""),
                    auth: AuthService = Depends(get_auth_service)):
    try:
        form = EmailForm(email=email)
    except ValidationError:
        return render(request, "forgot", "Forgot password", error=EMAIL_REQUIRED, email=email)

    def callback_url(params: dict) -> str:
        return str(request.url_for("reset_password_form").include_query_params(**params))

    # Same page whether or not the account exists
    auth.reset_password(form.email, callback_url)
    return render(request, "sent", "Forgot password", message=RESET_SENT)


@router.get("/reset-password", name="reset_password_form")
async def reset_password_form(request: Request, user_id: str = "", code: str = ""):
    return render(request, "reset", "Reset password", user_id=user_id, code=code)


@router.post("/reset-password")
def reset_password(request: Request, user_id: str = Form(""), code: str = Form(""),
                   password: str = Form(""), auth: AuthService = Depends(get_auth_service)):
    try:
        account_id = int(user_id)
    except ValueError:
        account_id = None

    if account_id is None or not auth.confirm_password_reset(account_id, code, password):
        return render(request, "reset", "Reset password", status.HTTP_400_BAD_REQUEST,
                      error=RESET_FAILED, user_id=user_id, code=code)
    return RedirectResponse(request.app.state.settings.login_path, status_code=status.HTTP_302_FOUND)
