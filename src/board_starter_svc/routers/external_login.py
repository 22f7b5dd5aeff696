import hashlib
import hmac
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from board_starter_svc.auth.dependencies import get_auth_service
from board_starter_svc.auth.providers import ExternalProvider
from board_starter_svc.auth.service import AuthService
from board_starter_svc.exceptions import AccountLinkError, ServiceError

router = APIRouter(tags=["account"])

GOOGLE_TOKENINFO_URL = "https://www.googleapis.com/oauth2/v3/tokeninfo"
FACEBOOK_ME_URL = "https://graph.facebook.com/me"


class SocialLoginRequest(BaseModel):
    """
    Pydantic model for an external login request containing the provider's access token.
    """
    access_token: str


class ExternalLoginResponse(BaseModel):
    """
    Pydantic model for the account signed in through an external provider.
    """
    user_id: int
    email: str


def appsecret_proof(access_token: str, app_secret: str) -> str:
    return hmac.new(app_secret.encode("utf-8"), access_token.encode("utf-8"), hashlib.sha256).hexdigest()


async def validate_social_token(provider: str, access_token: str,
                                credentials: Optional[ExternalProvider] = None) -> dict:
    """
    Validate a social login token with an external OAuth2 provider.

    Providers supported:
      - google: Validates token via a GET request to Google's tokeninfo endpoint and,
        when credentials are given, checks the token was issued to our client id.
      - facebook: Fetches the token owner's profile from the Graph API, signing the
        call with an appsecret_proof so tokens issued to other apps are rejected.

    Parameters:
      provider (str): Identifier of the external provider ('google', 'facebook').
      access_token (str): Token provided by the client.
      credentials (ExternalProvider): Client id and secret configured for the provider.

    Returns:
      dict: JSON response from the provider if the token is valid.

    Raises:
      HTTPException: 400 for unsupported provider, 401 for invalid token, and 500 for internal errors.
    """
    try:
        if not access_token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token is missing")

        if provider == "google":
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(GOOGLE_TOKENINFO_URL, params={"access_token": access_token})

        elif provider == "facebook":
            if credentials is None:
                raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                                    detail="Facebook credentials are not configured")
            params = {
                "fields": "id,email",
                "access_token": access_token,
                "appsecret_proof": appsecret_proof(access_token, credentials.client_secret),
            }
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(FACEBOOK_ME_URL, params=params)

        else:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported provider")

        if response.status_code != 200:
            logging.error(f"{provider} token validation failed: HTTP {response.status_code}")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

        data = response.json()

        # Both providers must vouch for an email address
        if "email" not in data:
            logging.error(f"{provider} token validation failed: 'email' not found in response")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

        # Google also returns addresses the account holder never verified
        if provider == "google" and data.get("email_verified") not in (True, "true"):
            logging.error("google token validation failed: email not verified")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

        if provider == "google" and credentials is not None:
            audience = data.get("aud") or data.get("azp")
            if audience != credentials.client_id:
                logging.error("google token validation failed: token issued to another client")
                raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

        return data

    except httpx.RequestError as e:
        logging.error(f"Network error during {provider} token validation: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Network error")
    except HTTPException:
        raise
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")


@router.post("/account/external-login/{provider}", response_model=ExternalLoginResponse)
async def external_login(provider: str, body: SocialLoginRequest, request: Request,
                         auth: AuthService = Depends(get_auth_service)):
    """
    External login endpoint.

    Accepts a JSON payload with an 'access_token', validates it with the provider,
    and signs in the account the same provider created for that email, creating it
    on first use.

    Returns:
      - HTTP 200 with the account id and email, plus the session cookie.
      - HTTP 404 if the provider is unknown or not configured.
      - HTTP 401 if the token is invalid, carries no verified email, or the email
        belongs to an account not created through this provider.
      - HTTP 500 for unexpected errors.
    """
    credentials = request.app.state.external_providers.get(provider)
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown or disabled provider")

    try:
        token_data = await validate_social_token(provider, body.access_token, credentials)
        email = token_data.get("email")
        if not email:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Email not found in token response")

        principal = await run_in_threadpool(auth.external_login, email, provider)
        if principal is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="External login is not available")
        return ExternalLoginResponse(user_id=principal.user_id, email=principal.email)
    except AccountLinkError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail=f"Provider mismatch: account is not registered with {provider}")
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")
