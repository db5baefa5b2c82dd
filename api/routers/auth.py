from html import escape

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from api.dependencies import get_auth_service
from api.middleware.error_handling import status_for
from core.logging import get_api_logger_safe
from core.utils.exceptions import AccountNotFoundError, TradingDeskException
from services.auth.service import AuthService

router = APIRouter(tags=["Authentication"])
logger = get_api_logger_safe("api.auth")


def _page(title: str, body: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(
        content=(
            '<html><body style="font-family: Arial; padding: 20px;">'
            f"<h2>{escape(title)}</h2><p>{escape(body)}</p>"
            "</body></html>"
        ),
        status_code=status_code,
    )


@router.get("/zerodha/callback", name="zerodha_callback", response_class=HTMLResponse)
async def zerodha_callback(
    request_token: str = "",
    api_key: str = "",
    auth_service: AuthService = Depends(get_auth_service),
):
    """Kite login redirect: exchange the request token and store the access token"""
    logger.info("Zerodha callback received", request_token="present" if request_token else "missing",
                api_key=api_key)
    if not request_token:
        return _page("Error: Missing request_token", "Zerodha did not provide a request token.", 400)
    if not api_key:
        return _page("Error: Missing api_key", "Could not determine which account to update.", 400)

    try:
        account = await auth_service.complete_login(request_token, api_key)
    except AccountNotFoundError as e:
        return _page("Error: Account not found", e.message, 404)
    except TradingDeskException as e:
        logger.error("Zerodha login failed", api_key=api_key, error=e.message)
        return _page("Error: Login failed", e.message, status_for(e))

    return _page("Login successful",
                 f'Access token updated for "{account.name}". Orders and market data use it immediately.',
                 200)
