import html

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse
from typing import Optional

from omniseller.dependencies import get_token_service
from omniseller.services.errors import InvalidStateError
from omniseller.services.tiktok_token_service import TikTokTokenService, decode_state
from omniseller.utils.logger import logger

router = APIRouter(prefix="/api/auth", tags=["TikTok Auth"])


CONNECTED_EVENT = "tiktok-connected"


def _connected_page(shop_name: str) -> str:
    # Tells the opener window (the seller UI) that the store is linked, then closes.
    return f"""
<html>
    <head><title>Connected</title></head>
    <body style="text-align:center; padding:50px; font-family:sans-serif;">
        <h2>Connected Successfully!</h2>
        <p>TikTok Shop <strong>{html.escape(shop_name)}</strong> has been linked.</p>
        <button onclick="window.close()">Close Window</button>
        <script>
            if (window.opener) {{
                window.opener.postMessage('{CONNECTED_EVENT}', '*');
                setTimeout(() => {{ window.close(); }}, 1500);
            }}
        </script>
    </body>
</html>
"""


@router.get("/tiktok/authorize")
async def tiktok_authorize_url(
    userId: str = Query(..., description="Seller id initiating the connection"),
    token_service: TikTokTokenService = Depends(get_token_service),
):
    """Return the URL the seller's browser should open to authorize a shop."""
    return {"authorization_url": token_service.build_authorization_url(userId)}


@router.get("/callback/tiktok", response_class=HTMLResponse)
async def tiktok_auth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    token_service: TikTokTokenService = Depends(get_token_service),
):
    logger.info("Received TikTok callback. Code present? %s", bool(code))

    if not code:
        raise InvalidStateError("No 'code' returned from TikTok")
    auth_state = decode_state(state)

    store = await token_service.exchange_authorization_code(auth_state.seller_id, code)
    return HTMLResponse(_connected_page(store.store_name))
