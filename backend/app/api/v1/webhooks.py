from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_session
from app.services import webhooks as webhook_service

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _dispatch(
    topic: str,
    request: Request,
    session: AsyncSession,
    hmac_header: str | None,
    topic_header: str | None,
    shop_header: str | None,
    webhook_id: str | None,
) -> dict:
    raw_body = await request.body()
    if not raw_body.strip():
        # Shopify's reachability check posts without a body.
        return {"received": True}
    try:
        return await webhook_service.handle_webhook(
            session,
            topic=topic,
            raw_body=raw_body,
            hmac_header=hmac_header,
            topic_header=topic_header,
            shop_header=shop_header,
            webhook_id=webhook_id,
        )
    except webhook_service.WebhookVerificationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except webhook_service.WebhookTopicMismatchError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _topic_endpoint(topic: str):
    async def endpoint(
        request: Request,
        session: AsyncSession = Depends(get_session),
        x_shopify_hmac_sha256: str | None = Header(default=None),
        x_shopify_topic: str | None = Header(default=None),
        x_shopify_shop_domain: str | None = Header(default=None),
        x_shopify_webhook_id: str | None = Header(default=None),
    ) -> dict:
        return await _dispatch(
            topic,
            request,
            session,
            x_shopify_hmac_sha256,
            x_shopify_topic,
            x_shopify_shop_domain,
            x_shopify_webhook_id,
        )

    return endpoint


router.add_api_route("/app-uninstalled", _topic_endpoint(webhook_service.TOPIC_APP_UNINSTALLED), methods=["POST"])
router.add_api_route("/shop-redact", _topic_endpoint(webhook_service.TOPIC_SHOP_REDACT), methods=["POST"])
router.add_api_route(
    "/customers-data-request", _topic_endpoint(webhook_service.TOPIC_CUSTOMERS_DATA_REQUEST), methods=["POST"]
)
router.add_api_route("/customers-redact", _topic_endpoint(webhook_service.TOPIC_CUSTOMERS_REDACT), methods=["POST"])
