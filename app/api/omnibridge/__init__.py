from fastapi import APIRouter

from app.api.omnibridge.analytics import router as analytics_router
from app.api.omnibridge.channels import router as channels_router
from app.api.omnibridge.chat import router as chat_router
from app.api.omnibridge.feedback import router as feedback_router
from app.api.omnibridge.inbox import router as inbox_router
from app.api.omnibridge.notifications import router as notifications_router
from app.api.omnibridge.rules import router as rules_router
from app.api.omnibridge.templates import router as templates_router
from app.api.omnibridge.webhooks import router as webhooks_router

router = APIRouter(prefix="/omnibridge")
router.include_router(webhooks_router)
router.include_router(chat_router)
router.include_router(rules_router)
router.include_router(channels_router)
router.include_router(inbox_router)
router.include_router(notifications_router)
router.include_router(templates_router)
router.include_router(feedback_router)
router.include_router(analytics_router)

__all__ = ["router"]
