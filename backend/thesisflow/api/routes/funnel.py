"""Funnel API routes: landing through payment, resume, and export."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import PlainTextResponse

from thesisflow.api.dependencies import get_funnel_service, get_generation_lock, get_session_id
from thesisflow.domain.export import EXPORT_FILENAME
from thesisflow.domain.funnel import FunnelState
from thesisflow.schemas.funnel import (
    CheckoutResponse,
    FunnelResponse,
    FunnelView,
    LeadRequest,
    PaymentView,
    TitleRequest,
)
from thesisflow.services.funnel_service import FunnelService
from thesisflow.services.session_store import GenerationLock

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _view(state: FunnelState, session_id: str, lock: GenerationLock) -> FunnelView:
    return FunnelView.from_state(state, is_generating=await lock.is_held(session_id, state.active_section))


@router.get("", response_model=FunnelResponse)
async def get_funnel(
    session_id: str = Depends(get_session_id),
    service: FunnelService = Depends(get_funnel_service),
    lock: GenerationLock = Depends(get_generation_lock),
):
    """Current funnel state for this session (fresh state on first visit)."""
    state = await service.load(session_id)
    return FunnelResponse(state=await _view(state, session_id, lock))


@router.post("/start", response_model=FunnelResponse)
async def start_funnel(
    session_id: str = Depends(get_session_id),
    service: FunnelService = Depends(get_funnel_service),
):
    state = await service.start(session_id)
    return FunnelResponse(state=FunnelView.from_state(state))


@router.post("/lead", response_model=FunnelResponse)
async def submit_lead(
    body: LeadRequest,
    session_id: str = Depends(get_session_id),
    service: FunnelService = Depends(get_funnel_service),
):
    """Submit the lead form and receive title candidates.

    Raises:
        ValidationError (422): a required field is empty
        ContentProviderError (429/502/503): title generation failed
    """
    state = await service.submit_lead(session_id, body.to_profile())
    return FunnelResponse(state=FunnelView.from_state(state))


@router.post("/title", response_model=FunnelResponse)
async def select_title(
    body: TitleRequest,
    session_id: str = Depends(get_session_id),
    service: FunnelService = Depends(get_funnel_service),
):
    state = await service.select_title(session_id, body.title)
    return FunnelResponse(state=FunnelView.from_state(state))


@router.post("/checkout", response_model=CheckoutResponse)
async def checkout(
    body: TitleRequest,
    session_id: str = Depends(get_session_id),
    service: FunnelService = Depends(get_funnel_service),
):
    """Confirm the title and open a payment session.

    Simulated payments settle immediately and the response already shows the
    chapter-writing step.
    """
    result = await service.confirm_and_pay(session_id, body.title)
    return CheckoutResponse(
        state=FunnelView.from_state(result.state),
        warning=result.warning,
        payment=PaymentView(
            order_id=result.payment.order_id,
            token=result.payment.token,
            redirect_url=result.payment.redirect_url,
            transaction_id=result.payment.transaction_id,
            simulated=result.payment.simulated,
        ),
    )


@router.post("/payment/confirm", response_model=FunnelResponse)
async def confirm_payment(
    session_id: str = Depends(get_session_id),
    service: FunnelService = Depends(get_funnel_service),
):
    result = await service.confirm_payment(session_id)
    return FunnelResponse(state=FunnelView.from_state(result.state), warning=result.warning)


@router.post("/access", response_model=FunnelResponse)
async def request_access(
    session_id: str = Depends(get_session_id),
    service: FunnelService = Depends(get_funnel_service),
):
    state = await service.request_access(session_id)
    return FunnelResponse(state=FunnelView.from_state(state))


@router.post("/reset", response_model=FunnelResponse)
async def reset_funnel(
    session_id: str = Depends(get_session_id),
    service: FunnelService = Depends(get_funnel_service),
):
    state = await service.reset(session_id)
    return FunnelResponse(state=FunnelView.from_state(state))


@router.post("/resume", response_model=FunnelResponse)
async def resume_funnel(
    x_authenticated_user: str | None = Header(default=None),
    session_id: str = Depends(get_session_id),
    service: FunnelService = Depends(get_funnel_service),
):
    """Rebuild the paid funnel for a returning user.

    The user id comes from the auth proxy in the ``X-Authenticated-User``
    header.
    """
    if not x_authenticated_user:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        user_id = UUID(x_authenticated_user)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user id")

    state = await service.resume(session_id, user_id)
    return FunnelResponse(state=FunnelView.from_state(state))


@router.get("/export", response_class=PlainTextResponse)
async def export_draft(
    session_id: str = Depends(get_session_id),
    service: FunnelService = Depends(get_funnel_service),
):
    """Download every written section as one plain-text document."""
    text = await service.export(session_id)
    logger.info("draft_exported", chars=len(text))
    return PlainTextResponse(
        text,
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )
