"""Section API routes: generation, completion, revision, and top-ups."""

from fastapi import APIRouter, Depends

from thesisflow.api.dependencies import get_section_orchestrator, get_session_id
from thesisflow.domain.sections import Section
from thesisflow.schemas.funnel import (
    FeedbackRequest,
    FunnelResponse,
    FunnelView,
    PaymentView,
    RevisionHistoryItem,
    RevisionHistoryResponse,
    TopUpRequest,
)
from thesisflow.services.section_service import SectionOrchestrator, SectionResult

router = APIRouter()


def _response(result: SectionResult) -> FunnelResponse:
    return FunnelResponse(state=FunnelView.from_state(result.state), warning=result.warning)


@router.post("/{section}/start", response_model=FunnelResponse)
async def start_section(
    section: Section,
    session_id: str = Depends(get_session_id),
    orchestrator: SectionOrchestrator = Depends(get_section_orchestrator),
):
    """Generate the section, or navigate to it if it already has content.

    Raises:
        AccessDenied (402): payment not complete
        SectionLocked (409): previous section not complete
        GenerationInProgress (409): request already in flight for this section
    """
    return _response(await orchestrator.start_section(session_id, section))


@router.post("/{section}/complete", response_model=FunnelResponse)
async def complete_section(
    section: Section,
    session_id: str = Depends(get_session_id),
    orchestrator: SectionOrchestrator = Depends(get_section_orchestrator),
):
    return _response(await orchestrator.complete_section(session_id, section))


@router.post("/{section}/revise", response_model=FunnelResponse)
async def revise_section(
    section: Section,
    body: FeedbackRequest,
    session_id: str = Depends(get_session_id),
    orchestrator: SectionOrchestrator = Depends(get_section_orchestrator),
):
    """Revise the section with feedback.

    Raises:
        QuotaExhausted (402): no revisions left, buy a top-up
    """
    return _response(await orchestrator.revise_section(session_id, section, body.feedback))


@router.post("/{section}/top-up/checkout", response_model=PaymentView)
async def top_up_checkout(
    section: Section,
    session_id: str = Depends(get_session_id),
    orchestrator: SectionOrchestrator = Depends(get_section_orchestrator),
):
    """Open a payment for extra revisions. Redeem the transaction id via ``/top-up``."""
    payment = await orchestrator.open_top_up(session_id, section)
    return PaymentView(
        order_id=payment.order_id,
        token=payment.token,
        redirect_url=payment.redirect_url,
        transaction_id=payment.transaction_id,
        simulated=payment.simulated,
    )


@router.post("/{section}/top-up", response_model=FunnelResponse)
async def purchase_top_up(
    section: Section,
    body: TopUpRequest,
    session_id: str = Depends(get_session_id),
    orchestrator: SectionOrchestrator = Depends(get_section_orchestrator),
):
    """Redeem a settled top-up payment. 422 if no unredeemed settled top-up matches."""
    return _response(await orchestrator.purchase_revision_top_up(session_id, section, body.transaction_id))


@router.get("/{section}/revisions", response_model=RevisionHistoryResponse)
async def revision_history(
    section: Section,
    session_id: str = Depends(get_session_id),
    orchestrator: SectionOrchestrator = Depends(get_section_orchestrator),
):
    rows = await orchestrator.revision_history(session_id, section)
    return RevisionHistoryResponse(
        section=section.value,
        revisions=[
            RevisionHistoryItem(
                id=row.id,
                feedback=row.feedback,
                previous_content=row.previous_content,
                new_content=row.new_content,
                created_at=row.created_at,
            )
            for row in rows
        ],
    )
