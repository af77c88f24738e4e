"""Onboarding API — delivers client events to a flow and returns its new state."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from schemas import (
    AadhaarIn,
    AccountRecord,
    FlowResponse,
    FlowStartIn,
    OtpIn,
    PhoneIn,
    ProfileIn,
    RoleIn,
)
from services.flow_registry import FlowRegistry
from services.onboarding import OnboardingStateMachine

router = APIRouter()
logger = logging.getLogger(__name__)


def get_registry(request: Request) -> FlowRegistry:
    return request.app.state.registry


def _get_flow(flow_id: str, registry: FlowRegistry) -> OnboardingStateMachine:
    machine = registry.get(flow_id)
    if machine is None:
        raise HTTPException(status_code=404, detail="Flow not found")
    return machine


def _respond(flow_id: str, machine: OnboardingStateMachine) -> FlowResponse:
    return FlowResponse(
        flow_id=flow_id,
        client_id=machine.directory.client_id,
        state=machine.snapshot(),
        notifications=machine.drain_notifications(),
    )


# ── Flow lifecycle ─────────────────────────────────────────

@router.post("/flows", response_model=FlowResponse, status_code=201)
async def start_flow(data: FlowStartIn | None = None, registry: FlowRegistry = Depends(get_registry)):
    """Open a new onboarding flow at role selection."""
    flow_id, machine = await registry.create(client_id=data.client_id if data else None)
    return _respond(flow_id, machine)


@router.get("/flows/{flow_id}", response_model=FlowResponse)
async def get_flow(flow_id: str, registry: FlowRegistry = Depends(get_registry)):
    """Current step, countdown, and any pending notifications."""
    return _respond(flow_id, _get_flow(flow_id, registry))


@router.delete("/flows/{flow_id}", response_model=FlowResponse)
async def cancel_flow(flow_id: str, registry: FlowRegistry = Depends(get_registry)):
    """Close the flow: pending OTP discarded, flow released. Returns its reset state."""
    _get_flow(flow_id, registry)
    machine = await registry.discard(flow_id)
    return _respond(flow_id, machine)


# ── Events ─────────────────────────────────────────────────

@router.post("/flows/{flow_id}/role", response_model=FlowResponse)
async def choose_role(flow_id: str, data: RoleIn, registry: FlowRegistry = Depends(get_registry)):
    machine = _get_flow(flow_id, registry)
    await machine.role_chosen(data.role)
    return _respond(flow_id, machine)


@router.post("/flows/{flow_id}/phone", response_model=FlowResponse)
async def submit_phone(flow_id: str, data: PhoneIn, registry: FlowRegistry = Depends(get_registry)):
    machine = _get_flow(flow_id, registry)
    await machine.phone_submitted(data.phone_number)
    return _respond(flow_id, machine)


@router.post("/flows/{flow_id}/otp", response_model=FlowResponse)
async def submit_otp(flow_id: str, data: OtpIn, registry: FlowRegistry = Depends(get_registry)):
    machine = _get_flow(flow_id, registry)
    await machine.otp_submitted(data.code)
    return _respond(flow_id, machine)


@router.post("/flows/{flow_id}/otp/resend", response_model=FlowResponse)
async def resend_otp(flow_id: str, registry: FlowRegistry = Depends(get_registry)):
    machine = _get_flow(flow_id, registry)
    await machine.resend_requested()
    return _respond(flow_id, machine)


@router.post("/flows/{flow_id}/aadhaar", response_model=FlowResponse)
async def submit_aadhaar(flow_id: str, data: AadhaarIn, registry: FlowRegistry = Depends(get_registry)):
    machine = _get_flow(flow_id, registry)
    await machine.aadhaar_submitted(data.aadhaar_number, data.consent)
    return _respond(flow_id, machine)


@router.post("/flows/{flow_id}/profile", response_model=FlowResponse)
async def submit_profile(flow_id: str, data: ProfileIn, registry: FlowRegistry = Depends(get_registry)):
    machine = _get_flow(flow_id, registry)
    await machine.profile_submitted(data.full_name, email=data.email, services=data.services)
    return _respond(flow_id, machine)


# ── Session ────────────────────────────────────────────────

@router.get("/flows/{flow_id}/session", response_model=AccountRecord)
async def get_session(flow_id: str, registry: FlowRegistry = Depends(get_registry)):
    """Account currently signed in on this client."""
    machine = _get_flow(flow_id, registry)
    account = await machine.directory.get_current_session()
    if account is None:
        raise HTTPException(status_code=404, detail="No active session")
    return account


@router.post("/flows/{flow_id}/logout", response_model=FlowResponse)
async def logout(flow_id: str, registry: FlowRegistry = Depends(get_registry)):
    machine = _get_flow(flow_id, registry)
    await machine.logout()
    logger.info("Logout: flow=%s", flow_id)
    return _respond(flow_id, machine)


# ── Client sessions (no flow needed) ───────────────────────

@router.get("/clients/{client_id}/session", response_model=AccountRecord)
async def get_client_session(client_id: str, registry: FlowRegistry = Depends(get_registry)):
    """Resume a persisted session, e.g. after a restart dropped the flow."""
    account = await registry.directory_for(client_id).get_current_session()
    if account is None:
        raise HTTPException(status_code=404, detail="No active session")
    return account


@router.delete("/clients/{client_id}/session", status_code=204)
async def end_client_session(client_id: str, registry: FlowRegistry = Depends(get_registry)):
    await registry.directory_for(client_id).clear_current_session()
    logger.info("Logout: client=%s", client_id)
