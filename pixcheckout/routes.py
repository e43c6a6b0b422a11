from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from pixcheckout.auth import check_password, create_access_token, verify_token
from pixcheckout.checkout import CheckoutManager, PayerDetails
from pixcheckout.config import update_settings
from pixcheckout.store import IntentStore

router = APIRouter()


def get_store(request: Request) -> IntentStore:
    return request.app.state.store


def get_checkout(request: Request) -> CheckoutManager:
    return request.app.state.checkout


class LoginRequest(BaseModel):
    password: str


class SettingsUpdate(BaseModel):
    pixgo_api_key: str | None = None
    admin_password: str | None = Field(None, min_length=1)


class IntentRequest(BaseModel):
    amount: Decimal
    description: str | None = None


class IntentResponse(BaseModel):
    id: str
    amount: Decimal
    description: str
    status: str
    created_at: datetime
    checkout_path: str


class PayerRequest(BaseModel):
    name: str = Field(..., min_length=1)
    cpf: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: str | None = None


class CheckoutView(BaseModel):
    intent_id: str
    amount: Decimal
    description: str
    intent_status: str
    state: str
    provider_status: str | None = None
    payment_id: str | None = None
    qr_code: str | None = None
    error: str | None = None
    attempts: int = 0


def _intent_response(intent) -> IntentResponse:
    return IntentResponse(
        id=intent.id,
        amount=intent.amount,
        description=intent.description,
        status=intent.status,
        created_at=intent.created_at,
        checkout_path=f"/checkout/{intent.id}",
    )


# --- admin ---

@router.post("/admin/login")
def login(body: LoginRequest, request: Request):
    settings = request.app.state.settings
    if not check_password(settings, body.password):
        raise HTTPException(status_code=401, detail="Invalid password")
    return {"access_token": create_access_token(settings), "token_type": "bearer"}


@router.get("/admin/settings")
def read_settings(request: Request, auth=Depends(verify_token)):
    settings = request.app.state.settings
    return {
        "api_key_configured": bool(settings.pixgo_api_key),
        "poll_interval_seconds": settings.poll_interval_seconds,
        "max_poll_attempts": settings.max_poll_attempts,
    }


@router.put("/admin/settings")
def change_settings(body: SettingsUpdate, request: Request, auth=Depends(verify_token)):
    settings = request.app.state.settings
    changes = body.model_dump(exclude_none=True)
    if "pixgo_api_key" in changes:
        changes["pixgo_api_key"] = changes["pixgo_api_key"].strip()
    update_settings(settings, **changes)
    return {"updated": sorted(changes), "api_key_configured": bool(settings.pixgo_api_key)}


@router.post("/intents", status_code=201, response_model=IntentResponse)
def create_intent(body: IntentRequest, store: IntentStore = Depends(get_store), auth=Depends(verify_token)):
    return _intent_response(store.create(body.amount, body.description))


@router.get("/intents", response_model=list[IntentResponse])
def list_intents(store: IntentStore = Depends(get_store), auth=Depends(verify_token)):
    return [_intent_response(intent) for intent in store.list()]


@router.delete("/intents/{intent_id}")
def delete_intent(
    intent_id: str,
    store: IntentStore = Depends(get_store),
    checkout: CheckoutManager = Depends(get_checkout),
    auth=Depends(verify_token)
):
    store.delete(intent_id)
    checkout.teardown(intent_id)
    return {"deleted": intent_id}


# --- checkout ---

@router.get("/checkout/{intent_id}", response_model=CheckoutView)
def open_checkout(intent_id: str, checkout: CheckoutManager = Depends(get_checkout)):
    return checkout.open(intent_id).snapshot()


@router.post("/checkout/{intent_id}", response_model=CheckoutView)
def submit_checkout(intent_id: str, body: PayerRequest, checkout: CheckoutManager = Depends(get_checkout)):
    payer = PayerDetails(name=body.name, tax_id=body.cpf, email=body.email, phone=body.phone)
    return checkout.submit(intent_id, payer).snapshot()


@router.get("/checkout/{intent_id}/status", response_model=CheckoutView)
def checkout_status(intent_id: str, checkout: CheckoutManager = Depends(get_checkout)):
    return checkout.current(intent_id).snapshot()


@router.delete("/checkout/{intent_id}/session")
def close_checkout(intent_id: str, checkout: CheckoutManager = Depends(get_checkout)):
    return {"closed": checkout.teardown(intent_id)}
