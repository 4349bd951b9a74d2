"""
API v1 routes.

Defines REST endpoints for staged registration. Routes only translate
requests into service calls and render the service's result objects;
domain errors are rendered by the registered exception handlers.
"""

from fastapi import APIRouter, Depends, status

from src.api.dependencies import (
    get_machine_id,
    get_machine_registry,
    get_registration_service,
    rate_limit,
)
from src.api.models import (
    DeliveryData,
    ErrorResponse,
    MachineIdData,
    MachineIdResponse,
    RegisterData,
    RegisterRequest,
    RegisterResponse,
    ResendData,
    ResendRequest,
    ResendResponse,
    UserData,
    VerifyData,
    VerifyRequest,
    VerifyResponse,
)
from src.domain.machine_identity import MachineIdentityRegistry
from src.domain.registration import RegistrationService

router = APIRouter(prefix="/auth", tags=["v1"])

_rate_limited = {429: {"model": ErrorResponse, "description": "Rate limit exceeded"}}


@router.get(
    "/machine-id",
    response_model=MachineIdResponse,
    responses=_rate_limited,
    summary="Get or create a machine identity",
    description="Returns the x-machine-id header value when it is known, "
    "otherwise mints a new identity.",
)
async def machine_id(
    existing_id: str | None = Depends(get_machine_id),
    registry: MachineIdentityRegistry = Depends(get_machine_registry),
    _: object = Depends(rate_limit("machine-id")),
) -> MachineIdResponse:
    value = await registry.ensure(existing_id)
    return MachineIdResponse(
        message="Machine ID retrieved successfully",
        data=MachineIdData(machine_id=value),
    )


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Missing machine ID"},
        409: {"model": ErrorResponse, "description": "User already exists"},
        422: {"description": "Validation error"},
        **_rate_limited,
    },
    summary="Start a staged registration",
    description="Stores a temporary registration and sends one verification "
    "code by email and one by SMS.",
)
async def register(
    request_data: RegisterRequest,
    service: RegistrationService = Depends(get_registration_service),
    _: object = Depends(rate_limit("register")),
) -> RegisterResponse:
    """
    Register a temporary user and send verification codes.

    - **name**: Display name (2-100 characters)
    - **email**: Email address to verify
    - **mobile_no**: Mobile number to verify
    - **password**: Password (8-128 characters, mixed classes)
    """
    outcome = await service.register(
        request_data.name, request_data.email, request_data.mobile_no, request_data.password
    )
    return RegisterResponse(
        message="Registration initiated successfully. "
        "Please verify your email and mobile number.",
        data=RegisterData(
            email=outcome.email,
            mobile_no=outcome.mobile_no,
            verification_required=list(outcome.verification_required),
            otp_expires_in_seconds=outcome.otp_ttl_seconds,
        ),
    )


@router.post(
    "/verify-otp",
    response_model=VerifyResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid code or already verified"},
        404: {"model": ErrorResponse, "description": "Session or code expired"},
        409: {"model": ErrorResponse, "description": "Completion in progress"},
        **_rate_limited,
    },
    summary="Verify one channel",
)
async def verify_otp(
    request_data: VerifyRequest,
    service: RegistrationService = Depends(get_registration_service),
    _: object = Depends(rate_limit("verify-otp")),
) -> VerifyResponse:
    outcome = await service.verify(
        request_data.email, request_data.mobile_no, request_data.type, request_data.otp
    )
    user = None
    if outcome.user is not None:
        user = UserData(
            id=outcome.user.id,
            name=outcome.user.name,
            email=outcome.user.email,
            mobile_no=outcome.user.mobile_no,
            role=outcome.user.role,
            created_at=outcome.user.created_at,
        )
    message = (
        "Registration completed successfully"
        if outcome.is_complete
        else f"{outcome.verified_channel} verified successfully"
    )
    return VerifyResponse(
        message=message,
        data=VerifyData(
            is_complete=outcome.is_complete,
            verified_channel=outcome.verified_channel,
            email_verified=outcome.email_verified,
            mobile_verified=outcome.mobile_verified,
            user=user,
        ),
    )


@router.post(
    "/resend-otp",
    response_model=ResendResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Already verified"},
        404: {"model": ErrorResponse, "description": "Session expired"},
        **_rate_limited,
    },
    summary="Re-issue codes for unverified channels",
)
async def resend_otp(
    request_data: ResendRequest,
    service: RegistrationService = Depends(get_registration_service),
    _: object = Depends(rate_limit("resend-otp")),
) -> ResendResponse:
    outcome = await service.resend(request_data.email, request_data.mobile_no)
    return ResendResponse(
        message="OTP resent successfully",
        data=ResendData(
            channels=list(outcome.channels),
            deliveries=[
                DeliveryData(
                    channel=result.channel.value,
                    success=result.success,
                    message_id=result.message_id,
                    error=result.error,
                )
                for result in outcome.deliveries
            ],
            otp_expires_in_seconds=outcome.otp_ttl_seconds,
            cooldown_seconds=outcome.cooldown_seconds,
        ),
    )
