"""FastAPI binding of the RPC front door.

Routes are plain `def` handlers: the dispatcher blocks on provider I/O, so
Starlette runs each call on its threadpool and direct sends never wait on
the fallback consumer thread.
"""

from __future__ import annotations

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from pydantic import BaseModel, Field

from .rpc import NotificationRpcService, RpcError, StatusCode

HTTP_STATUS_BY_CODE = {
    StatusCode.INVALID_ARGUMENT: status.HTTP_400_BAD_REQUEST,
    StatusCode.DEADLINE_EXCEEDED: status.HTTP_504_GATEWAY_TIMEOUT,
    # Client closed request; no constant for it in starlette.
    StatusCode.CANCELED: 499,
    StatusCode.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class SendEmailBody(BaseModel):
    to: str
    email_type: str | None = None
    template_data: dict[str, str] = Field(default_factory=dict)
    allow_fallback: bool = False
    subject: str | None = None
    body: str | None = None
    deadline_seconds: float | None = None


class SendPushBody(BaseModel):
    device_token: str
    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)
    allow_fallback: bool = False
    deadline_seconds: float | None = None


class QueuedEnvelopeBody(BaseModel):
    message_id: str
    notification_type: str
    payload: str
    created_at: str


class DeliveryResponse(BaseModel):
    success: bool
    message: str
    notification_id: str
    used_fallback: bool


def create_app(
    service: NotificationRpcService,
    metrics_registry: CollectorRegistry | None = None,
) -> FastAPI:
    app = FastAPI(title="notification-delivery")

    @app.exception_handler(RpcError)
    async def rpc_error_handler(request: Request, exc: RpcError) -> JSONResponse:
        return JSONResponse(
            status_code=HTTP_STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
            content={"code": exc.code.value, "message": exc.message},
        )

    @app.post("/v1/notifications/email", response_model=DeliveryResponse)
    def send_email(body: SendEmailBody) -> dict:
        return service.send_email(
            to=body.to,
            email_type=body.email_type,
            template_data=body.template_data,
            allow_fallback=body.allow_fallback,
            subject=body.subject,
            body=body.body,
            deadline=body.deadline_seconds,
        )

    @app.post("/v1/notifications/push", response_model=DeliveryResponse)
    def send_push(body: SendPushBody) -> dict:
        return service.send_push(
            device_token=body.device_token,
            title=body.title,
            body=body.body,
            data=body.data,
            allow_fallback=body.allow_fallback,
            deadline=body.deadline_seconds,
        )

    @app.post("/v1/queued-envelopes", response_model=DeliveryResponse)
    def process_queued_envelope(body: QueuedEnvelopeBody) -> dict:
        return service.process_queued_envelope(body.model_dump())

    @app.get("/healthz")
    def healthz() -> JSONResponse:
        if service.accepting:
            return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ok"})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "shutting_down"},
        )

    if metrics_registry is not None:

        @app.get("/metrics")
        def metrics() -> Response:
            return Response(content=generate_latest(metrics_registry), media_type=CONTENT_TYPE_LATEST)

    return app
