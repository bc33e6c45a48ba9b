"""
Request security pipeline.

Every request runs through an explicit, ordered list of stages before it
reaches a route handler:

    header policy -> session -> body fields -> CSRF -> validation

Each stage may inspect or enrich the RequestContext and may stop the
request, either by returning a response or by raising RequestRejected.
When the response comes back the stages that ran get to finalize it in
reverse order (session cookie, policy headers).

The outermost boundary also lives here: any exception escaping a stage or
a handler is logged with its traceback and turned into a generic 500.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from urllib.parse import parse_qsl
import json
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from idbridge.core.exceptions import (
    CsrfMismatchError,
    FieldValidationError,
    MalformedBodyError,
    RequestRejected,
    get_safe_error_message,
)
from idbridge.core.rate_limit_config import get_real_ip
from idbridge.core.security.csrf import CsrfGuard, SAFE_METHODS
from idbridge.core.security.header_policy import SecurityHeaderPolicy
from idbridge.core.security.session_store import SessionStore
from idbridge.models.session_state import Session
from idbridge.services.validation_service import ValidationResult, ValidationService

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """What the pipeline learned about one request, handed to the route handler"""
    request: Request
    session: Optional[Session] = None
    csrf_verified: bool = False
    fields: Dict[str, Any] = field(default_factory=dict)
    validation: Optional[ValidationResult] = None
    csrf_guard: Optional[CsrfGuard] = None

    def issue_csrf_token(self) -> str:
        """Token for the current session, to embed in pages and forms"""
        if self.session is None or self.csrf_guard is None:
            raise RuntimeError("No session on this request")
        return self.csrf_guard.issue_token(self.session)


class PipelineStage:
    """
    One step of the security pipeline.

    process() runs before the handler; return a Response or raise
    RequestRejected to stop the request. finalize() runs on the way out
    for every stage whose process() was entered.
    """

    name = "stage"
    # Whether finalize() also runs on the generic 500 response
    finalize_on_error = False

    async def process(self, ctx: RequestContext) -> Optional[Response]:
        return None

    async def finalize(self, ctx: RequestContext, response: Response) -> None:
        return None


class HeaderPolicyStage(PipelineStage):
    """Attaches the transport, cache and hardening headers decided at startup"""

    name = "header_policy"
    finalize_on_error = True

    def __init__(self, policy: SecurityHeaderPolicy):
        self.policy = policy

    async def finalize(self, ctx: RequestContext, response: Response) -> None:
        for header, value in self.policy.response_headers(ctx.request.url.path):
            response.headers[header] = value
        if "server" in response.headers:
            del response.headers["server"]


class SessionStage(PipelineStage):
    """Decodes the session cookie on the way in, re-issues it on the way out"""

    name = "session"

    def __init__(self, store: SessionStore, sessionless_paths: Iterable[str] = ()):
        self.store = store
        self.sessionless_paths = frozenset(sessionless_paths)

    async def process(self, ctx: RequestContext) -> Optional[Response]:
        if ctx.request.url.path in self.sessionless_paths:
            return None
        ctx.session = self.store.load(ctx.request.headers.get("cookie"))
        return None

    async def finalize(self, ctx: RequestContext, response: Response) -> None:
        if ctx.session is not None:
            # Always re-issued: the expiry window moves even if nothing changed
            response.headers.append("set-cookie", self.store.save(ctx.session))


class FieldExtractionStage(PipelineStage):
    """Parses query (safe methods) or body (everything else) into ctx.fields"""

    name = "fields"

    async def process(self, ctx: RequestContext) -> Optional[Response]:
        ctx.fields = await read_fields(ctx.request)
        return None


class CsrfStage(PipelineStage):
    """Rejects state-changing requests that don't carry a token for this session"""

    name = "csrf"

    def __init__(self, guard: CsrfGuard):
        self.guard = guard

    async def process(self, ctx: RequestContext) -> Optional[Response]:
        ctx.csrf_guard = self.guard
        # Pulled out of the fields on every request; it is not domain data
        token = self.guard.extract_token(ctx.request.headers, ctx.fields)

        if not self.guard.requires_verification(ctx.request.method):
            return None

        if not self.guard.verify(ctx.session, token):
            raise CsrfMismatchError(details={
                "method": ctx.request.method,
                "path": ctx.request.url.path,
                "token_present": token is not None,
            })

        ctx.csrf_verified = True
        return None


class ValidationStage(PipelineStage):
    """Applies the rule set declared for the route, if any"""

    name = "validation"

    def __init__(self, service: ValidationService):
        self.service = service

    async def process(self, ctx: RequestContext) -> Optional[Response]:
        rules = self.service.rules_for(ctx.request.method, ctx.request.url.path)
        if rules is None:
            return None

        ctx.validation = self.service.validate(rules, ctx.fields)
        if not ctx.validation.valid:
            raise FieldValidationError(ctx.validation.errors)
        return None


async def read_fields(request: Request) -> Dict[str, Any]:
    """
    Named request fields.

    Safe methods use the query string. Other methods use the body only
    (JSON object or urlencoded form), so credentials are never taken from
    the URL.

    Raises:
        MalformedBodyError: Body is present but cannot be parsed
    """
    if request.method in SAFE_METHODS:
        return dict(request.query_params)

    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    body = await request.body()
    if not body:
        return {}

    if content_type == "application/json":
        try:
            fields = json.loads(body)
        except ValueError:
            raise MalformedBodyError("invalid json") from None
        if not isinstance(fields, dict):
            raise MalformedBodyError("expected a json object")
        return fields

    if content_type == "application/x-www-form-urlencoded":
        try:
            return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
        except UnicodeDecodeError:
            raise MalformedBodyError("invalid encoding") from None

    return {}


class SecurityPipelineMiddleware(BaseHTTPMiddleware):
    """Runs the pipeline stages around every request"""

    def __init__(self, app, stages: Sequence[PipelineStage]):
        super().__init__(app)
        self.stages: List[PipelineStage] = list(stages)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        ctx = RequestContext(request=request)
        request.state.security = ctx
        entered: List[PipelineStage] = []

        try:
            response = await self._run_stages(ctx, entered)
            if response is None:
                response = await call_next(request)

            for stage in reversed(entered):
                await stage.finalize(ctx, response)
            return response

        except Exception as e:
            logger.error(
                f"❌ Unhandled error on {request.method} {request.url.path}: {type(e).__name__}",
                exc_info=True
            )
            response = JSONResponse(status_code=500, content={"detail": get_safe_error_message(e)})
            for stage in reversed(entered):
                if stage.finalize_on_error:
                    await stage.finalize(ctx, response)
            return response

    async def _run_stages(self, ctx: RequestContext, entered: List[PipelineStage]) -> Optional[Response]:
        for stage in self.stages:
            entered.append(stage)
            try:
                response = await stage.process(ctx)
            except RequestRejected as rejection:
                return self._reject(ctx, stage, rejection)
            if response is not None:
                return response
        return None

    def _reject(self, ctx: RequestContext, stage: PipelineStage, rejection: RequestRejected) -> Response:
        request = ctx.request
        if isinstance(rejection, CsrfMismatchError):
            logger.warning(
                f"🚫 CSRF mismatch: {request.method} {request.url.path} from {get_real_ip(request)}"
            )
        else:
            logger.info(f"⚠️ Request rejected by {stage.name}: {request.method} {request.url.path} | {rejection.details}")

        return JSONResponse(status_code=rejection.status_code, content=rejection.public_payload())


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency giving handlers the pipeline's results"""
    ctx = getattr(request.state, "security", None)
    if ctx is None:
        raise RuntimeError("SecurityPipelineMiddleware is not installed")
    return ctx
