"""Request-scoped context models."""

from pydantic import BaseModel


class RequestContext(BaseModel):
    """Identifiers bound to every log line of a request."""

    trace_id: str
    span_id: str = ""
    request_id: str


class CallerContext(BaseModel):
    """Authenticated caller.

    The owner is the accountToolInstanceId the caller claims to act for;
    it is compared against the instance's recorded owner on mutation.
    """

    subject: str | None = None
    owner: str | None = None
