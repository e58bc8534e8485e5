"""
Request classification.

Decides whether an operation is a simple direct call to one domain service
or a complex, durable, multi-step workflow. Classification is a pure
function of the static routing table.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from core.domain.entities import OperationRequest, TenantContext
from core.domain.enums import OperationKind
from core.domain.exceptions import ClassificationError

VALID_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})

METHOD_ACTIONS = {
    "GET": "read",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}

API_PREFIX = ("api", "v1")


@dataclass(frozen=True)
class RouteRule:
    """
    One entry of the routing table.

    ``pattern`` segments are literals, ``{name}`` placeholders matching one
    segment, or a final ``*`` matching any remainder (including nothing).
    Complex rules without an ``operation_type`` take it from the
    ``workflow_type`` placeholder. ``path_inputs`` maps placeholders to the
    payload fields the workflow reads them from.
    """

    method: str
    pattern: str
    kind: OperationKind
    service: str
    resource: str = ""
    action: str = ""
    operation_type: Optional[str] = None
    path_inputs: Tuple[Tuple[str, str], ...] = ()

    @property
    def segments(self) -> List[str]:
        return _split(self.pattern)

    @property
    def specificity(self) -> int:
        """Number of literal path segments."""
        return sum(1 for s in self.segments if s != "*" and not _is_placeholder(s))

    def match(self, method: str, path_segments: Sequence[str]) -> Optional[Dict[str, str]]:
        """Return captured placeholders, or None if the rule does not apply."""
        if method != self.method:
            return None

        params: Dict[str, str] = {}
        pattern = self.segments
        for index, segment in enumerate(pattern):
            if segment == "*" and index == len(pattern) - 1:
                return params
            if index >= len(path_segments):
                return None
            if _is_placeholder(segment):
                params[segment[1:-1]] = path_segments[index]
            elif segment != path_segments[index]:
                return None

        return params if len(pattern) == len(path_segments) else None


@dataclass(frozen=True)
class Classification:
    """Result of classifying one request."""

    kind: OperationKind
    service: str
    resource: str
    action: str
    operation_type: Optional[str] = None
    params: Mapping[str, str] = field(default_factory=dict)
    path_inputs: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        object.__setattr__(self, "path_inputs", MappingProxyType(dict(self.path_inputs)))

    def bind_payload(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Merge identifiers taken from the path into the workflow payload.

        Raises:
            ClassificationError: If the payload names a different value
        """
        bound = dict(payload)
        for name, value in self.path_inputs.items():
            given = bound.get(name)
            if given is not None and given != value:
                raise ClassificationError(f"Payload {name}={given!r} conflicts with the path value {value!r}")
            bound[name] = value
        return bound

    @property
    def is_complex(self) -> bool:
        return self.kind == OperationKind.COMPLEX


@dataclass(frozen=True)
class ClassifiedRequest:
    """The original request together with its context and classification."""

    request: OperationRequest
    context: TenantContext
    classification: Classification


DEFAULT_ROUTES = (
    RouteRule("GET", "/health", OperationKind.SIMPLE, "health", "health", "read"),
    RouteRule("GET", "/api/v1/health", OperationKind.SIMPLE, "health", "health", "read"),
    RouteRule("POST", "/api/v1/auth/*", OperationKind.SIMPLE, "auth", "sessions", "create"),
    # Users
    RouteRule("GET", "/api/v1/users", OperationKind.SIMPLE, "users", "users", "read"),
    RouteRule("GET", "/api/v1/users/{user_id}", OperationKind.SIMPLE, "users", "users", "read"),
    RouteRule("PUT", "/api/v1/users/{user_id}", OperationKind.SIMPLE, "users", "users", "update"),
    RouteRule("DELETE", "/api/v1/users/{user_id}", OperationKind.SIMPLE, "users", "users", "delete"),
    RouteRule("POST", "/api/v1/users", OperationKind.COMPLEX, "users", operation_type="user_registration"),
    RouteRule(
        "POST", "/api/v1/users/{user_id}/switch-tenant", OperationKind.COMPLEX, "tenants",
        operation_type="switch_tenant", path_inputs=(("user_id", "user_id"),),
    ),
    # Tenants
    RouteRule("GET", "/api/v1/tenants", OperationKind.SIMPLE, "tenants", "tenants", "read"),
    RouteRule("GET", "/api/v1/tenants/{tenant_id}", OperationKind.SIMPLE, "tenants", "tenants", "read"),
    RouteRule("PUT", "/api/v1/tenants/{tenant_id}", OperationKind.SIMPLE, "tenants", "tenants", "update"),
    RouteRule("POST", "/api/v1/tenants", OperationKind.COMPLEX, "tenants", operation_type="create_tenant"),
    RouteRule("POST", "/api/v1/tenants/switch", OperationKind.COMPLEX, "tenants", operation_type="switch_tenant"),
    RouteRule(
        "POST", "/api/v1/tenants/{tenant_id}/migrate", OperationKind.COMPLEX, "tenants",
        operation_type="migrate_tenant", path_inputs=(("tenant_id", "target_tenant_id"),),
    ),
    RouteRule(
        "DELETE", "/api/v1/tenants/{tenant_id}", OperationKind.COMPLEX, "tenants",
        operation_type="terminate_tenant", path_inputs=(("tenant_id", "target_tenant_id"),),
    ),
    # Files
    RouteRule("GET", "/api/v1/files/*", OperationKind.SIMPLE, "files", "files", "read"),
    RouteRule("POST", "/api/v1/files/*", OperationKind.COMPLEX, "files", operation_type="file_upload"),
    # Explicit workflow submission
    RouteRule("POST", "/api/v1/workflows/{workflow_type}", OperationKind.COMPLEX, "workflows"),
)


class RequestClassifier:
    """
    Classifies requests against a static routing table.

    The most specific matching rule wins. Two equally specific matches of
    different kinds resolve to SIMPLE. Anything unmatched is SIMPLE and is
    routed to the service named by the path.
    """

    def __init__(self, rules: Iterable[RouteRule] = DEFAULT_ROUTES) -> None:
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple:
        return self._rules

    def classify(self, request: OperationRequest) -> Classification:
        """
        Classify an operation request.

        Args:
            request: Inbound request

        Returns:
            Classification

        Raises:
            ClassificationError: If the request is malformed
        """
        self._validate(request)
        segments = _split(request.path)

        matches = []
        for rule in self._rules:
            params = rule.match(request.method, segments)
            if params is not None:
                matches.append((rule, params))

        if not matches:
            return self._default(request, segments)

        best = max(rule.specificity for rule, _ in matches)
        top = [(rule, params) for rule, params in matches if rule.specificity == best]
        simple = [(rule, params) for rule, params in top if rule.kind == OperationKind.SIMPLE]
        rule, params = simple[0] if simple else top[0]

        if rule.kind == OperationKind.SIMPLE:
            return Classification(
                kind=OperationKind.SIMPLE,
                service=rule.service,
                resource=rule.resource or rule.service,
                action=rule.action or METHOD_ACTIONS[request.method],
                params=params,
            )

        operation_type = rule.operation_type or params.get("workflow_type", "").replace("-", "_")
        if not operation_type:
            raise ClassificationError(f"Cannot determine workflow type for {request.method} {request.path}")

        return Classification(
            kind=OperationKind.COMPLEX,
            service=rule.service,
            resource=rule.resource,
            action=rule.action,
            operation_type=operation_type,
            params=params,
            path_inputs={field_name: params[name] for name, field_name in rule.path_inputs if name in params},
        )

    def _default(self, request: OperationRequest, segments: List[str]) -> Classification:
        if len(segments) < 3 or tuple(segments[:2]) != API_PREFIX:
            raise ClassificationError(f"No route for {request.method} {request.path}")
        service = segments[2]
        return Classification(
            kind=OperationKind.SIMPLE,
            service=service,
            resource=service,
            action=METHOD_ACTIONS[request.method],
        )

    @staticmethod
    def _validate(request: OperationRequest) -> None:
        if request.method not in VALID_METHODS:
            raise ClassificationError(f"Unsupported method: {request.method}")
        if not request.path or not request.path.startswith("/"):
            raise ClassificationError(f"Path must be absolute: {request.path!r}")
        if not request.tenant_id:
            raise ClassificationError("Request is missing a tenant id")
        if not request.actor_id:
            raise ClassificationError("Request is missing an actor id")


def _split(path: str) -> List[str]:
    path = path.split("?", 1)[0]
    return [segment for segment in path.split("/") if segment]


def _is_placeholder(segment: str) -> bool:
    return segment.startswith("{") and segment.endswith("}")
