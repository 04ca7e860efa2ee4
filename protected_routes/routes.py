"""
FastAPI wiring: resolves each route's policy at registration time, installs the
authorization gate as the route's first dependency, and publishes a metadata route at
/.well-known/oauth-protected-resource<route-template> for every protected route.

Routes registered through ProtectedRoutes (add_route or the get/post/... decorators) take an
explicit declaration. Routes added afterwards with the app's own decorators go through the
router's route class, which ProtectedRoutes replaces, and follow the global default.
Routes registered before ProtectedRoutes, or copied in by include_router, are not guarded;
unmanaged_routes() lists them. Register on an app or on a router without a prefix.
"""
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.routing import APIRoute

from protected_routes.config import ProtectedRoutesOptions
from protected_routes.gate import AuthorizationGate, Validator
from protected_routes.metadata import build_metadata_document
from protected_routes.paths import metadata_path, to_brace_template, to_colon_template
from protected_routes.policy import ProtectionConfig, RouteDescriptor, RouteKind, RoutePolicy, resolve_policy

logger = logging.getLogger(__name__)

Protection = ProtectionConfig | bool | Mapping | None


class DuplicateRouteError(Exception):
    """A route with the same path and method is already registered."""

    def __init__(self, method: str, path: str):
        super().__init__(f"Route {method} {path} is already registered")
        self.method = method
        self.path = path


class ProtectedRoutes:
    """
    Route registrar enforcing bearer-token authorization on protected routes.

    Args:
        app: FastAPI app or APIRouter to register on.
        options: Process-wide options (origin, authorization servers, default protection).
        validator: Object with async validate(token, url, scopes) -> bool, e.g. TokenValidator.
    """

    def __init__(self, app: FastAPI | APIRouter, options: ProtectedRoutesOptions, validator: Validator):
        self.router: APIRouter = app.router if isinstance(app, FastAPI) else app
        self.options = options
        self.gate = AuthorizationGate(options, validator)
        self.logger = options.logger or logger
        self._policies: dict[tuple[str, str], RoutePolicy] = {}
        self._metadata_scopes: dict[str, tuple[str, ...]] = {}
        self._gates: list[Callable[..., Any]] = []

        existing = self.unmanaged_routes()
        if existing and options.all_routes_require_authorization:
            self.logger.warning(
                "%d route(s) registered before ProtectedRoutes are not guarded: %s",
                len(existing),
                ", ".join(f"{method} {path}" for method, path in existing),
            )
        self._base_route_class: type[APIRoute] = self.router.route_class
        self.router.route_class = self._guarded_route_class()

    @property
    def policies(self) -> dict[tuple[str, str], RoutePolicy]:
        """Resolved policy per (METHOD, colon template)."""
        return dict(self._policies)

    def unmanaged_routes(self) -> list[tuple[str, str]]:
        """(METHOD, path) of API routes on the router that never had a policy resolved."""
        prefix = self.router.prefix
        unmanaged = []
        for route in self.router.routes:
            if not isinstance(route, APIRoute):
                continue
            path = route.path[len(prefix):] if prefix and route.path.startswith(prefix) else route.path
            template = to_colon_template(path)
            for method in sorted(route.methods):
                if (method, template) not in self._policies:
                    unmanaged.append((method, route.path))
        return unmanaged

    def add_route(
        self,
        path: str,
        endpoint: Callable[..., Any],
        *,
        methods: Iterable[str] = ("GET",),
        protected: Protection = None,
        **route_kwargs: Any,
    ) -> list[RoutePolicy]:
        """
        Register endpoint for the given methods; returns the resolved policies in method order.

        Several protected routes sharing one template (GET and POST /items/:id) share one
        metadata route, which publishes the scopes of the first registration.
        """
        route_path = to_brace_template(path)
        methods = [method.upper() for method in methods]
        self._check_duplicates(route_path, methods)

        dependencies = list(route_kwargs.pop("dependencies", None) or [])
        gate = self._protect(route_path, methods, protected)
        if gate is not None:
            dependencies.insert(0, Depends(gate))
        self.router.add_api_route(
            route_path,
            endpoint,
            methods=methods,
            dependencies=dependencies,
            route_class_override=self._base_route_class,
            **route_kwargs,
        )
        template = to_colon_template(route_path)
        return [self._policies[(method, template)] for method in methods]

    def route(self, path: str, *, methods: Iterable[str], protected: Protection = None, **route_kwargs: Any):
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.add_route(path, func, methods=methods, protected=protected, **route_kwargs)
            return func
        return decorator

    def get(self, path: str, *, protected: Protection = None, **route_kwargs: Any):
        return self.route(path, methods=["GET"], protected=protected, **route_kwargs)

    def post(self, path: str, *, protected: Protection = None, **route_kwargs: Any):
        return self.route(path, methods=["POST"], protected=protected, **route_kwargs)

    def put(self, path: str, *, protected: Protection = None, **route_kwargs: Any):
        return self.route(path, methods=["PUT"], protected=protected, **route_kwargs)

    def patch(self, path: str, *, protected: Protection = None, **route_kwargs: Any):
        return self.route(path, methods=["PATCH"], protected=protected, **route_kwargs)

    def delete(self, path: str, *, protected: Protection = None, **route_kwargs: Any):
        return self.route(path, methods=["DELETE"], protected=protected, **route_kwargs)

    def _guarded_route_class(self) -> type[APIRoute]:
        registrar = self

        class GuardedRoute(self._base_route_class):
            """Route class for routes added with the app's own decorators; applies the global default."""

            def __init__(self, path: str, endpoint: Callable[..., Any], **kwargs: Any):
                dependencies = list(kwargs.pop("dependencies", None) or [])
                if not any(registrar._is_gate(d) for d in dependencies):
                    prefix = registrar.router.prefix
                    route_path = path[len(prefix):] if prefix and path.startswith(prefix) else path
                    methods = [method.upper() for method in kwargs.get("methods") or ["GET"]]
                    gate = registrar._protect(route_path, methods, None)
                    if gate is not None:
                        dependencies.insert(0, Depends(gate))
                super().__init__(path, endpoint, dependencies=dependencies, **kwargs)

        return GuardedRoute

    def _is_gate(self, dependency: Any) -> bool:
        return any(getattr(dependency, "dependency", None) is gate for gate in self._gates)

    def _check_duplicates(self, route_path: str, methods: Iterable[str]) -> None:
        full_path = self.router.prefix + route_path
        for existing in self.router.routes:
            if not isinstance(existing, APIRoute) or existing.path != full_path:
                continue
            for method in methods:
                if method in existing.methods:
                    raise DuplicateRouteError(method, full_path)

    def _protect(self, route_path: str, methods: Iterable[str], protection: Protection) -> Callable[..., Any] | None:
        """Resolve and record one policy per method; returns the gate if any method is protected."""
        template = to_colon_template(route_path)
        policies: dict[str, RoutePolicy] = {}
        for method in methods:
            descriptor = RouteDescriptor(path=template, method=method, protection=protection)
            policy = resolve_policy(descriptor, self.options.all_routes_require_authorization)
            self._policies[(method, template)] = policy
            policies[method] = policy

        protected = [policy for policy in policies.values() if policy.requires_authorization]
        if not protected:
            return None
        for policy in protected:
            self._add_metadata_route(route_path, template, policy)
        return self._gate_dependency(policies)

    def _add_metadata_route(self, route_path: str, template: str, policy: RoutePolicy) -> None:
        meta_template = metadata_path(template)
        published = self._metadata_scopes.get(meta_template)
        if published is not None:
            if published != policy.required_scopes:
                self.logger.debug(
                    "Metadata route %s already publishes scopes %s; scopes %s not published",
                    meta_template,
                    list(published),
                    list(policy.required_scopes),
                )
            return

        meta_path = metadata_path(route_path)
        descriptor = RouteDescriptor(path=meta_template, method="GET", kind=RouteKind.SYNTHETIC_METADATA)
        try:
            self._check_duplicates(meta_path, ["GET"])
        except DuplicateRouteError:
            # A route the application registered itself already serves this path
            self.logger.debug("Metadata route %s already registered", meta_path)
            return

        self.router.add_api_route(
            meta_path,
            self._metadata_endpoint(template, policy.required_scopes),
            methods=["GET"],
            tags=["well-known"],
            name="oauth_protected_resource",
            route_class_override=self._base_route_class,
        )
        self._policies[("GET", meta_template)] = resolve_policy(descriptor)
        self._metadata_scopes[meta_template] = policy.required_scopes

    def _metadata_endpoint(self, path_template: str, scopes: tuple[str, ...]) -> Callable[..., Any]:
        options = self.options

        async def protected_resource_metadata(request: Request) -> dict:
            """OAuth 2.0 Protected Resource Metadata for this route."""
            return build_metadata_document(
                options.origin,
                options.authorization_servers,
                path_template,
                request.path_params,
                scopes,
            ).to_dict()

        return protected_resource_metadata

    def _gate_dependency(self, policies: Mapping[str, RoutePolicy]) -> Callable[..., Any]:
        gate = self.gate
        origin = self.options.origin

        async def require_authorization(request: Request) -> None:
            policy = policies.get(request.method)
            if policy is None or not policy.requires_authorization:
                return
            target_url = origin + request.url.path
            if request.url.query:
                target_url += "?" + request.url.query
            error = await gate.authorize(
                request.headers.get("authorization"),
                request.url.path,
                target_url,
                policy.required_scopes,
            )
            if error is not None:
                raise HTTPException(
                    status_code=error.status_code,
                    detail=error.to_dict(),
                    headers={"WWW-Authenticate": error.www_authenticate},
                )

        self._gates.append(require_authorization)
        return require_authorization
