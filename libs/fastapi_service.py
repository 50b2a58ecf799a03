"""
FastAPI service factory for the fleet real-time service.

Builds the application with CORS, a health probe and Prometheus metrics so
the service module only registers its own routes and business counters.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


class ServiceMetrics:
    """Prometheus registry for one service plus its named business counters."""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.registry = CollectorRegistry()

        self.request_count = Counter(
            "service_requests_total",
            "Total HTTP requests handled by the service",
            ["service", "method", "path", "http_status"],
            registry=self.registry,
        )
        self.request_latency = Histogram(
            "service_request_duration_seconds",
            "Request latency in seconds",
            ["service", "path"],
            registry=self.registry,
        )

        self.business_metrics: Dict[str, Counter] = {}

    def record_request(self, method: str, path: str, status_code: int, duration: float):
        self.request_count.labels(
            service=self.service_name,
            method=method,
            path=path,
            http_status=status_code,
        ).inc()
        self.request_latency.labels(service=self.service_name, path=path).observe(duration)

    def counter(self, key: str, name: str, description: str, labels: List[str] = None) -> Counter:
        """Register a business counter under ``key`` (idempotent per key)."""
        if key not in self.business_metrics:
            self.business_metrics[key] = Counter(
                name, description, labels or [], registry=self.registry
            )
        return self.business_metrics[key]

    def get_metrics_prometheus(self) -> str:
        return generate_latest(self.registry).decode("utf-8")


class CORSMiddlewareConfig:
    def __init__(
        self,
        allow_origins: List[str] = None,
        allow_credentials: bool = True,
        allow_methods: List[str] = None,
        allow_headers: List[str] = None,
    ):
        self.allow_origins = allow_origins or ["*"]
        self.allow_credentials = allow_credentials
        self.allow_methods = allow_methods or ["*"]
        self.allow_headers = allow_headers or ["*"]


class ServiceAppConfig:
    """Settings for one service application."""

    def __init__(
        self,
        title: str,
        description: str,
        service_name: str,
        version: str = "1.0.0",
        cors_config: Optional[CORSMiddlewareConfig] = None,
        enable_metrics: bool = True,
        lifespan: Optional[Callable[[FastAPI], Any]] = None,
    ):
        self.title = title
        self.description = description
        self.service_name = service_name
        self.version = version
        self.cors_config = cors_config or CORSMiddlewareConfig()
        self.enable_metrics = enable_metrics
        self.lifespan = lifespan


class FastAPIServiceFactory:
    """
    Creates standardized FastAPI applications.

    Every app gets CORS, ``GET /health`` and, when metrics are enabled, the
    request middleware and ``GET /metrics``. Metrics are exposed on
    ``app.state.metrics``.
    """

    def __init__(self, config: ServiceAppConfig):
        self.config = config
        self.metrics = ServiceMetrics(config.service_name) if config.enable_metrics else None

    def create_app(self) -> FastAPI:
        app = FastAPI(
            title=self.config.title,
            description=self.config.description,
            version=self.config.version,
            lifespan=self.config.lifespan,
        )

        cors = self.config.cors_config
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors.allow_origins,
            allow_credentials=cors.allow_credentials,
            allow_methods=cors.allow_methods,
            allow_headers=cors.allow_headers,
        )

        self._add_health_endpoint(app)
        if self.metrics:
            self._add_metrics_middleware(app)
            self._add_metrics_endpoint(app)

        app.state.metrics = self.metrics
        app.state.service_name = self.config.service_name
        return app

    def add_business_metric(
        self, key: str, name: str, description: str, labels: List[str] = None
    ) -> Optional[Counter]:
        """
        Add a business counter to the service registry.

        Returns:
            The Counter, or None when metrics are disabled
        """
        if not self.metrics:
            return None
        return self.metrics.counter(key, name, description, labels)

    def _add_metrics_middleware(self, app: FastAPI):
        metrics = self.metrics

        @app.middleware("http")
        async def prometheus_middleware(request: Request, call_next):
            start = time.time()
            response = await call_next(request)
            # label by route template so ids do not explode cardinality
            route = request.scope.get("route")
            path = getattr(route, "path", request.url.path)
            metrics.record_request(
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration=time.time() - start,
            )
            return response

    def _add_metrics_endpoint(self, app: FastAPI):
        metrics = self.metrics

        @app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=metrics.get_metrics_prometheus(),
                media_type=CONTENT_TYPE_LATEST,
            )

    def _add_health_endpoint(self, app: FastAPI):
        service_name = self.config.service_name

        @app.get("/health")
        async def health_check():
            return {"status": "ok", "service": service_name}
