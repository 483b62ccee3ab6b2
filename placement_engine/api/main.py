from fastapi import FastAPI

from placement_engine.api.routes.hosts import router as hosts_router
from placement_engine.api.routes.placement import router as placement_router
from placement_engine.api.routes.targets import router as targets_router
from placement_engine.container import PlacementServices


def create_app(services: PlacementServices) -> FastAPI:
    app = FastAPI(title="Placement Engine API")
    app.state.services = services

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(placement_router)
    app.include_router(hosts_router)
    app.include_router(targets_router)
    return app
