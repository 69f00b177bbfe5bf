"""HTTP control surface for an :class:`~freeip.engine.Engine`."""

from __future__ import annotations

import logging

from aiohttp import web

from .engine import Engine

logger = logging.getLogger(__name__)

ENGINE_KEY = web.AppKey("engine", Engine)


def _snapshot_response(engine: Engine, **extra: object) -> web.Response:
    payload = engine.get_snapshot().to_dict()
    payload.update(extra)
    return web.json_response(payload)


async def get_snapshot(request: web.Request) -> web.Response:
    return _snapshot_response(request.app[ENGINE_KEY])


async def request_scan(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    started = await engine.request_scan()
    if not started and not engine.session.scanning:
        logger.warning("Refused scan request: probe %s is not executable", engine.probe_path)
        raise web.HTTPConflict(
            text=f"probe {engine.probe_path} is missing or not executable"
        )
    return _snapshot_response(engine, started=started)


async def cancel_scan(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    cancelled = engine.cancel_scan()
    return _snapshot_response(engine, cancelled=cancelled)


async def _shutdown_engine(app: web.Application) -> None:
    await app[ENGINE_KEY].shutdown()


def create_app(engine: Engine) -> web.Application:
    app = web.Application()
    app[ENGINE_KEY] = engine
    app.router.add_get("/snapshot", get_snapshot)
    app.router.add_post("/scan", request_scan)
    app.router.add_post("/cancel", cancel_scan)
    app.on_shutdown.append(_shutdown_engine)
    return app


__all__ = ["ENGINE_KEY", "create_app"]
