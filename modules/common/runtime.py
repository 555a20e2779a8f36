"""Process runtime for the trending bot.

Owns the pieces that live for the whole process: the aiohttp status server
(``/``, ``/ready``, ``/health``, ``/healthz``, ``/trending``), a small task
supervisor for background loops, and extension loading for the Discord bot.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from aiohttp import web
from discord.ext import commands

from config.runtime import get_log_level, get_port
from shared import health as healthmod
from shared.config import cfg, get_bot_name, get_env_name, get_log_channel_id
from shared.logging import get_trace_id, set_trace_id, setup_logging

if TYPE_CHECKING:  # pragma: no cover - typing only
    from modules.trending.engine import TrendingEngine

__all__ = [
    "EXTENSIONS",
    "Runtime",
    "Scheduler",
    "create_app",
    "monotonic_ms",
]

log = logging.getLogger("hivemind.runtime")

EXTENSIONS: tuple[str, ...] = ("modules.trending",)

# Discord caps plain messages at 2000 characters.
_LOG_MESSAGE_LIMIT = 1800
_MIN_INTERVAL_S = 0.01
_DEFAULT_INTERVAL_S = 60.0

Interval = Union[float, Callable[[], float]]
Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def _clip(message: str, limit: int = _LOG_MESSAGE_LIMIT) -> str:
    text = message.strip()
    return text if len(text) <= limit else text[: limit - 1] + "…"


# === HTTP surface ===


def _identity() -> dict[str, Any]:
    return {
        "bot": get_bot_name(),
        "env": get_env_name(),
        "version": cfg.get("BOT_VERSION", "dev"),
    }


def _status_response(endpoint: str, ok: bool, **fields: Any) -> web.Response:
    payload = {"ok": ok, "endpoint": endpoint, **_identity(), **fields}
    return web.json_response(payload, status=200 if ok else 503)


async def _root(_: web.Request) -> web.Response:
    return web.json_response({"ok": True, **_identity(), "trace": get_trace_id()})


async def _ready(_: web.Request) -> web.Response:
    return web.json_response(
        {"ok": healthmod.overall_ready(), "components": healthmod.components_snapshot()}
    )


async def _health(_: web.Request) -> web.Response:
    components = healthmod.components_snapshot()
    ok = all(state.get("ok", False) for state in components.values())
    return _status_response(
        "health", ok, components=components, ready=healthmod.overall_ready()
    )


async def _healthz(_: web.Request) -> web.Response:
    return _status_response("healthz", healthmod.overall_ready())


def _trending_handler(runtime: "Runtime | None") -> Handler:
    async def trending(_: web.Request) -> web.Response:
        engine = runtime.trending_engine() if runtime is not None else None
        if engine is None:
            return web.json_response({"ok": False, "reason": "trending not loaded"}, status=503)
        payload = engine.snapshot().as_dict()
        payload["ok"] = True
        payload["session"] = engine.session_id
        return web.json_response(payload)

    return trending


def _access_middleware(access_log: logging.Logger):
    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        trace = set_trace_id(request.headers.get("X-Trace-Id") or None)
        started = monotonic_ms()
        status = 500
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            status = exc.status
            raise
        else:
            status = response.status
            response.headers["X-Trace-Id"] = trace
            return response
        finally:
            access_log.info(
                "http_request",
                extra={
                    "trace": trace,
                    "method": request.method,
                    "path": request.path,
                    "status": status,
                    "ms": monotonic_ms() - started,
                },
            )

    return middleware


async def create_app(*, runtime: "Runtime | None" = None) -> web.Application:
    """Build the status app; ``runtime`` backs the ``/trending`` route."""

    access_log = setup_logging(
        level=get_log_level(),
        static_fields={"env": get_env_name(), "bot": get_bot_name()},
    )
    healthmod.set_component("runtime", True)

    app = web.Application(middlewares=[_access_middleware(access_log)])
    routes: tuple[tuple[str, Handler], ...] = (
        ("/", _root),
        ("/ready", _ready),
        ("/health", _health),
        ("/healthz", _healthz),
        ("/trending", _trending_handler(runtime)),
    )
    for path, handler in routes:
        app.router.add_get(path, handler)
    return app


# === Background tasks ===


class _RecurringJob:
    """A job repeated forever, sleeping ``interval`` seconds before each run.

    A callable ``interval`` is asked again before every sleep, so the cadence
    follows live config.
    """

    def __init__(
        self,
        scheduler: "Scheduler",
        *,
        interval: Interval,
        tag: str | None = None,
        name: str | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._interval = interval
        self.tag = tag
        self.name = name
        self.runs = 0

    def _next_delay(self) -> float:
        raw = self._interval() if callable(self._interval) else self._interval
        try:
            return max(_MIN_INTERVAL_S, float(raw))
        except (TypeError, ValueError):
            log.warning("bad job interval; using default", extra={"job_name": self.name})
            return _DEFAULT_INTERVAL_S

    async def _run_once(self, job: Callable[[], Any], label: str) -> None:
        try:
            result = job()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("recurring job error", extra={"job_name": label, "tag": self.tag})
        finally:
            self.runs += 1

    def do(self, job: Callable[[], Any]) -> asyncio.Task:
        label = self.name or getattr(job, "__name__", "recurring_job")

        async def loop() -> None:
            while True:
                await asyncio.sleep(self._next_delay())
                await self._run_once(job, label)

        return self._scheduler.spawn(loop(), name=label)


class Scheduler:
    """Tracks background tasks so they can be cancelled together."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, *, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def every(
        self,
        *,
        seconds: float = 0.0,
        milliseconds: float = 0.0,
        interval: Callable[[], float] | None = None,
        tag: str | None = None,
        name: str | None = None,
    ) -> _RecurringJob:
        if interval is None:
            total = float(seconds) + float(milliseconds) / 1000.0
            return _RecurringJob(
                self, interval=total if total > 0 else _DEFAULT_INTERVAL_S, tag=tag, name=name
            )
        return _RecurringJob(self, interval=interval, tag=tag, name=name)

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, Exception):
                log.error(
                    "background task failed during shutdown",
                    exc_info=(type(result), result, result.__traceback__),
                    extra={"task": task.get_name()},
                )
        self._tasks.clear()


# === Runtime ===


class Runtime:
    """Wires the bot to the status server and its extensions."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self._web_app: Optional[web.Application] = None
        self._web_runner: Optional[web.AppRunner] = None
        self._web_site: Optional[web.TCPSite] = None

    def trending_engine(self) -> "TrendingEngine | None":
        return getattr(self.bot.get_cog("TrendingCog"), "engine", None)

    async def start_webserver(self, *, port: Optional[int] = None) -> None:
        if self._web_site is not None:
            return
        bind_port = get_port() if port is None else port
        self._web_app = await create_app(runtime=self)
        self._web_runner = web.AppRunner(self._web_app)
        await self._web_runner.setup()
        self._web_site = web.TCPSite(self._web_runner, host="0.0.0.0", port=bind_port)
        await self._web_site.start()
        log.info("status server listening", extra={"port": bind_port})

    async def shutdown_webserver(self) -> None:
        site, runner = self._web_site, self._web_runner
        self._web_app = self._web_runner = self._web_site = None
        if site is not None:
            await site.stop()
        if runner is not None:
            await runner.cleanup()

    async def _log_channel(self):
        channel_id = get_log_channel_id()
        if not channel_id:
            return None
        await self.bot.wait_until_ready()
        channel = self.bot.get_channel(channel_id)
        if channel is not None:
            return channel
        try:
            return await self.bot.fetch_channel(channel_id)
        except Exception:
            log.exception("log channel unavailable", extra={"channel_id": channel_id})
            return None

    async def send_log_message(self, message: str) -> None:
        """Post ``message`` to the ops log channel when one is configured."""

        content = _clip(str(message))
        if not content:
            return
        channel = await self._log_channel()
        if channel is None:
            return
        try:
            await channel.send(content)
        except Exception:
            log.exception("log channel send failed", extra={"channel_id": channel.id})

    async def load_extensions(self) -> None:
        for ext in EXTENSIONS:
            try:
                await self.bot.load_extension(ext)
            except Exception as exc:
                log.exception("extension failed to load", extra={"extension": ext})
                await self.send_log_message(f"❌ Failed to load {ext}: {exc}")
                continue
            log.info("extension loaded", extra={"extension": ext})

    async def start(self, token: str) -> None:
        await self.start_webserver()
        await self.load_extensions()
        await self.bot.start(token)

    async def close(self) -> None:
        await self.shutdown_webserver()
