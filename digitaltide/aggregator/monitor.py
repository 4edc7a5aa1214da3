"""
Continuous monitoring sessions.

Each session is one asyncio task that re-runs aggregation on a fixed
interval, diffs article fingerprints against what it has already seen and
notifies callbacks. Ticks of a session run sequentially, so a slow pass
delays the next one instead of overlapping it.
"""

import asyncio
import inspect
import time
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from digitaltide.core.errors import ConfigurationError
from digitaltide.core.logging import get_logger
from digitaltide.core.settings import get_settings
from digitaltide.core.time import utc_now

logger = get_logger(__name__)

EVENT_NEW_ARTICLES = "new_articles"
EVENT_ERROR = "error"


async def invoke_callback(callback: Callable, event: Dict[str, Any], monitor_id: str) -> None:
    """Run a sync or async callback; failures are logged, never raised."""
    try:
        if inspect.iscoroutinefunction(callback):
            await callback(event)
        else:
            result = await asyncio.to_thread(callback, event)
            if inspect.isawaitable(result):
                await result
    except Exception:
        logger.exception(f"Monitor {monitor_id} callback for '{event.get('type')}' event failed")


class MonitorSession:
    """State of one monitoring loop."""

    def __init__(self, monitor_id: str, aggregator: Any, interval: float,
                 aggregation_options: Dict[str, Any],
                 on_new_articles: Optional[Callable] = None,
                 on_error: Optional[Callable] = None,
                 webhook_urls: Optional[List[str]] = None,
                 max_tracked: Optional[int] = None):
        self.monitor_id = monitor_id
        self.aggregator = aggregator
        self.interval = interval
        self.aggregation_options = aggregation_options
        self.on_new_articles = on_new_articles
        self.on_error = on_error
        self.webhook_urls = list(webhook_urls or [])
        self.max_tracked = max_tracked or get_settings().monitor_max_tracked

        self.tracked_fingerprints: "OrderedDict[str, None]" = OrderedDict()
        self.start_time: datetime = utc_now()
        self.last_check: Optional[datetime] = None
        self.checks_performed = 0
        self.articles_found = 0
        self.errors = 0

        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._callback_tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"monitor-{self.monitor_id}")

    def add_done_callback(self, callback: Callable[[], None]) -> None:
        if self._task is not None:
            self._task.add_done_callback(lambda _: callback())

    def stop(self) -> None:
        """Signal the loop to exit before its next tick and drop tracked state."""
        self._stop.set()
        self.tracked_fingerprints.clear()

    async def wait_closed(self) -> None:
        tasks = [t for t in [self._task, *self._callback_tasks] if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _track(self, fingerprints: List[str]) -> List[str]:
        """Record fingerprints and return those not seen before, oldest evicted first."""
        new = []
        for fingerprint in fingerprints:
            if fingerprint in self.tracked_fingerprints:
                self.tracked_fingerprints.move_to_end(fingerprint)
                continue
            self.tracked_fingerprints[fingerprint] = None
            new.append(fingerprint)
        while len(self.tracked_fingerprints) > self.max_tracked:
            self.tracked_fingerprints.popitem(last=False)
        return new

    def _emit(self, callback: Optional[Callable], event: Dict[str, Any]) -> None:
        if callback is None:
            return
        task = asyncio.get_running_loop().create_task(invoke_callback(callback, event, self.monitor_id))
        self._callback_tasks.add(task)
        task.add_done_callback(self._callback_tasks.discard)

    def _event(self, event_type: str, **fields) -> Dict[str, Any]:
        return {
            'type': event_type,
            'monitor_id': self.monitor_id,
            'timestamp': utc_now().isoformat(),
            'webhook_urls': list(self.webhook_urls),
            **fields,
        }

    async def tick(self) -> None:
        """One monitoring pass."""
        self.checks_performed += 1
        self.last_check = utc_now()
        try:
            result = await self.aggregator.aggregate_from_multiple_sources(**self.aggregation_options)
        except Exception as e:
            self.errors += 1
            logger.exception(f"Monitor {self.monitor_id} aggregation failed")
            self._emit(self.on_error, self._event(EVENT_ERROR, error=str(e)))
            return

        if self._stop.is_set():
            return

        sources = result.metadata.get('sources', {})
        if sources and all(info.get('status') == 'error' for info in sources.values()):
            self.errors += 1
            self._emit(self.on_error, self._event(EVENT_ERROR, error="All sources failed",
                                                  sources=sources))

        new_fingerprints = set(self._track([article.fingerprint for article in result.articles]))
        if not new_fingerprints:
            return

        new_articles = [article for article in result.articles if article.fingerprint in new_fingerprints]
        self.articles_found += len(new_articles)
        logger.info(f"Monitor {self.monitor_id} found {len(new_articles)} new articles")
        self._emit(self.on_new_articles, self._event(
            EVENT_NEW_ARTICLES,
            count=len(new_articles),
            articles=[article.to_dict() for article in new_articles],
        ))

    async def _run(self) -> None:
        logger.info(f"Monitor {self.monitor_id} started (interval={self.interval}s)")
        while not self._stop.is_set():
            started = time.monotonic()
            await self.tick()
            remaining = max(0.0, self.interval - (time.monotonic() - started))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass
        logger.info(f"Monitor {self.monitor_id} stopped after {self.checks_performed} checks")

    def status(self) -> Dict[str, Any]:
        return {
            'id': self.monitor_id,
            'interval': self.interval,
            'options': dict(self.aggregation_options),
            'webhook_urls': list(self.webhook_urls),
            'running': self.running,
            'stats': {
                'start_time': self.start_time.isoformat(),
                'last_check': self.last_check.isoformat() if self.last_check else None,
                'checks_performed': self.checks_performed,
                'articles_found': self.articles_found,
                'errors': self.errors,
                'uptime': (utc_now() - self.start_time).total_seconds(),
                'tracked_articles': len(self.tracked_fingerprints),
            },
        }


class MonitorManager:
    """Registry of monitoring sessions for one aggregator."""

    def __init__(self, aggregator: Any, default_interval: Optional[float] = None):
        self.aggregator = aggregator
        self.default_interval = default_interval or get_settings().monitor_interval_seconds
        self.sessions: Dict[str, MonitorSession] = {}
        self._stopping: Set[MonitorSession] = set()

    def start_monitoring(self, interval: Optional[float] = None,
                         on_new_articles: Optional[Callable] = None,
                         on_error: Optional[Callable] = None,
                         webhook_urls: Optional[List[str]] = None,
                         **aggregation_options) -> Dict[str, Any]:
        """
        Start a monitoring session.

        Must be called from a running event loop. ``aggregation_options`` are
        passed to ``aggregate_from_multiple_sources`` on every tick; the
        result cache is bypassed unless ``use_cache`` is given explicitly.
        """
        interval = self.default_interval if interval is None else interval
        if interval <= 0:
            raise ConfigurationError(f"monitor interval must be > 0, got {interval}")

        aggregation_options.setdefault('use_cache', False)
        monitor_id = f"monitor_{uuid.uuid4().hex[:12]}"
        session = MonitorSession(monitor_id, self.aggregator, interval, aggregation_options,
                                 on_new_articles=on_new_articles, on_error=on_error,
                                 webhook_urls=webhook_urls)
        self.sessions[monitor_id] = session
        session.start()
        return {'success': True, 'monitor_id': monitor_id}

    def _release(self, session: MonitorSession) -> None:
        session.stop()
        if session.running:
            # Kept only until the in-flight tick finishes
            self._stopping.add(session)
            session.add_done_callback(lambda: self._stopping.discard(session))

    def stop_monitoring(self, monitor_id: str) -> Dict[str, Any]:
        session = self.sessions.pop(monitor_id, None)
        if session is None:
            return {'success': False, 'error': f"Monitor {monitor_id} not found"}
        self._release(session)
        return {'success': True, 'monitor_id': monitor_id}

    def stop_all_monitors(self) -> Dict[str, Any]:
        sessions = list(self.sessions.values())
        self.sessions.clear()
        for session in sessions:
            self._release(session)
        logger.info(f"Stopped {len(sessions)} monitors")
        return {'success': True, 'stopped': len(sessions)}

    def get_monitor_status(self) -> List[Dict[str, Any]]:
        return [session.status() for session in self.sessions.values()]

    async def close(self) -> None:
        """Stop every session and wait for in-flight ticks and callbacks."""
        self.stop_all_monitors()
        pending = list(self._stopping)
        for session in pending:
            await session.wait_closed()
        self._stopping.clear()
