"""
Markup drift detection.

Independently of scrape runs, each source's listing page is loaded in its own
page and every configured selector is probed.  The per-source health score
and consecutive-failure counter drive alerts (medium -> high -> critical) and,
after a sustained low score, automatic disabling of the source.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from core.config import MonitorConfig, Settings, SourceConfig
from core.error_classifier import ErrorClassifier
from core.infra.rate_limiter import RateLimiterRegistry
from core.infra.scheduler import Scheduler
from core.interfaces import Browser, Page
from core.models import SelectorHealth, StructureAlert, StructureCheck, StructureCheckResult, utcnow

logger = logging.getLogger(__name__)

MONITORED_FIELDS = ("event_card", "title", "date", "location", "image")
JOB_ID = "structure_monitor"


class StructureMonitor:
    def __init__(
        self,
        settings: Settings,
        browser: Browser,
        *,
        scheduler: Optional[Scheduler] = None,
        registry: Optional[RateLimiterRegistry] = None,
    ) -> None:
        self.settings = settings
        self.config: MonitorConfig = settings.monitor
        self.browser = browser
        self.scheduler = scheduler
        self.registry = registry
        self.classifier = ErrorClassifier("structure-monitor")

        self.last_check: Dict[str, datetime] = {}
        self.health: Dict[str, int] = {}
        self.consecutive_failures: Dict[str, int] = {}
        self.low_health_streak: Dict[str, int] = {}
        self.last_results: Dict[str, StructureCheckResult] = {}
        self.alerts: List[StructureAlert] = []
        self.reset_stats()

    # ---------------------------------------------- #
    # Probing
    async def _probe(self, page: Page, selectors: Sequence[str]) -> SelectorHealth:
        """Try alternatives in order; the first with at least one match wins."""
        result = SelectorHealth(name="", all_selectors=list(selectors))
        for selector in selectors:
            try:
                elements = await page.query(selector)
            except Exception as e:
                # an invalid selector is itself drift worth reporting
                logger.debug(f"Selector {selector!r} raised: {e}")
                result.error = str(e)
                continue
            if elements:
                result.found = True
                result.element_count = len(elements)
                result.working_selector = selector
                result.error = None
                return result
        return result

    async def check_selectors(self, page: Page, source: str, source_cfg: SourceConfig) -> Dict[str, SelectorHealth]:
        alternatives = self.config.alternatives.get(source, {})
        results: Dict[str, SelectorHealth] = {}
        for field in MONITORED_FIELDS:
            selectors = source_cfg.selector_list(field)
            if not selectors:
                continue
            health = await self._probe(page, selectors)
            health.name = field
            if not health.found and alternatives.get(field):
                suggestion = await self._probe(page, alternatives[field])
                health.suggested_selector = suggestion.working_selector
            results[field] = health
        return results

    async def check_page_structure(self, page: Page, events_found: bool) -> StructureCheck:
        structural = self.config.structure_selectors
        has_navigation = (await self._probe(page, structural.get("navigation", []))).found
        has_footer = (await self._probe(page, structural.get("footer", []))).found
        return StructureCheck(
            has_title=bool((await page.title() or "").strip()),
            has_events=events_found,
            has_navigation=has_navigation,
            has_footer=has_footer,
            page_loaded=(await page.ready_state()) == "complete",
        )

    @staticmethod
    def calculate_overall_health(selectors: Dict[str, SelectorHealth], structure: StructureCheck) -> int:
        """70% selector health, 30% structural signals (structure alone without selectors)."""
        signals = structure.signals()
        structure_health = sum(signals) / len(signals) * 100 if signals else 0.0
        if not selectors:
            return round(structure_health)
        selector_health = sum(s.health for s in selectors.values()) / len(selectors)
        return round(selector_health * 0.7 + structure_health * 0.3)

    async def check_scraper_structure(self, source: str) -> StructureCheckResult:
        source_cfg = self.settings.source(source)
        result = StructureCheckResult(source=source, url=source_cfg.test_url)
        self.total_checks += 1
        started = time.monotonic()

        try:
            async with self.browser.session() as page:
                if self.registry is not None:
                    await self.registry.create_for_domain(source_cfg.base_url, source_cfg.rate_limit).wait()
                response = await page.navigate(source_cfg.test_url, timeout=source_cfg.timeout)
                if not response.ok:
                    result.error = f"HTTP {response.status} for {source_cfg.test_url}"
                else:
                    selectors = await self.check_selectors(page, source, source_cfg)
                    card = selectors.get("event_card")
                    structure = await self.check_page_structure(page, bool(card and card.found))
                    result.selectors = selectors
                    result.structure = structure
                    result.overall_health = self.calculate_overall_health(selectors, structure)
                    result.success = True
        except Exception as e:
            outcome = self.classifier.handle(e, {"source": source, "step": "structure_check"})
            if outcome.is_critical:
                raise
            result.error = outcome.error.message

        logger.info(
            f"Structure check {source}: health {result.overall_health} "
            f"({'ok' if result.success else result.error}) in {int((time.monotonic() - started) * 1000)}ms"
        )
        self.update_state(source, result)
        await self.process_result(source, result)
        return result

    async def check_all_structures(self) -> Dict[str, StructureCheckResult]:
        results = {}
        for source in self.settings.enabled_sources():
            results[source] = await self.check_scraper_structure(source)
        return results

    # ---------------------------------------------- #
    # State & alerts
    def update_state(self, source: str, result: StructureCheckResult) -> None:
        self.last_check[source] = result.timestamp
        self.health[source] = result.overall_health
        self.last_results[source] = result

        if not result.success or result.overall_health < self.config.failure_health:
            self.consecutive_failures[source] = self.consecutive_failures.get(source, 0) + 1
        else:
            self.consecutive_failures[source] = 0

        if result.overall_health < self.config.disable_floor:
            self.low_health_streak[source] = self.low_health_streak.get(source, 0) + 1
        else:
            self.low_health_streak[source] = 0

    def alert_severity(self, failures: int) -> Optional[str]:
        bands = self.config.alert_bands
        for severity in ("critical", "high", "medium"):
            if severity in bands and failures >= bands[severity]:
                return severity
        return None

    def suggest_alternative_selectors(self, source: str, field: str) -> List[str]:
        return list(self.config.alternatives.get(source, {}).get(field, []))

    async def process_result(self, source: str, result: StructureCheckResult) -> None:
        failures = self.consecutive_failures.get(source, 0)
        if failures == 0:
            self.resolve_alerts(source)
        elif self.alert_severity(failures) is not None:
            self.generate_alert(source, result, failures)

        if result.success and result.failing_selectors:
            self.structural_changes_detected += 1
            logger.warning(f"Possible markup change on {source}: {', '.join(result.failing_selectors)} not found")

    def generate_alert(self, source: str, result: StructureCheckResult, failures: int) -> StructureAlert:
        suggestions: Dict[str, List[str]] = {}
        for field in result.failing_selectors:
            options = self.suggest_alternative_selectors(source, field)
            suggested = result.selectors[field].suggested_selector
            if suggested:
                options = [suggested] + [o for o in options if o != suggested]
            suggestions[field] = options

        alert = StructureAlert(
            id=f"alert_{source}_{int(time.time() * 1000)}_{len(self.alerts)}",
            source=source,
            severity=self.alert_severity(failures) or "medium",
            message=f"{failures} consecutive failed structure checks on {source}",
            consecutive_failures=failures,
            health=result.overall_health,
            failing_selectors=result.failing_selectors,
            suggestions=suggestions,
        )
        self.alerts.append(alert)
        self.alerts_generated += 1

        logger.error(
            f"ALERT [{alert.severity}] {alert.message} (health {alert.health}, "
            f"failing: {', '.join(alert.failing_selectors) or result.error or 'none'})"
        )
        return alert

    def resolve_alerts(self, source: str) -> int:
        resolved = 0
        for alert in self.alerts:
            if alert.source == source and not alert.resolved:
                alert.resolved = True
                alert.resolved_at = utcnow()
                resolved += 1
        if resolved:
            self.alerts_resolved += resolved
            logger.info(f"{source} recovered, resolved {resolved} alert(s)")
        return resolved

    def is_source_enabled(self, source: str) -> bool:
        return self.low_health_streak.get(source, 0) < self.config.disable_after

    # ---------------------------------------------- #
    # Reporting
    @staticmethod
    def _status(health: int) -> str:
        if health >= 80:
            return "healthy"
        if health >= 50:
            return "warning"
        return "critical"

    def calculate_overall_system_health(self) -> int:
        if not self.health:
            return 0
        return round(sum(self.health.values()) / len(self.health))

    def get_health_report(self) -> Dict[str, Any]:
        scrapers = {}
        for source, health in self.health.items():
            scrapers[source] = {
                "health": health,
                "consecutive_failures": self.consecutive_failures.get(source, 0),
                "last_check": self.last_check.get(source),
                "status": self._status(health),
                "disabled": not self.is_source_enabled(source),
            }
        return {
            "timestamp": utcnow(),
            "overall_health": self.calculate_overall_system_health(),
            "scrapers": scrapers,
            "alerts": [a for a in self.alerts if not a.resolved],
            "stats": self.get_stats(),
        }

    def get_stats(self) -> Dict[str, int]:
        return {
            "total_checks": self.total_checks,
            "structural_changes_detected": self.structural_changes_detected,
            "alerts_generated": self.alerts_generated,
            "alerts_resolved": self.alerts_resolved,
        }

    def reset_stats(self) -> None:
        self.total_checks = 0
        self.structural_changes_detected = 0
        self.alerts_generated = 0
        self.alerts_resolved = 0
        self.alerts = []

    # ---------------------------------------------- #
    # Timer
    def start_monitoring(self, scheduler: Optional[Scheduler] = None) -> None:
        self.scheduler = scheduler or self.scheduler
        if self.scheduler is None:
            raise ValueError("start_monitoring needs a Scheduler")
        self.scheduler.add_interval_job(
            self.check_all_structures, hours=self.config.check_interval_hours, job_id=JOB_ID
        )
        logger.info(f"Structure monitoring every {self.config.check_interval_hours}h")

    def stop_monitoring(self) -> None:
        if self.scheduler is not None and self.scheduler.remove_job(JOB_ID):
            logger.info("Structure monitoring stopped")
