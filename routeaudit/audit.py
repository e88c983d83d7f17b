"""
RouteAudit - Audit orchestration
Fingerprint -> plan -> probe -> aggregate for a fixed target set, optionally
preceded by a crawl. Writes the findings, fingerprints and summary artifacts.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from routeaudit.aggregator import FindingAggregator, build_aggregator
from routeaudit.ai_agent import AIAgentClient, ai_agent_usable
from routeaudit.config import MODES, AuditConfig, ensure_dirs
from routeaudit.crawler import Crawler, CrawlResult
from routeaudit.fingerprint import Fingerprinter
from routeaudit.inputs import InputError, parse_targets, select_targets
from routeaudit.models import OWASP_CATEGORIES, SEVERITIES, AuditedFinding, Fingerprint
from routeaudit.output import FINDINGS_FILE, FINGERPRINTS_FILE, SUMMARY_FILE, utc_timestamp, write_json_atomic
from routeaudit.planner import ProbePlanner, build_planner
from routeaudit.scanner import ProbeEngine, create_probe_client

logger = logging.getLogger(__name__)

SEVERITY_PENALTY = {"critical": 25, "high": 15, "medium": 8, "low": 3}


def security_score(by_severity: Dict[str, int]) -> int:
    penalty = sum(SEVERITY_PENALTY[s] * int(by_severity.get(s, 0)) for s in SEVERITY_PENALTY)
    return max(0, 100 - penalty)


def summarize(findings: List[AuditedFinding]) -> dict:
    by_severity = {s: 0 for s in SEVERITIES}
    by_owasp: Dict[str, int] = {}
    by_attack: Dict[str, int] = {}
    for item in findings:
        by_severity[item.severity] = by_severity.get(item.severity, 0) + 1
        owasp = OWASP_CATEGORIES.get(item.attack, "Unknown")
        by_owasp[owasp] = by_owasp.get(owasp, 0) + 1
        by_attack[item.attack.value] = by_attack.get(item.attack.value, 0) + 1
    return {
        "total": len(findings),
        "bySeverity": by_severity,
        "byOwasp": dict(sorted(by_owasp.items())),
        "byAttack": dict(sorted(by_attack.items())),
        "securityScore": security_score(by_severity),
    }


@dataclass
class AuditReport:
    mode: str
    targets: List[str]
    findings: List[AuditedFinding]
    fingerprints: List[Fingerprint]
    summary: dict
    files: Dict[str, Path] = field(default_factory=dict)
    crawl: Optional[CrawlResult] = None


class AuditRunner:
    """Runs one audit with a shared probe client and optional AI services."""

    def __init__(
        self,
        config: Optional[AuditConfig] = None,
        client=None,
        ai_client: Optional[AIAgentClient] = None,
        planner: Optional[ProbePlanner] = None,
        aggregator: Optional[FindingAggregator] = None,
        crawler: Optional[Crawler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or AuditConfig()
        self.client = client
        self.ai_client = ai_client
        self.planner = planner
        self.aggregator = aggregator
        self.crawler = crawler
        self._sleep = sleep

    @property
    def output_dir(self) -> Path:
        return Path(self.config.output_dir)

    def _ai_client(self) -> Optional[AIAgentClient]:
        if self.ai_client is None and ai_agent_usable(self.config.ai):
            self.ai_client = AIAgentClient()
        return self.ai_client

    async def probe(self, targets: List[str], mode: str = "deep") -> AuditReport:
        """Fingerprint, plan, probe and aggregate a fixed list of target URLs."""
        if mode not in MODES:
            raise InputError(f"Unknown mode {mode!r}, expected one of {', '.join(MODES)}")
        targets = list(dict.fromkeys(targets))
        if not targets:
            raise InputError("No URLs to probe")
        ensure_dirs(self.output_dir)

        probe_cfg = self.config.probe
        owns_client = self.client is None
        client = self.client or create_probe_client(probe_cfg)
        fingerprints_path = self.output_dir / FINGERPRINTS_FILE.format(mode=mode)
        try:
            fingerprinter = Fingerprinter(client, probe_cfg)
            fingerprints: Dict[str, Fingerprint] = {}
            for url in targets:
                fp = await fingerprinter.fingerprint(url)
                fingerprints[url] = fp
                logger.info("Fingerprinted %s: status=%s server=%s db=%s",
                            url, fp.status, fp.server or "-", ",".join(fp.db_hints) or "-")
                write_json_atomic(fingerprints_path, [f.to_dict() for f in fingerprints.values()])

            ai_client = self._ai_client()
            planner = self.planner or build_planner(ai_client, self.config.ai)
            plan = await planner.plan(targets, mode, fingerprints)

            engine = ProbeEngine(client, probe_cfg, mode=mode, sleep=self._sleep)
            url_delay = probe_cfg.quick_url_delay if mode == "quick" else probe_cfg.url_delay
            raw_findings = []
            for i, url in enumerate(targets, 1):
                categories = plan.get(url) or []
                logger.info("[%d/%d] Probing %s with: %s", i, len(targets), url,
                            ", ".join(c.value for c in categories) or "(none)")
                found = await engine.run(url, categories)
                raw_findings.extend(found)
                if found:
                    logger.info("    %d finding(s)", len(found))
                if i < len(targets) and url_delay > 0:
                    await self._sleep(url_delay)
        finally:
            if owns_client:
                await client.aclose()

        aggregator = self.aggregator or build_aggregator(
            self._ai_client(), self.config.ai, delay=probe_cfg.solution_delay, sleep=self._sleep,
        )
        logger.info("Attaching solutions to %d finding(s)", len(raw_findings))
        audited = await aggregator.aggregate(raw_findings)

        summary = summarize(audited)
        summary.update({"generatedAt": utc_timestamp(), "mode": mode, "targets": len(targets)})

        files = {
            "findings": write_json_atomic(self.output_dir / FINDINGS_FILE.format(mode=mode),
                                          [f.to_dict() for f in audited]),
            "fingerprints": fingerprints_path,
            "summary": write_json_atomic(self.output_dir / SUMMARY_FILE.format(mode=mode), summary),
        }
        return AuditReport(
            mode=mode,
            targets=targets,
            findings=audited,
            fingerprints=list(fingerprints.values()),
            summary=summary,
            files=files,
        )

    async def run(self, start_url: str, mode: str = "deep", max_pages: Optional[int] = None,
                  select: bool = False) -> AuditReport:
        """Crawl start_url, then probe the quick or deep snapshot."""
        if mode not in MODES:
            raise InputError(f"Unknown mode {mode!r}, expected one of {', '.join(MODES)}")
        ensure_dirs(self.output_dir)
        crawler = self.crawler or Crawler(self.config.crawl, output_dir=self.output_dir)
        result = await crawler.crawl(start_url, max_pages=max_pages)

        snapshot = result.quick if mode == "quick" else result.deep
        targets = parse_targets(snapshot.to_dict())
        if select:
            targets = select_targets(targets)
            if not targets:
                raise InputError("No suitable URLs left after target selection")
        logger.info("Probing %d target(s) from the %s snapshot", len(targets), mode)

        report = await self.probe(targets, mode)
        report.crawl = result
        return report

    async def close(self):
        if self.ai_client is not None:
            await self.ai_client.close()
