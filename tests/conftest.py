import asyncio
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from routeaudit.ai_agent import normalize_ai_agent_config
from routeaudit.config import AuditConfig, CrawlConfig, ProbeConfig


async def no_sleep(_seconds: float) -> None:
    return None


class FakeAIClient:
    """Stands in for AIAgentClient.complete_json."""

    def __init__(self, answer: Any = None, delay: float = 0.0, error: Optional[Exception] = None):
        self.answer = answer
        self.delay = delay
        self.error = error
        self.prompts: List[str] = []

    async def complete_json(self, cfg: Dict[str, Any], prompt: str, max_tokens: int = 1200) -> Dict[str, Any]:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.answer

    async def close(self):
        pass


@pytest.fixture
def client_factory() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    def make(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return make


@pytest.fixture
def probe_config() -> ProbeConfig:
    return ProbeConfig(request_delay=0, url_delay=0, quick_url_delay=0, solution_delay=0)


@pytest.fixture
def ai_cfg() -> Dict[str, Any]:
    return normalize_ai_agent_config({"enabled": True, "provider": "gemini", "api_key": "test-key"})


@pytest.fixture
def audit_config(tmp_path, probe_config) -> AuditConfig:
    return AuditConfig(
        crawl=CrawlConfig(),
        probe=probe_config,
        ai=normalize_ai_agent_config(None),
        output_dir=tmp_path / "out",
    )
