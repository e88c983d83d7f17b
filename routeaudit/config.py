"""
RouteAudit - Configuration Management
Centralized configuration for the crawler, the probe engine and the AI agent.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from routeaudit.ai_agent import coerce_bool, normalize_ai_agent_config


# Base paths
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DATA_DIR = PROJECT_ROOT / "data"
OUTPUT_DIR = Path(os.environ.get("ROUTEAUDIT_OUTPUT_DIR", "") or (PROJECT_ROOT / "output"))

# Persistence files
CONFIG_FILE = DATA_DIR / "config.json"

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; RouteAudit/1.0; +https://github.com/routeaudit/routeaudit)"

MODES = ("quick", "deep")


def resolve_chromium_bin() -> Optional[Path]:
    """Resolve an explicit Chromium executable, or None to use Playwright's bundled build."""
    env_path = os.environ.get("ROUTEAUDIT_CHROME_BIN", "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()
    return None


@dataclass
class CrawlConfig:
    """Headless crawl configuration."""
    max_pages: int = 20
    nav_timeout_ms: int = 30000
    idle_threshold_ms: int = 300
    idle_cap_ms: int = 1200
    idle_poll_ms: int = 50
    # Quick snapshot: first N pages or T milliseconds, whichever first
    quick_pages: int = 8
    quick_time_ms: int = 6000
    quick_endpoint_limit: int = 200
    headless: bool = True
    # Scroll, click and hash-route nudges for single-page apps before the idle wait
    spa_interactions: bool = False
    spa_settle_ms: int = 500
    user_agent: str = DEFAULT_USER_AGENT
    executable_path: Optional[Path] = field(default_factory=resolve_chromium_bin)
    blocked_resource_types: List[str] = field(default_factory=lambda: [
        "image",
        "stylesheet",
        "font",
        "media",
    ])
    chromium_args: List[str] = field(default_factory=lambda: [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
    ])


@dataclass
class ProbeConfig:
    """Probe engine tuning. Thresholds are heuristics, not guarantees."""
    request_timeout: float = 5.0
    user_agent: str = DEFAULT_USER_AGENT
    # Delay between payload attempts inside one probe
    request_delay: float = 0.1
    # Delay between URLs (deep / quick)
    url_delay: float = 0.3
    quick_url_delay: float = 0.1
    sqli_length_delta: float = 0.10
    # Only count DB error signatures the unmodified request does not already show
    sqli_require_new_error: bool = True
    idor_min_body: int = 100
    idor_min_body_quick: int = 50
    burst_size: int = 5
    ssrf_latency_threshold: float = 5.0
    jwt_max_lifetime_days: int = 365
    # Delay between remote solution calls
    solution_delay: float = 0.5


@dataclass
class AuditConfig:
    """Overall audit configuration."""
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    ai: Dict[str, Any] = field(default_factory=lambda: normalize_ai_agent_config(None))
    output_dir: Path = OUTPUT_DIR


def ensure_dirs(*extra: Path):
    """Create all required directories."""
    for d in [DATA_DIR, *extra]:
        Path(d).mkdir(parents=True, exist_ok=True)


# ── User Config Persistence ───────────────────────────────────────

def load_user_config(path: Optional[Path] = None) -> dict:
    """Load user config overrides ({"crawl": {...}, "probe": {...}, "ai": {...}})."""
    path = Path(path) if path else CONFIG_FILE
    if not path.exists():
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        print(f"[Config] Error loading {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def save_user_config(config: dict, path: Optional[Path] = None):
    """Save user config overrides, merged with what is already on disk."""
    path = Path(path) if path else CONFIG_FILE
    ensure_dirs(path.parent)
    existing = load_user_config(path)
    for section, values in config.items():
        if isinstance(values, dict) and isinstance(existing.get(section), dict):
            existing[section].update(values)
        else:
            existing[section] = values
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(existing, f, indent=2)
    except OSError as e:
        print(f"[Config] Error saving config: {e}")


def _apply_overrides(target, overrides: Dict[str, Any]):
    """Copy known keys onto a config dataclass, coercing to the default's type."""
    known = asdict(target)
    for key, value in (overrides or {}).items():
        if key not in known or value is None:
            continue
        current = getattr(target, key)
        try:
            if isinstance(current, bool):
                value = coerce_bool(value)
            elif isinstance(current, int):
                value = int(value)
            elif isinstance(current, float):
                value = float(value)
            elif isinstance(current, list):
                value = [str(v) for v in value]
            elif isinstance(current, Path) or key == "executable_path":
                value = Path(value).expanduser()
        except (TypeError, ValueError):
            print(f"[Config] Ignoring invalid value for {key}: {value!r}")
            continue
        setattr(target, key, value)


def ai_config_from_env(base: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Overlay ROUTEAUDIT_AI_* environment variables on an AI config dict."""
    raw: Dict[str, Any] = {}
    provider = os.environ.get("ROUTEAUDIT_AI_PROVIDER", "").strip()
    if provider:
        raw["provider"] = provider
    model = os.environ.get("ROUTEAUDIT_AI_MODEL", "").strip()
    if model:
        raw["model"] = model
    endpoint = os.environ.get("ROUTEAUDIT_AI_ENDPOINT", "").strip()
    if endpoint:
        raw["endpoint"] = endpoint
    key = (os.environ.get("ROUTEAUDIT_AI_API_KEY", "") or os.environ.get("GEMINI_API_KEY", "")).strip()
    if key:
        raw["api_key"] = key
        raw.setdefault("enabled", True)
    if endpoint and raw.get("provider") in ("ollama", "custom"):
        raw.setdefault("enabled", True)
    return normalize_ai_agent_config(raw, existing=base)


def get_config(config_path: Optional[Path] = None, output_dir: Optional[Path] = None) -> AuditConfig:
    """Get the current configuration, merging defaults, the user file and the environment."""
    cfg = AuditConfig()
    user_cfg = load_user_config(config_path)

    _apply_overrides(cfg.crawl, user_cfg.get("crawl", {}))
    _apply_overrides(cfg.probe, user_cfg.get("probe", {}))
    cfg.ai = ai_config_from_env(normalize_ai_agent_config(user_cfg.get("ai")))

    if output_dir:
        cfg.output_dir = Path(output_dir)
    elif user_cfg.get("output_dir"):
        cfg.output_dir = Path(str(user_cfg["output_dir"])).expanduser()
    return cfg
