#!/usr/bin/env python3
"""
Setup Verification Script

Checks configuration and connections before starting the service: the
.env file, required settings, PostgreSQL (with btree_gist), Redis, the
Anthropic key and the configured timezone.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.config import Settings, get_settings  # noqa: E402


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def mask(value: str) -> str:
    return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"


def check_env_file() -> bool:
    """The service also runs from plain environment variables."""
    exists = (project_root / ".env").exists()
    print_result(".env file", exists, "Found" if exists else "Not found, using environment only")
    return exists


def check_required_settings(settings: Settings) -> dict[str, bool]:
    """Settings the webhook flow cannot work without."""
    results = {}

    required = [
        ("ANTHROPIC_API_KEY", settings.anthropic_api_key, True),
        ("WHATSAPP_VERIFY_TOKEN", settings.whatsapp_verify_token, True),
        ("DATABASE_URL", settings.database_url, False),
        ("REDIS_URL", settings.redis_url, False),
    ]

    for name, value, secret in required:
        if not value:
            print_result(name, False, "Not set")
            results[name] = False
        else:
            print_result(name, True, f"Set ({mask(value) if secret else value})")
            results[name] = True

    return results


def check_scheduling_settings(settings: Settings) -> bool:
    """Values that shape availability and replies."""
    ok = True

    try:
        ZoneInfo(settings.default_timezone)
        print_result("DEFAULT_TIMEZONE", True, settings.default_timezone)
    except ZoneInfoNotFoundError:
        print_result("DEFAULT_TIMEZONE", False, f"Unknown zone {settings.default_timezone}")
        ok = False

    threshold_ok = 0.0 <= settings.intent_confidence_threshold < 1.0
    print_result(
        "INTENT_CONFIDENCE_THRESHOLD",
        threshold_ok,
        str(settings.intent_confidence_threshold),
    )
    ok = ok and threshold_ok

    print_result("REPLY_LOCALE", True, settings.reply_locale)
    print_result("RESCHEDULE_POLICY", True, settings.reschedule_policy)
    return ok


async def check_postgres() -> bool:
    """Verify PostgreSQL connection and the btree_gist extension."""
    from sqlalchemy import text

    from app.infra.database import get_db_context

    try:
        async with get_db_context() as db:
            result = await db.execute(
                text("SELECT 1 FROM pg_available_extensions WHERE name = 'btree_gist'")
            )
            has_gist = result.scalar() is not None
    except Exception as e:
        print_result("PostgreSQL", False, str(e)[:50])
        return False

    print_result("PostgreSQL", True, "Connection successful")
    print_result(
        "btree_gist",
        has_gist,
        "Available" if has_gist else "Missing - overlap constraint cannot be created",
    )
    return has_gist


async def check_redis() -> bool:
    """Verify Redis connection."""
    from app.infra.redis import check_redis_health

    healthy = await check_redis_health()
    print_result(
        "Redis",
        healthy,
        "Connection successful" if healthy else "Connection failed (de-duplication disabled)",
    )
    return healthy


async def check_anthropic(settings: Settings) -> bool:
    """Verify the Anthropic API key with a minimal call."""
    from anthropic import AsyncAnthropic, AuthenticationError, RateLimitError

    client = AsyncAnthropic(api_key=settings.anthropic_api_key)
    try:
        await client.messages.create(
            model=settings.claude_intent_model,
            max_tokens=10,
            messages=[{"role": "user", "content": "Oi"}],
        )
        print_result("Anthropic API", True, "Key validated successfully")
        return True
    except AuthenticationError:
        print_result("Anthropic API", False, "Invalid API key")
        return False
    except RateLimitError:
        print_result("Anthropic API", True, "Key valid (rate limited)")
        return True
    except Exception as e:
        print_result("Anthropic API", False, str(e)[:50])
        return False
    finally:
        await client.close()


async def main() -> int:
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" WhatsApp Scheduler - Setup Verification")
    print("="*60)

    settings = get_settings()
    critical_failed = False

    print_header("Environment File")
    check_env_file()

    print_header("Required Settings")
    required = check_required_settings(settings)
    if not required.get("ANTHROPIC_API_KEY") or not required.get("DATABASE_URL"):
        critical_failed = True

    print_header("Scheduling Settings")
    if not check_scheduling_settings(settings):
        critical_failed = True

    print_header("Service Connections")
    if not await check_postgres():
        critical_failed = True

    await check_redis()  # Non-critical

    if required.get("ANTHROPIC_API_KEY"):
        if not await check_anthropic(settings):
            critical_failed = True
    else:
        print_result("Anthropic API", False, "Skipped - ANTHROPIC_API_KEY not set")

    print_header("Summary")

    if critical_failed:
        print("\n  \033[91mCRITICAL: Some required checks failed.\033[0m")
        print("  Please fix the issues above before running the application.")
        print()
        return 1

    print("\n  \033[92mAll checks passed!\033[0m")
    print("  You can start the application with:")
    print("    uvicorn app.main:app --reload")
    print()
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
