#!/usr/bin/env python
"""Validate setup - check dependencies, configuration and gateway access."""
import sys
import asyncio
from pathlib import Path

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"

def print_success(msg):
    print(f"{GREEN}✓{RESET} {msg}")

def print_error(msg):
    print(f"{RED}✗{RESET} {msg}")

def print_info(msg):
    print(f"{BLUE}ℹ{RESET} {msg}")

def print_warning(msg):
    print(f"{YELLOW}⚠{RESET} {msg}")

def print_section(title):
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}{title:^60}{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")

async def main():
    print_section("FundingIQ - Setup Validation")

    errors = []
    warnings = []

    # 1. Python version check
    print_section("1. Python Environment")
    python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    print_info(f"Python version: {python_version}")
    if sys.version_info >= (3, 11):
        print_success("Python version >= 3.11")
    else:
        print_error("Python version < 3.11 (required for asyncio.timeout)")
        errors.append("Python version too old")

    # 2. Import core dependencies
    print_section("2. Core Dependencies")

    dependencies = [
        ("quart", "Quart web framework"),
        ("hypercorn", "Hypercorn ASGI server"),
        ("httpx", "HTTP client"),
        ("pydantic", "Data validation"),
        ("yaml", "YAML loader"),
        ("structlog", "Structured logging"),
    ]

    for module_name, description in dependencies:
        try:
            __import__(module_name)
            print_success(f"{description:30} ({module_name})")
        except ImportError as e:
            print_error(f"{description:30} ({module_name}) - {e}")
            errors.append(f"Missing: {module_name}")

    # 3. Test configuration
    print_section("3. Configuration")

    try:
        # Add parent directory to path to import fundingiq
        sys.path.insert(0, str(Path(__file__).parent.parent))
        from fundingiq import config, db
        from fundingiq.languages import LANGUAGES

        print_success(f"Config loaded successfully")
        print_info(f"  Chat model: {config.CHAT_MODEL}")
        print_info(f"  Keyword model: {config.KEYWORD_MODEL}")
        print_info(f"  Gateway URL: {config.GATEWAY_BASE_URL}")
        print_info(f"  Chunking: {config.CHUNK_SIZE}/{config.CHUNK_OVERLAP} chars, min {config.MIN_CHUNK_LENGTH}")
        print_info(f"  Keyword limit: first {config.KEYWORD_CHUNK_LIMIT} chunks per document")
        print_info(f"  Languages: {', '.join(LANGUAGES)}")

        if config.STORAGE_DIR.exists():
            print_success(f"Storage directory exists: {config.STORAGE_DIR}")
        else:
            print_error(f"Storage directory missing: {config.STORAGE_DIR}")
            errors.append("Storage directory missing")

        db.init_database()
        chunk_count = db.get_chunk_count()
        print_success(f"Database ready: {config.DB_PATH} ({chunk_count} chunks)")
        if chunk_count == 0:
            print_warning("Knowledge base is empty - run scripts/ingest.py")
            warnings.append("No chunks ingested yet")

    except Exception as e:
        print_error(f"Failed to load config: {e}")
        errors.append("Config loading failed")
        return errors, warnings

    # 4. Test gateway access with a keyword request
    print_section("4. AI Gateway")

    if not config.GATEWAY_API_KEY:
        print_error("GATEWAY_API_KEY is not set")
        print_info("  Queries will fail and ingestion will skip keyword synthesis")
        errors.append("Gateway not configured")
    else:
        from fundingiq.errors import FundingIQError
        from fundingiq.llm_client import gateway_client

        try:
            reply = await gateway_client.complete(
                [{"role": "user", "content": "Reply with the single word: ok"}],
                model=config.KEYWORD_MODEL,
                max_tokens=5,
            )
            print_success(f"Gateway responded: {reply.strip()[:40]!r}")
        except FundingIQError as e:
            print_error(f"Gateway check failed: {e.message}")
            errors.append(f"Gateway error: {e.message}")

    # 5. Summary
    print_section("Summary")

    if not errors:
        print_success(f"All checks passed! ✨")
        print_info(f"  Start the API: hypercorn fundingiq.main:app")
    else:
        print_error(f"Found {len(errors)} error(s):")
        for i, error in enumerate(errors, 1):
            print(f"  {i}. {error}")

    if warnings:
        print_warning(f"\nFound {len(warnings)} warning(s):")
        for i, warning in enumerate(warnings, 1):
            print(f"  {i}. {warning}")

    print()
    return errors, warnings

if __name__ == "__main__":
    errors, warnings = asyncio.run(main())
    sys.exit(1 if errors else 0)
