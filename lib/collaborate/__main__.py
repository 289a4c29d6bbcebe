"""Entry point for running the session helper.

Usage:
    python -m lib.collaborate session payment-auth
    python -m lib.collaborate codex-review <session-id> --version 2

Environment variables:
    COLLAB_CONFIG: YAML config path (default: ./collaborate.yaml if present)
    REDIS_URL: Redis URL for the local artifact mirror
"""

from .cli import main

if __name__ == "__main__":
    main()
