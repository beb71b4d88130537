import logging
import os
from typing import Dict


def setup_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def load_env(path: str = ".env") -> Dict[str, str]:
    """Load simple KEY=VALUE .env file into a dict (non-robust)."""
    env: Dict[str, str] = {}
    if not os.path.exists(path):
        return env
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export "):]
            if "=" not in line:
                continue
            k, v = line.split("=", 1)
            env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def tail(text: str, lines: int = 20) -> str:
    """Last few lines of captured script output, for log messages."""
    if not text:
        return ""
    return "\n".join(text.rstrip().splitlines()[-lines:])
