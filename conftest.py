"""Root conftest: exports .env.test before direct_chat.config builds its settings."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import dotenv_values

for key, value in dotenv_values(Path(__file__).with_name(".env.test")).items():
    if value is not None:
        os.environ.setdefault(key, value)
