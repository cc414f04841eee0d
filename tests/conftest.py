"""Root conftest — shared test configuration."""

import os

# Ensure tests don't accidentally use real API keys or a real backend
os.environ.setdefault("ANTHROPIC_API_KEY", "sk-ant-test-fake-key")
os.environ.setdefault("BACKEND_URL", "http://backend.test/graphql")
os.environ.setdefault("TOKENIZER_PRECISE", "false")
os.environ.setdefault("LOG_FORMAT", "text")
