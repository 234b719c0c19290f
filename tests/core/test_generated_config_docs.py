import importlib.util
from pathlib import Path

SCRIPT = (
    Path(__file__).resolve().parents[2] / "scripts" / "generate_config_docs.py"
)


def _load_script():
    spec = importlib.util.spec_from_file_location(
        "generate_config_docs", SCRIPT
    )
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def test_generated_config_docs_cover_every_schema():
    content = _load_script().generate()
    for section in (
        "## SocketConfig (messaging)",
        "## RecentChatsConfig (messaging)",
        "## NotificationsConfig (messaging)",
        "## MessagingConfig (messaging)",
        "## LoggingConfig (observability)",
    ):
        assert section in content
    assert "| ttl_s | float | 300.0 |" in content
    assert "| socket | SocketConfig | (SocketConfig) |" in content
