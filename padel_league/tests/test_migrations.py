"""
Sanity checks on the alembic script directory.
"""

from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory

REPO_ROOT = Path(__file__).resolve().parents[2]


def _script_directory() -> ScriptDirectory:
    config = Config(str(REPO_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(REPO_ROOT / "padel_league" / "alembic"))
    return ScriptDirectory.from_config(config)


def test_single_head():
    assert _script_directory().get_heads() == ["001"]


def test_initial_revision_is_base():
    revision = _script_directory().get_revision("001")
    assert revision.down_revision is None
