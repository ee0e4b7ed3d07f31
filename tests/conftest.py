import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from autopilot.models.repository import RepositoryConfig
from autopilot.services.credential_store import clear_github_tokens
from autopilot.services.store import ProposalStore, RepositoryConfigStore, RunLogStore
from tests.fakes import FakeGateway, make_settings


@pytest.fixture(autouse=True)
def _reset_credentials():
    yield
    clear_github_tokens()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def config_store():
    return RepositoryConfigStore()


@pytest.fixture
def proposal_store():
    return ProposalStore()


@pytest.fixture
def run_log_store():
    return RunLogStore()


@pytest.fixture
def repository():
    return RepositoryConfig(
        owner="acme",
        name="widgets",
        description="Widget toolkit",
        automation_enabled=True,
        scheduled_time="09:30",
        timezone="UTC",
    )


@pytest.fixture
def gateway():
    return FakeGateway(
        files={
            "README.md": "# Widgets\n\nA small widget toolkit.\n",
            "package.json": '{"name": "widgets", "version": "1.0.0"}\n',
            "src/index.js": "export const widget = () => 'widget';\n",
            "src/util.js": "export const add = (a, b) => a + b;\n",
        }
    )
