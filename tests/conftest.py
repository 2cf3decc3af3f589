import pytest

from tests.mocks.mock_ui import RecordingUIManager


@pytest.fixture
def recording_ui():
    return RecordingUIManager()
