import sys
from unittest.mock import MagicMock, patch

import numpy as np
import pytest


@pytest.fixture
def mock_cv2():
    """Inject a mock cv2 module into sys.modules."""
    mock = MagicMock()
    mock.IMWRITE_JPEG_QUALITY = 1
    mock.imencode.return_value = (True, np.frombuffer(b"\xff\xd8jpeg", dtype=np.uint8))
    with patch.dict(sys.modules, {"cv2": mock}):
        yield mock
