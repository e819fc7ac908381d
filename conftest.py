from __future__ import annotations

import logging

# Request and domain events are logged as JSON lines; surface them in failing test output.
logging.getLogger("content_api").setLevel(logging.INFO)
