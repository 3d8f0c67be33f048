"""FastAPI REST API for Taskhook.

This module exposes the inbound callback endpoint and webhook reporting
endpoints over HTTP.

Example:
    ```python
    import uvicorn
    from taskhook.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn taskhook.api:app --reload
    ```
"""

from .app import app, create_app, register_exception_handlers
from .router import router

__all__ = [
    "app",
    "create_app",
    "register_exception_handlers",
    "router",
]
