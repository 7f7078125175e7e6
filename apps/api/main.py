"""uvicorn entrypoint for the Companion API.

Run with: uvicorn main:app --reload   (from apps/api, with python/ on PYTHONPATH)

The instance is built here rather than in companion.app so importing the
package never reads settings; tests build their own apps via create_app().
"""

from companion.app import add_request_id_middleware, create_app

app = create_app()
# Outermost: every response, including 401s from auth, carries X-Request-ID
add_request_id_middleware(app)

__all__ = ["app"]
