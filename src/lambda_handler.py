"""AWS Lambda entry point.

Mangum translates API Gateway HTTP API (v2) events into ASGI, letting the
proxy app run unchanged on Lambda. Configuration is validated at cold
start, so a missing API_KEY fails the init phase instead of serving 500s.
"""

from mangum import Mangum

from src.main import create_app

handler = Mangum(create_app(), lifespan="off")
