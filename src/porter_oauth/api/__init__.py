# Porter OAuth HTTP layer
# Created: 2026-10-18
#
# oauth2/ holds the protocol logic and storage; v1/ holds the FastAPI routers.
