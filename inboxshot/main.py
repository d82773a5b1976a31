from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from inboxshot.routes import api
from inboxshot.routes import artifacts as artifacts_routes

app = FastAPI(title="inboxshot preview browser")
app.include_router(api.router)
app.include_router(artifacts_routes.router)


@app.get("/")
async def root() -> RedirectResponse:
    """Send visitors to the interactive API docs."""
    return RedirectResponse(url="/docs", status_code=303)
