from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from pixelpilot.routes import api
from pixelpilot.routes import artifacts
from pixelpilot.routes import dashboard
from pixelpilot.routes import references
from pixelpilot.routes import testing

app = FastAPI(title="PixelPilot Visual Regression Server")
app.include_router(api.router)
app.include_router(testing.router)
app.include_router(references.router)
app.include_router(dashboard.router)
app.include_router(artifacts.router)


@app.get("/")
async def root() -> RedirectResponse:
    """Redirect visitors to the health endpoint until a UI is mounted."""
    return RedirectResponse(url="/api/health", status_code=303)
