from __future__ import annotations

import uvicorn
from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from stratus.api import applications, infrastructure
from stratus.api.utils import register_exception_handlers
from stratus.db import engine, init_db

app = FastAPI(
    title="Stratus",
    description="Service for provisioning the databases, caches and other services an application needs",
    version="0.1.0",
)


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
    """Redirect root URL to Swagger UI docs."""
    return RedirectResponse(url="/docs")


app.include_router(applications.router)
app.include_router(infrastructure.router)

register_exception_handlers(app)

if __name__ == "__main__":
    init_db(engine)
    uvicorn.run("stratus.main:app", host="0.0.0.0", port=8001, log_level="info", reload=True)
