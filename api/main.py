from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from regtrack import __version__
from regtrack.settings import configure_logging

configure_logging()

app = FastAPI(
    title="regtrack API",
    version=__version__,
    description="HTTP layer over the compliance task engine: checklists, verification and evidence uploads.",
)

# --- CORS ----------------------------------------------------------
# Dev-only origins; tighten for production.
origins = [
    "http://localhost:5173",    # Vite dev server default port
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)

# --- Include Routers ----------------------------------------------------------
from .compliance import router as compliance_router  # noqa: E402

app.include_router(compliance_router)


# ---------- health-check ----------
@app.get("/")
def root():
    return {"status": "ok", "msg": "regtrack API is alive"}


if __name__ == "__main__":
    import uvicorn

    from regtrack.settings import API_DEBUG, API_HOST, API_PORT

    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT, reload=API_DEBUG)
