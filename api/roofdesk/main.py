import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import LOG_LEVEL
from .db import init_db
from .errors import RoofdeskError, roofdesk_error_handler
from .routers import branches, customers, documents, public, reports, users

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="Roofdesk API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(RoofdeskError, roofdesk_error_handler)

@app.on_event("startup")
def on_startup():
    init_db()

app.include_router(branches.router, prefix="/api/branches", tags=["branches"])
app.include_router(customers.router, prefix="/api/customers", tags=["customers"])
app.include_router(reports.router, prefix="/api/reports", tags=["reports"])
app.include_router(documents.offers, prefix="/api/offers", tags=["offers"])
app.include_router(documents.service_agreements, prefix="/api/service-agreements", tags=["service-agreements"])
app.include_router(users.router, prefix="/api", tags=["users"])
app.include_router(public.router, prefix="/api", tags=["public"])  # token links, no principal

@app.get("/")
def root():
    return {"ok": True, "service": "roofdesk-api"}
