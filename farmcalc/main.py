"""
FarmCalc planning API.
"""
import os
import logging

from fastapi import FastAPI

from farmcalc.routers import planning

FARMCALC_LOG_LEVEL = os.environ.get("FARMCALC_LOG_LEVEL", "INFO")

logging.basicConfig(
    level=getattr(logging, FARMCALC_LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="FarmCalc",
    description="Crop plan usage, readiness, variance and restriction engines",
    version="0.1.0",
)

app.include_router(planning.router)


@app.get("/health")
def health():
    return {"status": "ok"}
