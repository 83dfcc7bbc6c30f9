"""
Storefront Checkout - FastAPI Application

Hosts the gateway B return URL and the confirmation snapshot endpoint.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storefront.routers import checkout_router
from storefront.routers.deps import shutdown_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    yield
    await shutdown_services()


app = FastAPI(
    title="Storefront Checkout",
    description="Checkout return handling and order confirmation",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(checkout_router)


# ==================== HEALTH CHECK ====================

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "service": "storefront-checkout"}
