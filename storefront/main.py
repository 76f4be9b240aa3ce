from fastapi import FastAPI
import structlog
from prometheus_fastapi_instrumentator import Instrumentator
from storefront.version import VERSION
from storefront.api import addresses, cart, checkout, orders
from storefront.core.errors import install_error_handlers
from storefront.core.logging import configure_logging
from storefront.kafka import consumer as fulfillment_consumer

configure_logging()
logger = structlog.get_logger(__name__)

# Create instrumentator first
instrumentator = Instrumentator()

app = FastAPI(title="Storefront Service", version=VERSION)

# Instrument the app BEFORE adding routes or middleware
instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/metrics",
    should_gzip=True,
)

install_error_handlers(app)

@app.get("/health")
def health(): return {"status": "ok"}

@app.get("/v1/_info")
def info(): return {"service": "storefront", "version": VERSION}

@app.on_event("startup")
async def startup_event():
    for route in app.routes:
        if hasattr(route, "methods") and hasattr(route, "path"):
            logger.debug("route", methods=sorted(route.methods), path=route.path)
    fulfillment_consumer.start()

@app.on_event("shutdown")
async def shutdown_event():
    fulfillment_consumer.stop()

app.include_router(cart.router, prefix="/cart", tags=["cart"])
app.include_router(checkout.router, prefix="/checkout", tags=["checkout"])
app.include_router(addresses.router, prefix="/addresses", tags=["addresses"])
app.include_router(orders.router, prefix="/orders", tags=["orders"])
