"""
DriftSignal FastAPI Application Entry Point

It configures:
- CORS middleware for the dashboard
- Database initialization
- API routes for imports, reviews, products, analytics, email threads and on-demand enrichment
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.db.session import init_db
from app.api.imports import router as imports_router
from app.api.reviews import router as reviews_router
from app.api.products import router as products_router
from app.api.analytics import router as analytics_router
from app.api.emails import router as emails_router
from app.api.enrichment import router as enrichment_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting DriftSignal backend...")
    await init_db()
    logger.info("Database initialized successfully")
    yield
    logger.info("Shutting down DriftSignal backend...")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
## DriftSignal - Customer Feedback Aggregation

Collects reviews from Amazon, Walmart, Shopify and an email inbox into one store,
classifies each one with AI, drafts a reply, and rolls everything up into analytics.

### API Endpoints:
- `POST /api/v1/imports/{source_kind}` - Import reviews (amazon / walmart / shopify) or sync a mailbox (email)
- `GET /api/v1/reviews` - List reviews
- `PATCH /api/v1/reviews/{id}/status` - Move a review through open / in_progress / resolved
- `GET /api/v1/products` - Tracked products and mailboxes
- `DELETE /api/v1/products/{platform}/{product_id}` - Stop tracking a product
- `GET /api/v1/analytics` - Analytics snapshot
- `GET /api/v1/emails/threads` - Inbox grouped into threads
- `POST /api/v1/enrichment/analyze` - Classify one review on demand
- `POST /api/v1/enrichment/reply` - Draft a reply on demand
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoints
@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - API information"""
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker"""
    return {"status": "healthy"}


# Include API routers
app.include_router(imports_router, prefix="/api/v1")
app.include_router(reviews_router, prefix="/api/v1")
app.include_router(products_router, prefix="/api/v1")
app.include_router(analytics_router, prefix="/api/v1")
app.include_router(emails_router, prefix="/api/v1")
app.include_router(enrichment_router, prefix="/api/v1")
