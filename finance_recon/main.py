"""FastAPI application"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from finance_recon.api.routes import router
from finance_recon.exceptions import (
    CommitteeLinkError,
    ConfigurationError,
    FinanceAPITransportError,
    FinanceReconError,
    LedgerStoreError,
)
from finance_recon.utils.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

ERROR_STATUS = {
    CommitteeLinkError: 422,
    ConfigurationError: 503,
    FinanceAPITransportError: 502,
    LedgerStoreError: 503,
}

app = FastAPI(
    title="Campaign Finance Reconciliation",
    description="Reconciles ingested FEC contributions against committee-reported totals",
    version="1.0.0"
)

app.include_router(router)


@app.exception_handler(FinanceReconError)
async def finance_recon_error_handler(request: Request, exc: FinanceReconError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    logger.error("Request failed", path=request.url.path, error=str(exc), status_code=status_code)
    return JSONResponse(status_code=status_code, content={"success": False, "message": str(exc)})


@app.get("/")
async def root():
    return {"message": "Campaign Finance Reconciliation API"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
