"""
notebridge Server Entry Point.

All application logic is organized in the `notebridge` package.
"""
from notebridge.main import app

if __name__ == "__main__":
    import uvicorn
    from notebridge.config import settings

    uvicorn.run(
        "server:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
